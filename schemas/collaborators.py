"""Payloads exchanged with external collaborators."""

from datetime import datetime, timezone
from typing import Optional, Any
from pydantic import BaseModel, Field



class QueuedMessage(BaseModel):
    """Work item handed to the retry queue for later redelivery."""
    patient_id: str
    phone_number: str
    message: str
    priority: str = "medium"
    message_type: str = "general"
    max_retries: int = 3
    metadata: dict[str, Any] = Field(default_factory=dict)


class EscalationRequest(BaseModel):
    """Notification for a human responder (volunteer)."""
    patient_id: str
    phone_number: Optional[str] = None
    message: str
    reason: str
    priority: str = "high"
    intent: Optional[str] = None
    context: dict[str, Any] = Field(default_factory=dict)


class PatientInfo(BaseModel):
    """Patient record as seen by the messaging engine."""
    id: str
    name: str
    phone_number: Optional[str] = None
    verification_status: str = "pending"

    @property
    def is_verified(self) -> bool:
        return self.verification_status.lower() == "verified"


class ReminderInfo(BaseModel):
    """Active medication reminder summary."""
    id: str
    medication_name: Optional[str] = None
    scheduled_time: Optional[str] = None
    message: Optional[str] = None
    is_today: bool = False


class PatientContext(BaseModel):
    """Patient and reminder context for reply generation."""
    patient: PatientInfo
    active_reminders: list[ReminderInfo] = Field(default_factory=list)

    @property
    def todays_reminders(self) -> list[ReminderInfo]:
        return [r for r in self.active_reminders if r.is_today]


class PatientContextResult(BaseModel):
    """Result of a patient lookup by phone number."""
    found: bool = False
    context: Optional[PatientContext] = None


class DeliveryResult(BaseModel):
    """Outcome of sending a message through the transport."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class InboundMessage(BaseModel):
    """A patient message as received from the gateway."""
    phone_number: str
    message: str
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
