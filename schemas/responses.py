"""Pipeline response schemas."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from .intent import MessageIntent, Sentiment
from .safety import SafetyViolation


class ResponseKind(str, Enum):
    """How the reply should be handled downstream."""
    AUTO_REPLY = "auto_reply"
    HUMAN_INTERVENTION = "human_intervention"
    ESCALATION = "escalation"


class Priority(str, Enum):
    """Handling priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ResponseAction(BaseModel):
    """Follow-up action recommended to downstream systems."""
    type: str  # update_patient_status, log_confirmation, send_followup, notify_volunteer, ...
    data: dict = Field(default_factory=dict)


class GenerationMetadata(BaseModel):
    """Provider accounting for a generated reply."""
    model: str
    tokens_used: int = 0
    cost: float = 0.0
    response_time_ms: int = 0
    cached: bool = False


class RecommendedResponse(BaseModel):
    """Reply selected for a patient message."""
    type: ResponseKind = ResponseKind.AUTO_REPLY
    message: str
    actions: list[ResponseAction] = Field(default_factory=list)
    priority: Priority = Priority.LOW
    generated: bool = False
    template_key: Optional[str] = None
    generation: Optional[GenerationMetadata] = None


class ProcessedMessage(BaseModel):
    """Full outcome of processing one inbound message."""
    conversation_id: Optional[str] = None
    patient_id: str
    phone_number: str
    message: str
    normalized_message: str
    intent: MessageIntent
    sentiment: Sentiment = Sentiment.NEUTRAL
    response: RecommendedResponse
    escalated: bool = False
    escalation_reason: Optional[str] = None
    violations: list[SafetyViolation] = Field(default_factory=list)
    requires_human_intervention: bool = False
