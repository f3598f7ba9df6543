"""Safety screening schemas."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ViolationType(str, Enum):
    """Category of unsafe content."""
    MEDICAL_ADVICE = "medical_advice"
    DIAGNOSIS = "diagnosis"
    EMERGENCY = "emergency"
    PROFANITY = "profanity"
    INAPPROPRIATE = "inappropriate"


class Severity(str, Enum):
    """Violation severity, ordered low to critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return ["low", "medium", "high", "critical"].index(self.value)

    def at_least(self, other: "Severity") -> bool:
        return self.rank >= other.rank


class SafetyViolation(BaseModel):
    """A single matched safety rule. Logged, never persisted."""
    type: ViolationType
    severity: Severity
    description: str
    matched_text: Optional[str] = None


class SafetyFilterResult(BaseModel):
    """Result of screening generated (outbound) text."""
    is_safe: bool = True
    violations: list[SafetyViolation] = Field(default_factory=list)
    escalation_required: bool = False
    sanitized_text: Optional[str] = None


class EmergencyDetectionResult(BaseModel):
    """Weighted emergency scoring of inbound text."""
    is_emergency: bool = False
    score: int = 0
    indicators: list[str] = Field(default_factory=list)


class InboundSafetyAnalysis(BaseModel):
    """Profanity scan plus emergency scoring of an inbound message."""
    emergency: EmergencyDetectionResult = Field(default_factory=EmergencyDetectionResult)
    violations: list[SafetyViolation] = Field(default_factory=list)
    escalation_required: bool = False

    @property
    def is_emergency(self) -> bool:
        return self.emergency.is_emergency


class SafetyContext(BaseModel):
    """Who the screened text belongs to, for logging and escalation."""
    patient_id: str
    phone_number: Optional[str] = None
    conversation_id: Optional[str] = None
    current_context: Optional[str] = None
