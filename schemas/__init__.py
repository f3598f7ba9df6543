"""Pydantic schemas for the patient messaging engine."""

from .conversation import ContextType, ExpectedResponseType, Direction, MessageType
from .intent import IntentType, Sentiment, MessageEntity, MessageIntent, IntentDetectionResult
from .safety import (
    ViolationType,
    Severity,
    SafetyViolation,
    SafetyFilterResult,
    EmergencyDetectionResult,
    InboundSafetyAnalysis,
    SafetyContext,
)
from .responses import (
    ResponseKind,
    Priority,
    ResponseAction,
    GenerationMetadata,
    RecommendedResponse,
    ProcessedMessage,
)
from .collaborators import (
    QueuedMessage,
    EscalationRequest,
    PatientInfo,
    ReminderInfo,
    PatientContext,
    PatientContextResult,
    DeliveryResult,
    InboundMessage,
)

__all__ = [
    "ContextType",
    "ExpectedResponseType",
    "Direction",
    "MessageType",
    "IntentType",
    "Sentiment",
    "MessageEntity",
    "MessageIntent",
    "IntentDetectionResult",
    "ViolationType",
    "Severity",
    "SafetyViolation",
    "SafetyFilterResult",
    "EmergencyDetectionResult",
    "InboundSafetyAnalysis",
    "SafetyContext",
    "ResponseKind",
    "Priority",
    "ResponseAction",
    "GenerationMetadata",
    "RecommendedResponse",
    "ProcessedMessage",
    "QueuedMessage",
    "EscalationRequest",
    "PatientInfo",
    "ReminderInfo",
    "PatientContext",
    "PatientContextResult",
    "DeliveryResult",
    "InboundMessage",
]
