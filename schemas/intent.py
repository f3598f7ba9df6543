"""Intent classification schemas."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class IntentType(str, Enum):
    """Closed set of patient intents."""
    ACCEPT = "accept"
    DECLINE = "decline"
    CONFIRM_TAKEN = "confirm_taken"
    CONFIRM_MISSED = "confirm_missed"
    CONFIRM_LATER = "confirm_later"
    UNSUBSCRIBE = "unsubscribe"
    REMINDER_INQUIRY = "reminder_inquiry"
    INQUIRY = "inquiry"
    EMERGENCY = "emergency"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "IntentType":
        """Map a free-form label to an intent, unknown when unrecognized."""
        if not value:
            return cls.UNKNOWN
        label = str(value).strip().lower()
        # Provider labels seen in the wild
        aliases = {
            "verification_accept": cls.ACCEPT,
            "verification_decline": cls.DECLINE,
            "medication_confirmed": cls.CONFIRM_TAKEN,
            "medication_missed": cls.CONFIRM_MISSED,
            "help": cls.INQUIRY,
            "general_inquiry": cls.INQUIRY,
        }
        if label in aliases:
            return aliases[label]
        try:
            return cls(label)
        except ValueError:
            return cls.UNKNOWN


class Sentiment(str, Enum):
    """Coarse sentiment of a patient message."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class MessageEntity(BaseModel):
    """Entity extracted from a message."""
    type: str
    value: str
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class MessageIntent(BaseModel):
    """Classified intent with its confidence in [0, 1]."""
    intent: IntentType
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    entities: list[MessageEntity] = Field(default_factory=list)


class IntentDetectionResult(BaseModel):
    """Parsed structured output of provider intent detection."""
    intent: IntentType = IntentType.UNKNOWN
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    entities: dict = Field(default_factory=dict)
    reasoning: Optional[str] = None
