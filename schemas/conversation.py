"""Conversation context and message enums."""

from enum import Enum


class ContextType(str, Enum):
    """What the engine is currently waiting for from the patient."""
    VERIFICATION = "verification"
    REMINDER_CONFIRMATION = "reminder_confirmation"
    GENERAL_INQUIRY = "general_inquiry"
    EMERGENCY = "emergency"


class ExpectedResponseType(str, Enum):
    """Shape of the reply expected in the current context."""
    YES_NO = "yes_no"
    CONFIRMATION = "confirmation"
    TEXT = "text"
    NUMBER = "number"


class Direction(str, Enum):
    """Message direction relative to the patient."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageType(str, Enum):
    """Category of a stored message."""
    VERIFICATION = "verification"
    REMINDER = "reminder"
    CONFIRMATION = "confirmation"
    GENERAL = "general"


EXPECTED_RESPONSE_BY_CONTEXT = {
    ContextType.VERIFICATION: ExpectedResponseType.YES_NO,
    ContextType.REMINDER_CONFIRMATION: ExpectedResponseType.CONFIRMATION,
}


def expected_response_for(context: ContextType) -> ExpectedResponseType:
    """Derive the expected response type for a context."""
    return EXPECTED_RESPONSE_BY_CONTEXT.get(context, ExpectedResponseType.TEXT)


def message_type_for(context: ContextType) -> MessageType:
    """Map a conversation context to the type stored on its messages."""
    if context == ContextType.VERIFICATION:
        return MessageType.VERIFICATION
    if context == ContextType.REMINDER_CONFIRMATION:
        return MessageType.CONFIRMATION
    return MessageType.GENERAL
