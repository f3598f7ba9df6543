"""Conversation state persistence."""

from .errors import ConversationNotFoundError
from .models import (
    ConversationState,
    ConversationMessage,
    ConversationStats,
    VerificationStateData,
    ReminderStateData,
    EmptyStateData,
    GenericStateData,
)
from .phone import phone_alternatives
from .sqlite_store import ConversationStateStore

__all__ = [
    "ConversationNotFoundError",
    "ConversationState",
    "ConversationMessage",
    "ConversationStats",
    "VerificationStateData",
    "ReminderStateData",
    "EmptyStateData",
    "GenericStateData",
    "phone_alternatives",
    "ConversationStateStore",
]
