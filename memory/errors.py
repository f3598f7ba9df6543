"""Persistence errors."""


class ConversationNotFoundError(LookupError):
    """Raised when a conversation state id does not exist."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation state not found: {conversation_id}")
        self.conversation_id = conversation_id
