"""Conversation state data models."""

from datetime import datetime
from typing import Optional, Literal, Union, Any
from pydantic import BaseModel, Field

from schemas.conversation import ContextType, ExpectedResponseType, Direction, MessageType


class VerificationStateData(BaseModel):
    """State carried while waiting for a verification answer."""
    kind: Literal["verification"] = "verification"
    verification_message_id: Optional[str] = None
    sent_at: Optional[datetime] = None


class ReminderStateData(BaseModel):
    """State carried while waiting for a reminder confirmation."""
    kind: Literal["reminder"] = "reminder"
    reminder_id: Optional[str] = None
    medication_name: Optional[str] = None
    scheduled_time: Optional[str] = None
    confirmation_status: Optional[str] = None


class EmptyStateData(BaseModel):
    kind: Literal["empty"] = "empty"


class GenericStateData(BaseModel):
    """Fallback for state written by other producers."""
    kind: str = "generic"
    values: dict[str, Any] = Field(default_factory=dict)


StateData = Union[VerificationStateData, ReminderStateData, EmptyStateData, GenericStateData]

_STATE_DATA_TYPES = {
    "verification": VerificationStateData,
    "reminder": ReminderStateData,
    "empty": EmptyStateData,
}


def parse_state_data(raw: Optional[dict]) -> StateData:
    """Build the typed state data variant for a stored payload."""
    if not raw:
        return EmptyStateData()
    kind = raw.get("kind")
    model = _STATE_DATA_TYPES.get(kind)
    if model is not None:
        return model(**raw)
    values = {k: v for k, v in raw.items() if k != "kind"}
    return GenericStateData(kind=kind or "generic", values=values.get("values", values))


class ConversationState(BaseModel):
    """Per-patient conversation state."""
    id: str
    patient_id: str
    phone_number: str
    current_context: ContextType = ContextType.GENERAL_INQUIRY
    expected_response_type: ExpectedResponseType = ExpectedResponseType.TEXT
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[str] = None
    state_data: StateData = Field(default_factory=EmptyStateData)
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    message_count: int = 0
    is_active: bool = True
    expires_at: datetime
    attempt_count: int = 0
    context_set_at: Optional[datetime] = None
    last_clarification_sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    def is_alive(self, now: datetime) -> bool:
        """Active and not yet expired."""
        return self.is_active and self.expires_at > now


class ConversationMessage(BaseModel):
    """A stored message in a conversation."""
    id: Optional[str] = None
    conversation_state_id: Optional[str] = None
    message: str
    direction: Direction
    message_type: MessageType = MessageType.GENERAL
    intent: Optional[str] = None
    confidence: Optional[int] = Field(None, ge=0, le=100)  # percent
    processed_at: Optional[datetime] = None
    llm_model: Optional[str] = None
    llm_tokens_used: Optional[int] = None
    llm_cost: Optional[float] = None
    llm_response_time_ms: Optional[int] = None
    created_at: Optional[datetime] = None


class ConversationStats(BaseModel):
    """Aggregate counts for a patient's conversations."""
    total_conversations: int = 0
    active_conversations: int = 0
    average_message_count: float = 0.0
    context_distribution: dict[str, int] = Field(default_factory=dict)
