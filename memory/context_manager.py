"""Conversation context assembly for LLM calls."""

import logging
from typing import List, Optional

from .sqlite_store import ConversationStateStore
from .models import ConversationState
from llm.base_client import Message
from llm.prompts import PromptContext
from schemas.collaborators import PatientContext
from schemas.conversation import Direction

logger = logging.getLogger(__name__)


def describe_reminder(reminder) -> str:
    parts = [reminder.medication_name or reminder.message or "Obat"]
    if reminder.scheduled_time:
        parts.append(f"pukul {reminder.scheduled_time}")
    return " ".join(parts)


class ConversationContextManager:
    """Builds prompt context from stored history and patient data."""

    MAX_CONTEXT_TURNS = 10  # Maximum turns to include in context

    def __init__(self, store: ConversationStateStore, max_turns: int = MAX_CONTEXT_TURNS):
        """
        Initialize context manager.

        Args:
            store: Conversation state store
            max_turns: Maximum stored messages replayed to the provider
        """
        self.store = store
        self.max_turns = max_turns

    def get_context_messages(self, conversation_id: str) -> List[Message]:
        """
        Recent messages as provider turns, oldest first.

        Inbound messages become user turns, outbound ones assistant turns.
        """
        history = self.store.history(conversation_id, limit=self.max_turns)
        return [
            Message(
                role="user" if m.direction == Direction.INBOUND else "assistant",
                content=m.message,
            )
            for m in history
        ]

    def build_prompt_context(
        self,
        state: ConversationState,
        patient: Optional[PatientContext] = None,
        patient_name: Optional[str] = None,
    ) -> PromptContext:
        """
        Assemble everything prompts need about a patient.

        Args:
            state: Current conversation state
            patient: Patient record and reminders, if the lookup found one
            patient_name: Name to use when no patient record is available

        Returns:
            PromptContext
        """
        reminders = []
        name = patient_name
        verification_status = None
        if patient is not None:
            name = patient.patient.name
            verification_status = patient.patient.verification_status
            reminders = [describe_reminder(r) for r in patient.active_reminders]

        return PromptContext(
            patient_id=state.patient_id,
            phone_number=state.phone_number,
            patient_name=name,
            verification_status=verification_status,
            current_context=state.current_context.value,
            active_reminders=reminders,
            history=self.get_context_messages(state.id),
        )
