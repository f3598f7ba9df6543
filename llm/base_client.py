"""Base LLM client interface."""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict
from pydantic import BaseModel


class Message(BaseModel):
    """Chat message."""
    role: str  # "system", "user", "assistant"
    content: str


class LLMResponse(BaseModel):
    """Response from LLM."""
    content: str
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None
    model: Optional[str] = None


def fold_system_messages(messages: List[Message]) -> List[Message]:
    """
    Adapt a role list for providers without a system role.

    System instructions are prepended to the first user turn, leading
    assistant turns are dropped (the conversation must open with the user)
    and consecutive same-role turns are merged.

    Args:
        messages: Messages with any mix of roles

    Returns:
        Alternating user/assistant messages starting with a user turn
    """
    system_parts = [m.content for m in messages if m.role == "system"]
    turns = [m for m in messages if m.role != "system"]

    while turns and turns[0].role == "assistant":
        turns = turns[1:]

    merged: List[Message] = []
    for turn in turns:
        if merged and merged[-1].role == turn.role:
            merged[-1] = Message(role=turn.role, content=f"{merged[-1].content}\n\n{turn.content}")
        else:
            merged.append(Message(role=turn.role, content=turn.content))

    if system_parts:
        system_text = "System: " + "\n".join(system_parts)
        if merged:
            first = merged[0]
            merged[0] = Message(role="user", content=f"{system_text}\n\n{first.content}")
        else:
            merged.append(Message(role="user", content=system_text))

    return merged


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    # Providers that accept a dedicated system instruction
    supports_system_role: bool = True

    @abstractmethod
    def chat(
        self,
        messages: List[Message],
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> LLMResponse:
        """
        Send chat completion request.

        Args:
            messages: List of messages in conversation
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse with content and usage

        Raises:
            TransientLLMError: Timeouts, connection failures, rate limits, 5xx
            PermanentLLMError: Any other provider rejection
        """
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the name of the LLM provider."""
        pass

    @abstractmethod
    def get_model_name(self) -> str:
        """Get the name of the model being used."""
        pass
