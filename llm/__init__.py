"""LLM client abstraction and provider orchestration layer."""

from .base_client import BaseLLMClient, Message, LLMResponse
from .errors import (
    LLMError,
    TransientLLMError,
    PermanentLLMError,
    UsageLimitExceededError,
    CircuitOpenError,
)
from .factory import create_llm_client, LLMProvider

__all__ = [
    "BaseLLMClient",
    "Message",
    "LLMResponse",
    "LLMError",
    "TransientLLMError",
    "PermanentLLMError",
    "UsageLimitExceededError",
    "CircuitOpenError",
    "create_llm_client",
    "LLMProvider",
]
