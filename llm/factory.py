"""Provider registry and client construction."""

import logging
from enum import Enum
from typing import Optional, Type

from .base_client import BaseLLMClient
from .openai_client import OpenAIClient
from .anthropic_client import AnthropicClient

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    """Supported generative providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


PROVIDER_CLIENTS: dict[LLMProvider, Type[BaseLLMClient]] = {
    LLMProvider.OPENAI: OpenAIClient,
    LLMProvider.ANTHROPIC: AnthropicClient,
}


def resolve_provider(name) -> LLMProvider:
    """Parse a provider name, case-insensitively."""
    try:
        return LLMProvider(str(getattr(name, "value", name)).strip().lower())
    except ValueError:
        supported = ", ".join(p.value for p in LLMProvider)
        raise ValueError(f"Unsupported LLM provider: {name!r} (expected one of: {supported})")


def create_llm_client(
    provider,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    timeout: float = 30.0,
) -> BaseLLMClient:
    """
    Build the client for a provider.

    SDK-level retries are disabled in every client; the service layer owns
    retrying, so each provider call is attempted exactly once here.

    Args:
        provider: LLMProvider or its name
        api_key: Provider API key (clients fall back to their env var)
        model: Model override; each client has its own default
        timeout: Per-request timeout in seconds

    Returns:
        Configured client

    Raises:
        ValueError: If the provider is not supported
    """
    client_cls = PROVIDER_CLIENTS[resolve_provider(provider)]
    client = client_cls(api_key=api_key, model=model, timeout=timeout)
    logger.debug(f"Created {client.get_provider_name()} client for model {client.get_model_name()}")
    return client
