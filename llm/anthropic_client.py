"""Anthropic Claude LLM client implementation."""

import os
import logging
from typing import Optional, List

import anthropic

from .base_client import BaseLLMClient, Message, LLMResponse, fold_system_messages
from .errors import TransientLLMError, PermanentLLMError

logger = logging.getLogger(__name__)


def translate_anthropic_error(error: Exception) -> Exception:
    """Map an SDK exception onto the transient/permanent taxonomy."""
    if isinstance(error, (anthropic.APITimeoutError, anthropic.APIConnectionError)):
        return TransientLLMError(f"Anthropic connection error: {error}")
    if isinstance(error, anthropic.RateLimitError):
        return TransientLLMError(f"Anthropic rate limit: {error}", status_code=429)
    if isinstance(error, anthropic.APIStatusError):
        status = error.status_code
        if status >= 500 or status in (408, 409, 429):
            return TransientLLMError(f"Anthropic server error {status}: {error}", status_code=status)
        return PermanentLLMError(f"Anthropic request rejected {status}: {error}", status_code=status)
    return error


class AnthropicClient(BaseLLMClient):
    """Anthropic Claude client implementation."""

    DEFAULT_MODEL = "claude-3-5-haiku-20241022"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 30.0
    ):
        """
        Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (falls back to ANTHROPIC_API_KEY env var)
            model: Model to use (default: claude-3-5-haiku-20241022)
            timeout: Per-request timeout in seconds
        """
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.model = model or self.DEFAULT_MODEL
        self.client = None

        if self.api_key:
            # Retries are handled by the orchestration layer
            self.client = anthropic.Anthropic(api_key=self.api_key, timeout=timeout, max_retries=0)
            logger.info(f"Anthropic client initialized with model: {self.model}")
        else:
            logger.warning("No Anthropic API key provided")

    def chat(
        self,
        messages: List[Message],
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> LLMResponse:
        """Send chat completion request to Anthropic."""
        if not self.client:
            raise PermanentLLMError("Anthropic client not initialized. Check API key.")

        # Separate system message from conversation
        system_content = "\n".join(m.content for m in messages if m.role == "system")
        conversation = fold_system_messages([m for m in messages if m.role != "system"])

        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": m.role, "content": m.content} for m in conversation],
        }
        if system_content:
            kwargs["system"] = system_content.strip()

        try:
            response = self.client.messages.create(**kwargs)
        except Exception as e:
            logger.error(f"Anthropic API error: {e}")
            translated = translate_anthropic_error(e)
            if translated is e:
                raise
            raise translated from e

        content = "".join(block.text for block in response.content if block.type == "text")

        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            }

        return LLMResponse(
            content=content,
            usage=usage,
            finish_reason=response.stop_reason,
            model=self.model
        )

    def get_provider_name(self) -> str:
        """Get the provider name."""
        return "anthropic"

    def get_model_name(self) -> str:
        """Get the model name."""
        return self.model
