"""OpenAI LLM client implementation."""

import os
import logging
from typing import Optional, List

import openai

from .base_client import BaseLLMClient, Message, LLMResponse
from .errors import TransientLLMError, PermanentLLMError

logger = logging.getLogger(__name__)


def translate_openai_error(error: Exception) -> Exception:
    """Map an SDK exception onto the transient/permanent taxonomy."""
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientLLMError(f"OpenAI connection error: {error}")
    if isinstance(error, openai.RateLimitError):
        return TransientLLMError(f"OpenAI rate limit: {error}", status_code=429)
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        if status >= 500 or status in (408, 409, 429):
            return TransientLLMError(f"OpenAI server error {status}: {error}", status_code=status)
        return PermanentLLMError(f"OpenAI request rejected {status}: {error}", status_code=status)
    return error


class OpenAIClient(BaseLLMClient):
    """OpenAI GPT client implementation."""

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 30.0
    ):
        """
        Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (falls back to OPENAI_API_KEY env var)
            model: Model to use (default: gpt-4o-mini)
            timeout: Per-request timeout in seconds
        """
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.model = model or self.DEFAULT_MODEL
        self.client = None

        if self.api_key:
            self.client = openai.OpenAI(api_key=self.api_key, timeout=timeout, max_retries=0)
            logger.info(f"OpenAI client initialized with model: {self.model}")
        else:
            logger.warning("No OpenAI API key provided")

    def chat(
        self,
        messages: List[Message],
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> LLMResponse:
        """Send chat completion request to OpenAI."""
        if not self.client:
            raise PermanentLLMError("OpenAI client not initialized. Check API key.")

        openai_messages = [{"role": m.role, "content": m.content} for m in messages]

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=openai_messages,
                temperature=temperature,
                max_completion_tokens=max_tokens,
            )
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            translated = translate_openai_error(e)
            if translated is e:
                raise
            raise translated from e

        choice = response.choices[0]

        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=choice.message.content or "",
            usage=usage,
            finish_reason=choice.finish_reason,
            model=self.model
        )

    def get_provider_name(self) -> str:
        """Get the provider name."""
        return "openai"

    def get_model_name(self) -> str:
        """Get the model name."""
        return self.model
