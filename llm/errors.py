"""Provider error taxonomy."""

from typing import Optional


class LLMError(Exception):
    """Base class for provider orchestration failures."""


class TransientLLMError(LLMError):
    """Failure expected to clear on retry (timeout, network, rate limit, 5xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentLLMError(LLMError):
    """Failure that retrying will not fix (bad request, auth, parse)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UsageLimitExceededError(LLMError):
    """A usage ceiling blocked the call before it reached the provider."""

    def __init__(self, reason: str, queued_id: Optional[str] = None):
        super().__init__(f"Usage limits exceeded: {reason}")
        self.reason = reason
        self.queued_id = queued_id


class CircuitOpenError(LLMError):
    """The circuit breaker is open; the provider was not called."""

    def __init__(self, name: str, retry_after: float = 0.0, queued_id: Optional[str] = None):
        super().__init__(f"Circuit '{name}' is open, retry in {retry_after:.1f}s")
        self.retry_after = retry_after
        self.queued_id = queued_id

