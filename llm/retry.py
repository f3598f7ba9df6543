"""Bounded retry with exponential backoff and jitter."""

import logging
import random
import time
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel

from .errors import TransientLLMError, PermanentLLMError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MESSAGES = [
    "timeout",
    "timed out",
    "network",
    "connection",
    "temporary",
    "rate limit",
    "server error",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
    "too many requests",
    "overloaded",
]


class RetryPolicy(BaseModel):
    """Backoff parameters."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    jitter: bool = True
    name: str = "llm"

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Delay before the retry following `attempt` (1-based)."""
        delay = min(self.base_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)
        if self.jitter:
            # +/- 25%
            delay += (rng() * 2 - 1) * delay * 0.25
        return max(delay, 0.0)


def is_transient_error(error: BaseException) -> bool:
    """Whether an error is worth retrying."""
    if isinstance(error, TransientLLMError):
        return True
    if isinstance(error, PermanentLLMError):
        return False
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in RETRYABLE_MESSAGES)


def with_retry(
    fn: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
    should_retry: Callable[[BaseException], bool] = is_transient_error,
) -> T:
    """
    Call fn, retrying transient failures.

    Args:
        fn: Zero-argument callable
        policy: Backoff parameters
        sleep: Sleep function (injectable for tests)
        should_retry: Predicate deciding whether an error is retryable

    Returns:
        fn's result

    Raises:
        The last error once attempts are exhausted or the error is not retryable
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as e:
            logger.warning(f"{policy.name} attempt {attempt}/{policy.max_attempts} failed: {e}")
            if attempt >= policy.max_attempts or not should_retry(e):
                raise
            delay = policy.delay_for(attempt)
            logger.info(f"{policy.name} waiting {delay:.2f}s before retry {attempt + 1}")
            sleep(delay)
