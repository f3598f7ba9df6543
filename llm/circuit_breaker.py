"""Thread-safe circuit breaker."""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel

from .errors import CircuitOpenError
from .retry import is_transient_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds
    success_threshold: int = 3


class CircuitBreakerStats(BaseModel):
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: Optional[float] = None


class CircuitBreaker:
    """
    Fails fast after repeated transient failures.

    Closed -> open after `failure_threshold` consecutive transient failures.
    Open -> half-open once `reset_timeout` has elapsed. Half-open closes after
    `success_threshold` successes and reopens on the first failure.
    Permanent errors pass through without counting.
    """

    def __init__(
        self,
        name: str = "llm",
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        counts_as_failure: Callable[[BaseException], bool] = is_transient_error,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.clock = clock
        self.counts_as_failure = counts_as_failure
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        logger.info(f"Circuit breaker '{name}' initialized: {self.config.model_dump()}")

    def _refresh(self):
        # Caller holds the lock
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self.clock() - self._last_failure_time >= self.config.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                logger.info(f"Circuit breaker '{self.name}' HALF_OPEN")

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def retry_after(self) -> float:
        with self._lock:
            if self._state != CircuitState.OPEN or self._last_failure_time is None:
                return 0.0
            elapsed = self.clock() - self._last_failure_time
            return max(self.config.reset_timeout - elapsed, 0.0)

    def before_call(self):
        """Raise CircuitOpenError if calls are currently blocked."""
        with self._lock:
            self._refresh()
            if self._state == CircuitState.OPEN:
                elapsed = self.clock() - (self._last_failure_time or 0.0)
                retry_after = max(self.config.reset_timeout - elapsed, 0.0)
                logger.warning(f"Circuit breaker '{self.name}' OPEN, failing fast")
                raise CircuitOpenError(self.name, retry_after)

    def record_success(self):
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._reset()
                    logger.info(f"Circuit breaker '{self.name}' CLOSED after recovery")
            else:
                self._failure_count = 0

    def record_failure(self):
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self.clock()
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit breaker '{self.name}' OPENED again (failed in half-open)")
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    f"Circuit breaker '{self.name}' OPENED after {self._failure_count} failures"
                )

    def call(self, fn: Callable[[], T]) -> T:
        """Run fn through the breaker."""
        self.before_call()
        try:
            result = fn()
        except Exception as e:
            if self.counts_as_failure(e):
                self.record_failure()
            raise
        self.record_success()
        return result

    def _reset(self):
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None

    def force_reset(self):
        with self._lock:
            self._reset()
        logger.info(f"Circuit breaker '{self.name}' FORCE RESET")

    def stats(self) -> CircuitBreakerStats:
        with self._lock:
            self._refresh()
            return CircuitBreakerStats(
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_failure_time=self._last_failure_time,
            )
