"""Usage ledger: rolling token, cost and request ceilings."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

HOUR = 3600.0
DAY = 24 * HOUR
MONTH = 30 * DAY


class UsageLimits(BaseModel):
    """Ceilings enforced before each provider call."""
    daily_token_limit: int = 50_000
    monthly_token_limit: int = 1_000_000
    hourly_request_limit: int = 1000
    daily_cost_limit: float = 100.0
    daily_warning_ratio: float = 0.8
    monthly_warning_ratio: float = 0.9


class UsageRecord(BaseModel):
    """One completed (or fallback) provider call."""
    timestamp: float
    tokens: int = 0
    cost: float = 0.0
    model: Optional[str] = None
    latency_ms: int = 0
    operation: str = "generate"


class UsageAlert(BaseModel):
    type: str  # limit_approaching, limit_exceeded, rate_limit, cost_limit
    message: str
    severity: str  # warning, error, critical
    threshold: float
    current: float


class UsageCheck(BaseModel):
    """Outcome of an admission check."""
    allowed: bool
    reason: Optional[str] = None
    alerts: list[UsageAlert] = Field(default_factory=list)


class UsageStats(BaseModel):
    daily_tokens: int = 0
    monthly_tokens: int = 0
    hourly_requests: int = 0
    daily_cost: float = 0.0
    total_requests: int = 0


class UsageLedger(ABC):
    """Admission control and accounting for provider calls."""

    @abstractmethod
    def check(self) -> UsageCheck:
        """Decide whether another call may be made."""
        pass

    @abstractmethod
    def record(self, record: UsageRecord):
        """Account for a completed call."""
        pass

    @abstractmethod
    def stats(self) -> UsageStats:
        pass


class InMemoryUsageLedger(UsageLedger):
    """Process-local ledger with lock-guarded rolling windows."""

    def __init__(
        self,
        limits: Optional[UsageLimits] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.limits = limits or UsageLimits()
        self.clock = clock
        self._records: deque[UsageRecord] = deque()
        self._total_requests = 0
        self._lock = threading.Lock()

    def _prune(self, now: float):
        while self._records and now - self._records[0].timestamp > MONTH:
            self._records.popleft()

    def _window(self, now: float, seconds: float) -> list[UsageRecord]:
        return [r for r in self._records if now - r.timestamp <= seconds]

    def _snapshot(self, now: float) -> UsageStats:
        daily = self._window(now, DAY)
        return UsageStats(
            daily_tokens=sum(r.tokens for r in daily),
            monthly_tokens=sum(r.tokens for r in self._records),
            hourly_requests=sum(1 for r in self._window(now, HOUR) if r.operation != "fallback"),
            daily_cost=sum(r.cost for r in daily),
            total_requests=self._total_requests,
        )

    def check(self) -> UsageCheck:
        now = self.clock()
        with self._lock:
            self._prune(now)
            usage = self._snapshot(now)

        limits = self.limits
        alerts = []
        reasons = []

        if usage.daily_tokens >= limits.daily_token_limit:
            reasons.append(f"daily token limit {usage.daily_tokens}/{limits.daily_token_limit}")
            alerts.append(UsageAlert(
                type="limit_exceeded",
                message=f"Daily token limit exceeded: {usage.daily_tokens}/{limits.daily_token_limit}",
                severity="error",
                threshold=limits.daily_token_limit,
                current=usage.daily_tokens,
            ))
        elif usage.daily_tokens >= limits.daily_token_limit * limits.daily_warning_ratio:
            alerts.append(UsageAlert(
                type="limit_approaching",
                message=f"Daily token limit approaching: {usage.daily_tokens}/{limits.daily_token_limit}",
                severity="warning",
                threshold=limits.daily_token_limit,
                current=usage.daily_tokens,
            ))

        if usage.monthly_tokens >= limits.monthly_token_limit:
            reasons.append(f"monthly token limit {usage.monthly_tokens}/{limits.monthly_token_limit}")
            alerts.append(UsageAlert(
                type="limit_exceeded",
                message=f"Monthly token limit exceeded: {usage.monthly_tokens}/{limits.monthly_token_limit}",
                severity="critical",
                threshold=limits.monthly_token_limit,
                current=usage.monthly_tokens,
            ))
        elif usage.monthly_tokens >= limits.monthly_token_limit * limits.monthly_warning_ratio:
            alerts.append(UsageAlert(
                type="limit_approaching",
                message=f"Monthly token limit approaching: {usage.monthly_tokens}/{limits.monthly_token_limit}",
                severity="warning",
                threshold=limits.monthly_token_limit,
                current=usage.monthly_tokens,
            ))

        if usage.hourly_requests >= limits.hourly_request_limit:
            reasons.append(f"rate limit {usage.hourly_requests}/{limits.hourly_request_limit} requests/hour")
            alerts.append(UsageAlert(
                type="rate_limit",
                message=f"Rate limit exceeded: {usage.hourly_requests}/{limits.hourly_request_limit} requests/hour",
                severity="error",
                threshold=limits.hourly_request_limit,
                current=usage.hourly_requests,
            ))

        if usage.daily_cost >= limits.daily_cost_limit:
            reasons.append(f"daily cost ${usage.daily_cost:.2f}/${limits.daily_cost_limit:.2f}")
            alerts.append(UsageAlert(
                type="cost_limit",
                message=f"High cost: ${usage.daily_cost:.2f} in last 24 hours",
                severity="error",
                threshold=limits.daily_cost_limit,
                current=usage.daily_cost,
            ))

        for alert in alerts:
            if alert.severity == "warning":
                logger.warning(alert.message)
            else:
                logger.error(alert.message)

        if reasons:
            return UsageCheck(allowed=False, reason="; ".join(reasons), alerts=alerts)
        return UsageCheck(allowed=True, alerts=alerts)

    def record(self, record: UsageRecord):
        with self._lock:
            self._records.append(record)
            self._total_requests += 1
            self._prune(self.clock())

    def stats(self) -> UsageStats:
        now = self.clock()
        with self._lock:
            self._prune(now)
            return self._snapshot(now)
