"""Capped exponential backoff for outbox delivery retries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from order_orchestrator.core.config import RelayConfig


@dataclass(frozen=True)
class RetryPolicy:
    """``delay(n) = min(max_seconds, base_seconds * 2 ** (n - 1))``.

    After ``max_attempts`` failed attempts no retry is scheduled and the
    event stays Failed until an operator requeues it.
    """

    base_seconds: float = 1.0
    max_seconds: float = 300.0
    max_attempts: int = 10

    @classmethod
    def from_config(cls, config: RelayConfig) -> RetryPolicy:
        return cls(
            base_seconds=config.base_backoff_seconds,
            max_seconds=config.max_backoff_seconds,
            max_attempts=config.max_attempts,
        )

    def delay(self, attempts: int) -> timedelta:
        exponent = min(max(attempts - 1, 0), 32)
        seconds = min(self.max_seconds, self.base_seconds * (2 ** exponent))
        return timedelta(seconds=seconds)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    def next_retry_at(self, attempts: int, now: datetime) -> datetime | None:
        """When to retry after ``attempts`` failures, or None to give up."""
        if self.exhausted(attempts):
            return None
        return now + self.delay(attempts)
