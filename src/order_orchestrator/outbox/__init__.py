"""Transactional outbox delivery."""

from order_orchestrator.outbox.backoff import RetryPolicy
from order_orchestrator.outbox.relay import OutboxRelay, RelayStats

__all__ = ["OutboxRelay", "RelayStats", "RetryPolicy"]
