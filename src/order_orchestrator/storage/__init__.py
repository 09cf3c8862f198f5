"""Order Store + Outbox Store implementations."""

from order_orchestrator.storage.memory import InMemoryOrderStore

__all__ = ["InMemoryOrderStore"]
