"""Broker clients: in-memory and Redis Streams, plus the topic registry."""

from order_orchestrator.bus.bus import create_event_bus

__all__ = ["create_event_bus"]
