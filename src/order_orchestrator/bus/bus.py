"""Event bus factory.

Creates the broker client selected by ``BusConfig.backend``.
"""

from __future__ import annotations

from collections.abc import Callable

from order_orchestrator.core.config import BusConfig
from order_orchestrator.core.enums import BusBackend

from .memory_bus import MemoryEventBus
from .redis_streams import RedisStreamsBus


def create_event_bus(
    config: BusConfig,
    on_handler_error: Callable[
        [str, str, str, Exception], None
    ] | None = None,
) -> MemoryEventBus | RedisStreamsBus:
    """Create an event bus for the configured backend.

    - MEMORY: MemoryEventBus (single process, no external deps)
    - REDIS: RedisStreamsBus (persistent, consumer groups)

    Args:
        config: Bus configuration.
        on_handler_error: Optional callback ``(topic, group, msg_id, exc)``
            invoked when a subscriber handler raises.
    """
    if config.backend == BusBackend.MEMORY:
        return MemoryEventBus(on_handler_error=on_handler_error)
    return RedisStreamsBus(
        redis_url=config.redis_url,
        max_stream_length=config.max_stream_length,
        on_handler_error=on_handler_error,
    )
