"""Topic -> schema registry.

Maps broker topic names to their Pydantic message models and outbox event
types to the topic they are relayed on.  Used for serialization,
deserialization and routing.
"""

from __future__ import annotations

from order_orchestrator.core.enums import OutboxEventType
from order_orchestrator.core.events import (
    BaseEvent,
    OrderCancelled,
    OrderCreated,
    OrderStatusUpdated,
    StockFailed,
)

ORDER_CREATED_TOPIC = "order.created"
ORDER_STATUS_UPDATED_TOPIC = "order.status.updated"
ORDER_CANCELLED_TOPIC = "order.cancelled"
STOCK_FAILED_TOPIC = "order.failed.stock"

# Topic name -> list of event types that can appear on that topic
TOPIC_SCHEMAS: dict[str, list[type[BaseEvent]]] = {
    ORDER_CREATED_TOPIC: [OrderCreated],
    ORDER_STATUS_UPDATED_TOPIC: [OrderStatusUpdated],
    ORDER_CANCELLED_TOPIC: [OrderCancelled],
    STOCK_FAILED_TOPIC: [StockFailed],
}

# Outbox event type -> (topic, message class)
OUTBOX_ROUTES: dict[OutboxEventType, tuple[str, type[BaseEvent]]] = {
    OutboxEventType.CREATED: (ORDER_CREATED_TOPIC, OrderCreated),
    OutboxEventType.STATUS_UPDATED: (ORDER_STATUS_UPDATED_TOPIC, OrderStatusUpdated),
    OutboxEventType.CANCELLED: (ORDER_CANCELLED_TOPIC, OrderCancelled),
}

LIFECYCLE_TOPICS: tuple[str, ...] = tuple(topic for topic, _ in OUTBOX_ROUTES.values())

# Flat map: event class name -> event class (for deserialization)
EVENT_TYPE_MAP: dict[str, type[BaseEvent]] = {}
for _schemas in TOPIC_SCHEMAS.values():
    for _cls in _schemas:
        EVENT_TYPE_MAP[_cls.__name__] = _cls


def get_event_class(event_type_name: str) -> type[BaseEvent] | None:
    """Look up event class by name."""
    return EVENT_TYPE_MAP.get(event_type_name)


def route_for(event_type: OutboxEventType) -> tuple[str, type[BaseEvent]]:
    """Return ``(topic, message class)`` for an outbox event type."""
    return OUTBOX_ROUTES[event_type]
