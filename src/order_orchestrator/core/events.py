"""Broker message schemas.

All messages inherit from BaseEvent and are Pydantic models.  The
``event_id`` of a published message is the id of the outbox event it was
relayed from, so redeliveries carry the same id and consumers can
de-duplicate on it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import OrderStatus
from .ids import new_id, utc_now


class BaseEvent(BaseModel):
    """Base for all messages.  Provides identity and time."""

    event_id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    source_module: str = ""


class OrderLine(BaseModel):
    product_id: str
    quantity: int


# ===========================================================================
# Published: order lifecycle
# ===========================================================================

class OrderCreated(BaseEvent):
    source_module: str = "orders"
    order_id: str
    client_id: str
    items: list[OrderLine]
    total_amount: Decimal


class OrderStatusUpdated(BaseEvent):
    source_module: str = "orders"
    order_id: str
    client_id: str
    old_status: OrderStatus
    new_status: OrderStatus
    tracking_number: str | None = None


class OrderCancelled(BaseEvent):
    source_module: str = "orders"
    order_id: str
    client_id: str
    previous_status: OrderStatus
    cancellation_reason: str


# ===========================================================================
# Consumed: inventory
# ===========================================================================

class StockFailed(BaseEvent):
    source_module: str = "inventory"
    order_id: str
    reason: str
    unavailable_products: list[str] = Field(default_factory=list)
