"""Core domain models.

These are the canonical truth models for the service.  Stores, the engine,
the relay and the API all exchange these same types.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .enums import DeliveryState, OrderStatus, OutboxEventType
from .ids import new_id, utc_now

CENT = Decimal("0.01")


def money(value: Decimal | int | float | str) -> Decimal:
    """Round an amount to cents, half up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Order aggregate
# ---------------------------------------------------------------------------

class OrderItem(BaseModel):
    """Line item with the product name and price captured at order time."""

    id: str = Field(default_factory=new_id)
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    @classmethod
    def priced(
        cls, product_id: str, product_name: str, quantity: int, unit_price: Decimal
    ) -> OrderItem:
        unit_price = money(unit_price)
        return cls(
            product_id=product_id,
            product_name=product_name,
            quantity=quantity,
            unit_price=unit_price,
            subtotal=money(unit_price * quantity),
        )


class Order(BaseModel):
    """Order aggregate root: the order plus its line items."""

    id: str = Field(default_factory=new_id)
    client_id: str
    status: OrderStatus = OrderStatus.PENDING
    items: list[OrderItem]
    total_amount: Decimal
    shipping_address: str
    tracking_number: str | None = None
    cancellation_reason: str | None = None
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> OrderStatus:
        return OrderStatus.parse(value)

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

    def snapshot(self) -> dict[str, Any]:
        """Full order snapshot as exposed to callers (JSON-safe)."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "status": self.status.display_name,
            "total_amount": str(self.total_amount),
            "shipping_address": self.shipping_address,
            "tracking_number": self.tracking_number,
            "cancellation_reason": self.cancellation_reason,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "items": [
                {
                    "id": item.id,
                    "product_id": item.product_id,
                    "product_name": item.product_name,
                    "quantity": item.quantity,
                    "unit_price": str(item.unit_price),
                    "subtotal": str(item.subtotal),
                }
                for item in self.items
            ],
        }


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------

class OutboxEvent(BaseModel):
    """One not-yet-confirmed side effect of a committed transition.

    ``payload`` is a JSON snapshot of the broker message, never a live
    reference to the order.  ``sequence`` is assigned by the store and
    orders events within an order.
    """

    id: str = Field(default_factory=new_id)
    order_id: str
    event_type: OutboxEventType
    payload: dict[str, Any]
    created_at: datetime = Field(default_factory=utc_now)
    delivery_state: DeliveryState = DeliveryState.PENDING
    attempts: int = 0
    next_retry_at: datetime | None = None
    sequence: int = 0
    claimed_by: str | None = None
    claimed_until: datetime | None = None
    last_error: str | None = None
    delivered_at: datetime | None = None

    @property
    def is_given_up(self) -> bool:
        """Failed and no further retry scheduled: waiting for an operator."""
        return (
            self.delivery_state == DeliveryState.FAILED
            and self.next_retry_at is None
        )

    def is_due(self, now: datetime) -> bool:
        if self.delivery_state == DeliveryState.PENDING:
            return True
        if self.delivery_state == DeliveryState.FAILED:
            return self.next_retry_at is not None and self.next_retry_at <= now
        return False

    def is_leased(self, now: datetime) -> bool:
        return self.claimed_until is not None and self.claimed_until > now


# ---------------------------------------------------------------------------
# Query filter
# ---------------------------------------------------------------------------

class OrderFilter(BaseModel):
    """Filter for order listings.  All criteria are optional and combined."""

    order_id: str | None = None
    client_id: str | None = None
    start_date: datetime | date | None = None
    end_date: datetime | date | None = None

    def lower_bound(self) -> datetime | None:
        if self.start_date is None:
            return None
        return _as_utc_datetime(self.start_date)

    def upper_bound(self) -> datetime | None:
        """Exclusive bound: midnight after ``end_date`` (whole day included)."""
        if self.end_date is None:
            return None
        day = self.end_date.date() if isinstance(self.end_date, datetime) else self.end_date
        return datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)

    def matches(self, order: Order) -> bool:
        if self.order_id is not None and order.id != self.order_id:
            return False
        if self.client_id is not None and order.client_id != self.client_id:
            return False
        lower = self.lower_bound()
        if lower is not None and order.created_at < lower:
            return False
        upper = self.upper_bound()
        if upper is not None and order.created_at >= upper:
            return False
        return True


def _as_utc_datetime(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Collaborator payloads
# ---------------------------------------------------------------------------

class ItemRequest(BaseModel):
    """A requested line: product and quantity, priced by the catalog."""

    product_id: str
    quantity: int


class ProductQuote(BaseModel):
    product_id: str
    name: str
    unit_price: Decimal


class ClientContact(BaseModel):
    client_id: str
    name: str
    email: str
