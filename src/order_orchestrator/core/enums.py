"""Enumerations used across the order service."""

from __future__ import annotations

from enum import Enum

from .errors import ValidationError


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: OrderStatus | str | None) -> OrderStatus:
        """Resolve a wire or stored status string to a member.

        Accepts the canonical value, the member name, the display name and
        the legacy Spanish labels, case-insensitively.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValidationError("Order status is required")
        key = str(value).strip().lower().replace(" ", "").replace("_", "")
        status = _STATUS_ALIASES.get(key)
        if status is None:
            allowed = ", ".join(s.display_name for s in cls)
            raise ValidationError(
                f"Unknown order status {value!r}; expected one of: {allowed}"
            )
        return status


_STATUS_ALIASES: dict[str, OrderStatus] = {
    "pending": OrderStatus.PENDING,
    "processing": OrderStatus.PROCESSING,
    "shipped": OrderStatus.SHIPPED,
    "delivered": OrderStatus.DELIVERED,
    "cancelled": OrderStatus.CANCELLED,
    "canceled": OrderStatus.CANCELLED,
    # Labels written by the legacy service
    "pendiente": OrderStatus.PENDING,
    "enprocesamiento": OrderStatus.PROCESSING,
    "enviado": OrderStatus.SHIPPED,
    "entregado": OrderStatus.DELIVERED,
    "cancelado": OrderStatus.CANCELLED,
}


class OutboxEventType(str, Enum):
    CREATED = "created"
    STATUS_UPDATED = "status_updated"
    CANCELLED = "cancelled"


class DeliveryState(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class StoreBackend(str, Enum):
    MEMORY = "memory"
    POSTGRES = "postgres"


class BusBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"
