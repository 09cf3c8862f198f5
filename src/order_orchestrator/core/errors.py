"""Exception hierarchy for the order service.

Every error carries a stable ``kind`` string.  The transport layer maps
kinds to its native status codes; callers branch on the class.
"""

from __future__ import annotations

from typing import Any


class OrderServiceError(Exception):
    """Base exception for all order service errors."""

    kind: str = "fatal"


# --- Configuration ---
class ConfigError(OrderServiceError):
    """Invalid or missing configuration."""

    kind = "config"


# --- Caller errors ---
class ValidationError(OrderServiceError):
    """Malformed or missing input.  Never retried automatically."""

    kind = "validation"


class UnknownProductError(ValidationError):
    """The catalog confirmed that one or more products do not exist."""

    kind = "unknown_product"

    def __init__(self, product_ids: list[str]) -> None:
        self.product_ids = list(product_ids)
        super().__init__(f"Unknown product(s): {', '.join(self.product_ids)}")


class NotFoundError(OrderServiceError):
    """The referenced order does not exist."""

    kind = "not_found"

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidTransitionError(OrderServiceError):
    """The requested status change is not permitted from the current status."""

    kind = "invalid_transition"

    def __init__(self, current: Any, requested: Any) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid transition: {_label(current)} -> {_label(requested)}"
        )


class VersionConflictError(OrderServiceError):
    """A concurrent writer committed first.  Re-read and retry."""

    kind = "version_conflict"

    def __init__(self, order_id: str, expected: int, actual: int | None) -> None:
        self.order_id = order_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Version conflict on order {order_id}: "
            f"expected {expected}, found {actual}"
        )


# --- Infrastructure ---
class TransientError(OrderServiceError):
    """Storage or broker unavailable.  Safe to retry the whole operation."""

    kind = "transient"


class FatalError(OrderServiceError):
    """Unexpected internal failure.  Surfaced, never retried silently."""

    kind = "fatal"


def _label(status: Any) -> str:
    return getattr(status, "display_name", None) or str(status)
