"""Order status state machine.

    PENDING -> [PROCESSING|CANCELLED]
    PROCESSING -> [SHIPPED|CANCELLED]
    SHIPPED -> DELIVERED

PENDING is only ever the initial status.  DELIVERED and CANCELLED are
terminal.  Invalid transitions raise InvalidTransitionError.
"""

from __future__ import annotations

from order_orchestrator.core.enums import OrderStatus
from order_orchestrator.core.errors import InvalidTransitionError

TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})

# Valid transitions: from -> set of valid targets
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def allowed_targets(status: OrderStatus) -> frozenset[OrderStatus]:
    return TRANSITIONS.get(status, frozenset())


def is_allowed(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in allowed_targets(current)


def check_transition(current: OrderStatus, requested: OrderStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> requested`` is legal."""
    if not is_allowed(current, requested):
        raise InvalidTransitionError(current, requested)
