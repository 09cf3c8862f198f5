"""Protocol interfaces for the order service.

All collaborator boundaries are defined here as Protocol classes and are
passed in at construction time.  Implementations (in-memory, SQL, Redis,
HTTP) can be swapped without changing callers.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Coroutine, Protocol, runtime_checkable

from .events import BaseEvent
from .models import ClientContact, Order, OrderFilter, OutboxEvent, ProductQuote


# ---------------------------------------------------------------------------
# Order Store
# ---------------------------------------------------------------------------

@runtime_checkable
class IOrderStore(Protocol):
    """Durable keyed storage for Order aggregates.

    Writes always carry the outbox event they produce; both commit or
    neither does.
    """

    async def insert(self, order: Order, event: OutboxEvent) -> Order: ...

    async def commit_transition(
        self, order: Order, expected_version: int, event: OutboxEvent,
    ) -> Order:
        """Compare-and-swap on ``version``.

        Raises NotFoundError or VersionConflictError; nothing is written
        on failure.
        """
        ...

    async def get(self, order_id: str) -> Order | None: ...

    async def list(self, order_filter: OrderFilter | None = None) -> list[Order]: ...


# ---------------------------------------------------------------------------
# Outbox Store
# ---------------------------------------------------------------------------

@runtime_checkable
class IOutboxStore(Protocol):
    """Append log of pending events, co-located with the Order Store."""

    async def claim_batch(
        self, worker_id: str, limit: int, now: datetime, lease: timedelta,
    ) -> list[OutboxEvent]: ...

    async def mark_delivered(
        self, event_id: str, worker_id: str, now: datetime,
    ) -> bool: ...

    async def mark_failed(
        self,
        event_id: str,
        worker_id: str,
        attempts: int,
        next_retry_at: datetime | None,
        error: str,
    ) -> bool: ...

    async def release(self, event_id: str, worker_id: str) -> bool: ...

    async def events_for_order(self, order_id: str) -> list[OutboxEvent]: ...

    async def pending_count(self) -> int: ...

    async def list_failed(self) -> list[OutboxEvent]: ...

    async def requeue(self, event_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------

@runtime_checkable
class IEventBus(Protocol):
    """Publish/subscribe message broker client."""

    async def publish(self, topic: str, event: BaseEvent) -> None: ...

    async def subscribe(
        self,
        topic: str,
        group: str,
        handler: Callable[[BaseEvent], Coroutine[Any, Any, None]],
    ) -> None: ...

    async def start(self) -> None: ...
    async def stop(self) -> None: ...


# ---------------------------------------------------------------------------
# External lookups and side effects
# ---------------------------------------------------------------------------

@runtime_checkable
class IPriceLookup(Protocol):
    """Product catalog.  Absent products are simply missing from the result;
    transport failures raise TransientError."""

    async def quote(self, product_ids: list[str]) -> dict[str, ProductQuote]: ...


@runtime_checkable
class IClientDirectory(Protocol):
    async def get_contact(self, client_id: str) -> ClientContact | None: ...


@runtime_checkable
class INotificationSender(Protocol):
    async def send(self, notification: Any) -> None: ...
