"""Lifecycle Engine: the order state machine with transactional outbox.

Every accepted operation builds the new aggregate and exactly one outbox
event, then hands both to the store in a single atomic commit.  There is
never a committed status change without its pending event, nor an event
for a change that did not commit.

Concurrency is optimistic: the commit is a compare-and-swap on
``Order.version``.  The first committer wins; the others receive
VersionConflictError and must re-read and retry.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from order_orchestrator.core.clock import IClock, WallClock
from order_orchestrator.core.enums import OrderStatus, OutboxEventType
from order_orchestrator.core.errors import (
    FatalError,
    NotFoundError,
    OrderServiceError,
    TransientError,
    UnknownProductError,
    ValidationError,
    VersionConflictError,
)
from order_orchestrator.core.events import (
    OrderCancelled,
    OrderCreated,
    OrderLine,
    OrderStatusUpdated,
)
from order_orchestrator.core.interfaces import IOrderStore, IPriceLookup
from order_orchestrator.core.models import (
    ItemRequest,
    Order,
    OrderFilter,
    OrderItem,
    OutboxEvent,
    money,
)
from order_orchestrator.observability.metrics import record_rejection, record_transition

from .state_machine import check_transition

logger = logging.getLogger(__name__)

MAX_QUANTITY_PER_ITEM = 1000
MIN_ADDRESS_LENGTH = 10
MAX_ADDRESS_LENGTH = 500
MAX_TRACKING_LENGTH = 100
MAX_REASON_LENGTH = 500


class LifecycleEngine:
    """Validates and applies order operations.

    Args:
        store: Order Store co-located with the Outbox Store.
        price_lookup: Catalog used to snapshot product names and prices.
        clock: Time source for ``created_at``/``updated_at``.
        commit_timeout: Seconds before a store commit is abandoned and
            reported as TransientError.
        lookup_timeout: Seconds before a catalog lookup is abandoned.
    """

    def __init__(
        self,
        store: IOrderStore,
        price_lookup: IPriceLookup,
        clock: IClock | None = None,
        commit_timeout: float = 5.0,
        lookup_timeout: float = 5.0,
    ) -> None:
        self._store = store
        self._prices = price_lookup
        self._clock = clock or WallClock()
        self._commit_timeout = commit_timeout
        self._lookup_timeout = lookup_timeout

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_order(
        self,
        client_id: str,
        shipping_address: str,
        items: Sequence[ItemRequest | dict[str, Any]],
    ) -> Order:
        """Price the items, persist a Pending order and stage OrderCreated."""
        with self._rejections("create_order"):
            client_id = _required(client_id, "Client id")
            address = _required(shipping_address, "Shipping address")
            if not MIN_ADDRESS_LENGTH <= len(address) <= MAX_ADDRESS_LENGTH:
                raise ValidationError(
                    f"Shipping address must be between {MIN_ADDRESS_LENGTH} "
                    f"and {MAX_ADDRESS_LENGTH} characters"
                )
            requests = _validate_items(items)

            quotes = await self._quote([r.product_id for r in requests])
            missing = [r.product_id for r in requests if r.product_id not in quotes]
            if missing:
                raise UnknownProductError(list(dict.fromkeys(missing)))

            order_items: list[OrderItem] = []
            for request in requests:
                quote = quotes[request.product_id]
                if quote.unit_price < 0:
                    raise FatalError(
                        f"Catalog returned a negative price for {request.product_id}"
                    )
                order_items.append(
                    OrderItem.priced(
                        product_id=request.product_id,
                        product_name=quote.name,
                        quantity=request.quantity,
                        unit_price=quote.unit_price,
                    )
                )

            now = self._clock.now()
            order = Order(
                client_id=client_id,
                status=OrderStatus.PENDING,
                items=order_items,
                total_amount=money(sum((i.subtotal for i in order_items), start=money(0))),
                shipping_address=address,
                version=0,
                created_at=now,
                updated_at=now,
            )
            event = _stage(
                order,
                OutboxEventType.CREATED,
                OrderCreated,
                now,
                client_id=order.client_id,
                items=[
                    OrderLine(product_id=i.product_id, quantity=i.quantity)
                    for i in order.items
                ],
                total_amount=order.total_amount,
            )

            created = await self._commit(self._store.insert(order, event))

        record_transition(OutboxEventType.CREATED.value, created.status.value)
        logger.info(
            "Order %s created for client %s: %d item(s), total=%s",
            created.id, created.client_id, len(created.items), created.total_amount,
        )
        return created

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus | str,
        tracking_number: str | None = None,
        expected_version: int | None = None,
    ) -> Order:
        """Move an order forward along the transition graph.

        ``expected_version`` defaults to the version just read, so a writer
        racing between this read and the commit is still detected.
        Cancellation needs a reason and goes through ``cancel_order``.
        """
        with self._rejections("update_status"):
            requested = OrderStatus.parse(new_status)
            order = await self._load(order_id)
            version = self._expect(order, expected_version)
            check_transition(order.status, requested)

            if requested == OrderStatus.CANCELLED:
                raise ValidationError(
                    "Cancelling an order requires a reason; use cancel_order"
                )

            tracking = order.tracking_number
            if requested == OrderStatus.SHIPPED:
                tracking = _required(tracking_number, "Tracking number")
                if len(tracking) > MAX_TRACKING_LENGTH:
                    raise ValidationError(
                        f"Tracking number cannot exceed {MAX_TRACKING_LENGTH} characters"
                    )

            now = self._advance(order.updated_at)
            updated = order.model_copy(
                update={
                    "status": requested,
                    "tracking_number": tracking,
                    "version": version + 1,
                    "updated_at": now,
                },
            )
            event = _stage(
                updated,
                OutboxEventType.STATUS_UPDATED,
                OrderStatusUpdated,
                now,
                client_id=updated.client_id,
                old_status=order.status,
                new_status=requested,
                tracking_number=updated.tracking_number,
            )

            committed = await self._commit(
                self._store.commit_transition(updated, version, event)
            )

        record_transition(OutboxEventType.STATUS_UPDATED.value, committed.status.value)
        logger.info(
            "Order %s: %s -> %s (v%d)",
            committed.id, order.status.value, committed.status.value, committed.version,
        )
        return committed

    async def cancel_order(
        self,
        order_id: str,
        reason: str,
        expected_version: int | None = None,
    ) -> Order:
        """Cancel a Pending or Processing order and stage OrderCancelled."""
        with self._rejections("cancel_order"):
            order = await self._load(order_id)
            version = self._expect(order, expected_version)
            check_transition(order.status, OrderStatus.CANCELLED)
            reason = _required(reason, "Cancellation reason")
            if len(reason) > MAX_REASON_LENGTH:
                raise ValidationError(
                    f"Cancellation reason cannot exceed {MAX_REASON_LENGTH} characters"
                )

            now = self._advance(order.updated_at)
            cancelled = order.model_copy(
                update={
                    "status": OrderStatus.CANCELLED,
                    "cancellation_reason": reason,
                    "version": version + 1,
                    "updated_at": now,
                },
            )
            event = _stage(
                cancelled,
                OutboxEventType.CANCELLED,
                OrderCancelled,
                now,
                client_id=cancelled.client_id,
                previous_status=order.status,
                cancellation_reason=reason,
            )

            committed = await self._commit(
                self._store.commit_transition(cancelled, version, event)
            )

        record_transition(OutboxEventType.CANCELLED.value, committed.status.value)
        logger.info(
            "Order %s cancelled from %s (v%d): %s",
            committed.id, order.status.value, committed.version, reason,
        )
        return committed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(self, order_id: str) -> Order:
        with self._rejections("get_order"):
            return await self._load(order_id)

    async def list_orders(self, order_filter: OrderFilter | None = None) -> list[Order]:
        """Orders matching ``order_filter``, most recently created first."""
        with self._rejections("list_orders"):
            order_filter = order_filter or OrderFilter()
            lower, upper = order_filter.lower_bound(), order_filter.upper_bound()
            if lower is not None and upper is not None and lower >= upper:
                raise ValidationError("start_date must not be after end_date")
            return await self._store.list(order_filter)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, order_id: str) -> Order:
        order_id = _required(order_id, "Order id")
        order = await self._store.get(order_id)
        if order is None:
            raise NotFoundError(order_id)
        return order

    async def _quote(self, product_ids: list[str]) -> dict[str, Any]:
        unique = list(dict.fromkeys(product_ids))
        try:
            return await asyncio.wait_for(
                self._prices.quote(unique), timeout=self._lookup_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransientError(
                f"Price lookup timed out after {self._lookup_timeout}s"
            ) from exc

    async def _commit(self, operation: Awaitable[Order]) -> Order:
        try:
            return await asyncio.wait_for(operation, timeout=self._commit_timeout)
        except asyncio.TimeoutError as exc:
            raise TransientError(
                f"Order store commit timed out after {self._commit_timeout}s"
            ) from exc

    @staticmethod
    def _expect(order: Order, expected_version: int | None) -> int:
        if expected_version is None:
            return order.version
        if expected_version != order.version:
            raise VersionConflictError(order.id, expected_version, order.version)
        return expected_version

    def _advance(self, previous: datetime) -> datetime:
        return max(self._clock.now(), previous)

    @contextmanager
    def _rejections(self, operation: str) -> Iterator[None]:
        try:
            yield
        except OrderServiceError as exc:
            record_rejection(operation, exc.kind)
            logger.warning("%s rejected (%s): %s", operation, exc.kind, exc)
            raise
        except Exception as exc:
            record_rejection(operation, FatalError.kind)
            logger.exception("%s failed unexpectedly", operation)
            raise FatalError(f"{operation} failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _required(value: Any, label: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} is required")
    return str(value).strip()


def _validate_items(items: Sequence[ItemRequest | dict[str, Any]] | None) -> list[ItemRequest]:
    if not items:
        raise ValidationError("An order must contain at least one item")
    requests: list[ItemRequest] = []
    for position, raw in enumerate(items, start=1):
        if isinstance(raw, ItemRequest):
            product_id, quantity = raw.product_id, raw.quantity
        elif isinstance(raw, dict):
            product_id, quantity = raw.get("product_id"), raw.get("quantity")
        else:
            raise ValidationError(f"Item {position} is malformed")
        product_id = _required(product_id, f"Item {position} product id")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError(f"Item {position} quantity must be an integer")
        if quantity <= 0:
            raise ValidationError(f"Item {position} quantity must be greater than 0")
        if quantity > MAX_QUANTITY_PER_ITEM:
            raise ValidationError(
                f"Item {position} quantity cannot exceed {MAX_QUANTITY_PER_ITEM}"
            )
        requests.append(ItemRequest(product_id=product_id, quantity=quantity))
    return requests


def _stage(
    order: Order,
    event_type: OutboxEventType,
    message_cls: type,
    now: datetime,
    **fields: Any,
) -> OutboxEvent:
    """Build the outbox event for a transition.

    The broker message is rendered now and stored as a JSON snapshot; its
    ``event_id`` is the outbox event id, reused on every delivery attempt.
    """
    event = OutboxEvent(order_id=order.id, event_type=event_type, payload={}, created_at=now)
    message = message_cls(event_id=event.id, timestamp=now, order_id=order.id, **fields)
    event.payload = message.model_dump(mode="json")
    return event
