"""Consumer for ``order.failed.stock`` messages from the inventory service.

A stock failure never moves an order by itself.  The listener validates
and records the signal so an inventory-reconciliation flow (or an
operator) can act on it.
"""

from __future__ import annotations

import logging
from collections import deque

from order_orchestrator.bus.schemas import STOCK_FAILED_TOPIC
from order_orchestrator.core.events import BaseEvent, StockFailed
from order_orchestrator.core.interfaces import IEventBus

logger = logging.getLogger(__name__)


class StockFailureListener:
    def __init__(
        self,
        bus: IEventBus,
        group: str = "orders-stock",
        history_size: int = 1000,
    ) -> None:
        self._bus = bus
        self._group = group
        self._received: deque[StockFailed] = deque(maxlen=history_size)

    async def start(self) -> None:
        await self._bus.subscribe(STOCK_FAILED_TOPIC, self._group, self.handle)
        logger.info("Subscribed to %s", STOCK_FAILED_TOPIC)

    async def handle(self, event: BaseEvent) -> None:
        if not isinstance(event, StockFailed):
            logger.warning(
                "Ignoring %s on %s", type(event).__name__, STOCK_FAILED_TOPIC,
            )
            return
        self._received.append(event)
        logger.warning(
            "Stock failure for order %s: %s (unavailable: %s)",
            event.order_id,
            event.reason,
            ", ".join(event.unavailable_products) or "-",
        )

    @property
    def received(self) -> list[StockFailed]:
        return list(self._received)
