"""Notification Coordinator.

Consumes lifecycle messages with its own consumer group and sends one
notification per message.  Redeliveries carry the same ``event_id`` and
are dropped by a bounded de-duplication window.  Failures are logged and
counted but never raised, so a broken mail path cannot stall the broker.
"""

from __future__ import annotations

import logging
from collections import OrderedDict

from order_orchestrator.bus.schemas import LIFECYCLE_TOPICS
from order_orchestrator.core.events import BaseEvent
from order_orchestrator.core.interfaces import (
    IClientDirectory,
    IEventBus,
    INotificationSender,
)
from order_orchestrator.observability.logger import trace
from order_orchestrator.observability.metrics import (
    NOTIFICATIONS_FAILED_TOTAL,
    NOTIFICATIONS_SENT_TOTAL,
)

from .templates import render

logger = logging.getLogger(__name__)


class NotificationCoordinator:
    def __init__(
        self,
        bus: IEventBus,
        directory: IClientDirectory,
        sender: INotificationSender,
        group: str = "notifications",
        dedupe_window: int = 10_000,
    ) -> None:
        self._bus = bus
        self._directory = directory
        self._sender = sender
        self._group = group
        self._dedupe_window = dedupe_window
        self._seen: OrderedDict[str, None] = OrderedDict()
        self.sent_count = 0
        self.duplicate_count = 0
        self.failure_count = 0

    async def start(self) -> None:
        for topic in LIFECYCLE_TOPICS:
            await self._bus.subscribe(topic, self._group, self.handle)
        logger.info("Notification coordinator subscribed to %s", ", ".join(LIFECYCLE_TOPICS))

    async def handle(self, event: BaseEvent) -> None:
        with trace(event.event_id):
            await self._handle(event)

    async def _handle(self, event: BaseEvent) -> None:
        if event.event_id in self._seen:
            self.duplicate_count += 1
            logger.debug("Skipping duplicate message %s", event.event_id)
            return

        kind = type(event).__name__
        try:
            client_id = getattr(event, "client_id", None)
            contact = await self._directory.get_contact(client_id) if client_id else None
            if contact is None:
                logger.warning(
                    "No contact for client %s; notification for %s dropped",
                    client_id, event.event_id,
                )
                self._remember(event.event_id)
                return

            notification = render(event, contact)
            if notification is not None:
                await self._sender.send(notification)
                self.sent_count += 1
                NOTIFICATIONS_SENT_TOTAL.labels(kind=notification.kind).inc()
            self._remember(event.event_id)
        except Exception:
            self.failure_count += 1
            NOTIFICATIONS_FAILED_TOTAL.labels(kind=kind).inc()
            logger.exception("Failed to notify for message %s (%s)", event.event_id, kind)

    def _remember(self, event_id: str) -> None:
        self._seen[event_id] = None
        while len(self._seen) > self._dedupe_window:
            self._seen.popitem(last=False)
