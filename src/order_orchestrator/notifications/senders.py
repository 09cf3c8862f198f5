"""Notification senders."""

from __future__ import annotations

import logging

from .templates import Notification

logger = logging.getLogger(__name__)


class LoggingSender:
    """Writes each notification to the log instead of an email gateway."""

    def __init__(self, sender_address: str = "no-reply@orders.local") -> None:
        self._sender_address = sender_address

    async def send(self, notification: Notification) -> None:
        logger.info(
            "Notification %s from %s to %s: %s",
            notification.kind,
            self._sender_address,
            notification.recipient,
            notification.subject,
        )


class RecordingSender:
    """Keeps every notification in memory."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)

    def clear(self) -> None:
        self.sent.clear()
