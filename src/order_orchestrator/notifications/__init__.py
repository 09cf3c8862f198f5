"""Customer notifications driven by order lifecycle messages."""

from order_orchestrator.notifications.coordinator import NotificationCoordinator
from order_orchestrator.notifications.directory import StaticClientDirectory
from order_orchestrator.notifications.senders import LoggingSender, RecordingSender
from order_orchestrator.notifications.templates import Notification, render

__all__ = [
    "LoggingSender",
    "Notification",
    "NotificationCoordinator",
    "RecordingSender",
    "StaticClientDirectory",
    "render",
]
