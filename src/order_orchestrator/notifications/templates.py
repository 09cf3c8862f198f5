"""Plain-text notification templates.

One template per customer-visible lifecycle step.  ``render`` returns
None for messages that warrant no notification.
"""

from __future__ import annotations

from pydantic import BaseModel

from order_orchestrator.core.enums import OrderStatus
from order_orchestrator.core.events import (
    BaseEvent,
    OrderCancelled,
    OrderCreated,
    OrderStatusUpdated,
)
from order_orchestrator.core.models import ClientContact

SIGNATURE = "Regards,\nThe Orders Team"


class Notification(BaseModel):
    """A rendered message ready for a sender."""

    event_id: str
    order_id: str
    kind: str
    recipient: str
    recipient_name: str
    subject: str
    body: str


def short_id(order_id: str) -> str:
    return order_id[:8]


def render(event: BaseEvent, contact: ClientContact) -> Notification | None:
    """Render the notification for ``event``, or None if there is none."""
    if isinstance(event, OrderCreated):
        kind = "created"
        subject = f"Order confirmation #{short_id(event.order_id)}"
        lines = [
            f"Thank you for your purchase, {contact.name}!",
            "Your order has been received.",
            "",
            f"Order number: {event.order_id}",
            f"Total: ${event.total_amount:,.2f}",
            f"Date: {event.timestamp:%d/%m/%Y %H:%M} UTC",
            "",
            "You will receive updates as your order progresses.",
        ]
    elif isinstance(event, OrderStatusUpdated):
        rendered = _render_status(event, contact)
        if rendered is None:
            return None
        kind, subject, lines = rendered
    elif isinstance(event, OrderCancelled):
        kind = "cancelled"
        subject = f"Your order has been cancelled #{short_id(event.order_id)}"
        lines = [
            f"Hello {contact.name},",
            f"Your order #{short_id(event.order_id)} has been cancelled.",
            "",
            f"Reason: {event.cancellation_reason}",
            "",
            "If you have questions, please contact us.",
        ]
    else:
        return None

    return Notification(
        event_id=event.event_id,
        order_id=event.order_id,
        kind=kind,
        recipient=contact.email,
        recipient_name=contact.name,
        subject=subject,
        body="\n".join([*lines, "", SIGNATURE]),
    )


def _render_status(
    event: OrderStatusUpdated, contact: ClientContact,
) -> tuple[str, str, list[str]] | None:
    ref = short_id(event.order_id)
    if event.new_status == OrderStatus.PROCESSING:
        return "processing", f"Your order is being processed #{ref}", [
            f"Hello {contact.name},",
            f"Your order #{ref} is being prepared.",
            "We will let you know when it ships.",
        ]
    if event.new_status == OrderStatus.SHIPPED:
        return "shipped", f"Your order has shipped #{ref}", [
            f"Your order is on its way, {contact.name}!",
            f"Order #{ref} has been shipped.",
            "",
            f"Tracking number: {event.tracking_number or 'n/a'}",
        ]
    if event.new_status == OrderStatus.DELIVERED:
        return "delivered", f"Your order has been delivered #{ref}", [
            f"Hello {contact.name},",
            f"Your order #{ref} has been delivered.",
            "We hope you enjoy your purchase.",
        ]
    return None
