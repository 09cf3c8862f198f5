"""Prometheus metrics.

Counters for the lifecycle engine, the outbox relay and the notification
coordinator.  ``start_metrics_server`` exposes them over HTTP.
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Info, start_http_server

logger = logging.getLogger(__name__)

SERVICE_INFO = Info("orders_service", "Order orchestrator information")

# ---------------------------------------------------------------------------
# Lifecycle engine
# ---------------------------------------------------------------------------

TRANSITIONS_TOTAL = Counter(
    "orders_transitions_total",
    "Committed order transitions",
    ["event_type", "status"],
)

REJECTIONS_TOTAL = Counter(
    "orders_rejections_total",
    "Rejected order operations",
    ["operation", "kind"],
)

# ---------------------------------------------------------------------------
# Outbox relay
# ---------------------------------------------------------------------------

RELAY_DELIVERED_TOTAL = Counter(
    "orders_outbox_delivered_total",
    "Outbox events acknowledged by the broker",
    ["topic"],
)

RELAY_FAILURES_TOTAL = Counter(
    "orders_outbox_failures_total",
    "Failed outbox delivery attempts",
    ["topic"],
)

RELAY_GIVEN_UP_TOTAL = Counter(
    "orders_outbox_given_up_total",
    "Outbox events that exhausted their retry budget",
    ["topic"],
)

OUTBOX_BACKLOG = Gauge(
    "orders_outbox_backlog",
    "Undelivered outbox events",
)

# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

NOTIFICATIONS_SENT_TOTAL = Counter(
    "orders_notifications_sent_total",
    "Notifications handed to the sender",
    ["kind"],
)

NOTIFICATIONS_FAILED_TOTAL = Counter(
    "orders_notifications_failed_total",
    "Notifications that failed to render or send",
    ["kind"],
)


def record_transition(event_type: str, status: str) -> None:
    TRANSITIONS_TOTAL.labels(event_type=event_type, status=status).inc()


def record_rejection(operation: str, kind: str) -> None:
    REJECTIONS_TOTAL.labels(operation=operation, kind=kind).inc()


def start_metrics_server(port: int = 9090, service: str = "order-orchestrator") -> None:
    """Start the Prometheus HTTP endpoint in a background thread."""
    SERVICE_INFO.info({"service": service})
    start_http_server(port)
    logger.info("Prometheus metrics server started on port %d", port)
