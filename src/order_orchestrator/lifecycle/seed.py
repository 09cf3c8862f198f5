"""Development data: sample orders created through the Lifecycle Engine.

Every sample goes through the normal commands, so each step stages its
outbox event and a running relay will publish the whole history.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence

from order_orchestrator.core.enums import OrderStatus
from order_orchestrator.core.models import Order

from .engine import LifecycleEngine

logger = logging.getLogger(__name__)

SAMPLE_CLIENTS = ("client-1001", "client-1002", "client-1003")

# Forward path; a sample stops at a random point along it
_PATH = (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED)


async def seed_orders(
    engine: LifecycleEngine,
    product_ids: Sequence[str],
    count: int = 10,
    rng: random.Random | None = None,
) -> list[Order]:
    """Create ``count`` sample orders plus one cancelled order.

    Does nothing when the store already holds orders.
    """
    if not product_ids:
        raise ValueError("seed_orders needs at least one product id")
    if await engine.list_orders():
        logger.info("Store already holds orders; skipping seed")
        return []

    rng = rng or random.Random()
    orders: list[Order] = []
    for _ in range(count):
        items = [
            {"product_id": rng.choice(product_ids), "quantity": rng.randint(1, 5)}
            for _ in range(rng.randint(1, 4))
        ]
        order = await engine.create_order(
            rng.choice(SAMPLE_CLIENTS),
            f"Calle Ejemplo {rng.randint(100, 999)}, Antofagasta, Chile",
            items,
        )
        for status in _PATH[: rng.randint(0, len(_PATH))]:
            tracking = (
                f"TRACK-{rng.randint(100000, 999999)}"
                if status == OrderStatus.SHIPPED
                else None
            )
            order = await engine.update_status(order.id, status, tracking_number=tracking)
        orders.append(order)

    cancelled = await engine.create_order(
        SAMPLE_CLIENTS[0],
        "Av. Principal 456, Antofagasta, Chile",
        [{"product_id": product_ids[0], "quantity": 2}],
    )
    orders.append(
        await engine.cancel_order(cancelled.id, "Customer changed their mind")
    )
    logger.info("Seeded %d sample orders", len(orders))
    return orders
