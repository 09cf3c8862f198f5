"""Order service HTTP API (FastAPI).

Thin binding over the LifecycleEngine: request models are decoded here,
every rule is enforced by the engine, and service errors map to status
codes by ``kind``.

Usage::

    from order_orchestrator.api.app import create_app

    app = create_app(engine, outbox=store)
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from order_orchestrator import __version__
from order_orchestrator.core.errors import OrderServiceError
from order_orchestrator.core.interfaces import IOutboxStore
from order_orchestrator.core.models import ItemRequest, OrderFilter
from order_orchestrator.lifecycle.engine import LifecycleEngine
from order_orchestrator.observability.logger import trace

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[str, int] = {
    "validation": 400,
    "unknown_product": 400,
    "not_found": 404,
    "invalid_transition": 409,
    "version_conflict": 409,
    "transient": 503,
    "config": 500,
    "fatal": 500,
}


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class CreateOrderRequest(BaseModel):
    client_id: str
    shipping_address: str
    items: list[ItemRequest] = Field(default_factory=list)


class UpdateStatusRequest(BaseModel):
    status: str
    tracking_number: str | None = None
    expected_version: int | None = None


class CancelOrderRequest(BaseModel):
    reason: str
    expected_version: int | None = None


def _error_response(kind: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(kind, 500),
        content={"error": kind, "detail": detail},
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    engine: LifecycleEngine,
    outbox: IOutboxStore | None = None,
    title: str = "Order Orchestrator",
) -> FastAPI:
    """Create the order API.

    ``outbox`` is optional; when given, ``/health`` reports the backlog of
    undelivered events.
    """
    app = FastAPI(title=title, version=__version__)

    @app.middleware("http")
    async def _trace_requests(request: Request, call_next):
        with trace(request.headers.get("x-request-id")) as trace_id:
            response = await call_next(request)
        response.headers["X-Request-ID"] = trace_id
        return response

    @app.exception_handler(OrderServiceError)
    async def _service_error(_request: Request, exc: OrderServiceError) -> JSONResponse:
        return _error_response(exc.kind, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _request_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in errors
        )
        return _error_response("validation", detail or "Invalid request")

    # -- Commands ------------------------------------------------------------

    @app.post("/orders", status_code=201)
    async def create_order(req: CreateOrderRequest) -> dict[str, Any]:
        order = await engine.create_order(
            client_id=req.client_id,
            shipping_address=req.shipping_address,
            items=req.items,
        )
        return order.snapshot()

    @app.patch("/orders/{order_id}/status")
    async def update_status(order_id: str, req: UpdateStatusRequest) -> dict[str, Any]:
        order = await engine.update_status(
            order_id,
            req.status,
            tracking_number=req.tracking_number,
            expected_version=req.expected_version,
        )
        return order.snapshot()

    @app.post("/orders/{order_id}/cancel")
    async def cancel_order(order_id: str, req: CancelOrderRequest) -> dict[str, Any]:
        order = await engine.cancel_order(
            order_id, req.reason, expected_version=req.expected_version,
        )
        return order.snapshot()

    # -- Queries -------------------------------------------------------------

    @app.get("/orders")
    async def list_orders(
        order_id: str | None = None,
        client_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[dict[str, Any]]:
        orders = await engine.list_orders(
            OrderFilter(
                order_id=order_id,
                client_id=client_id,
                start_date=start_date,
                end_date=end_date,
            )
        )
        return [o.snapshot() for o in orders]

    @app.get("/orders/{order_id}")
    async def get_order(order_id: str) -> dict[str, Any]:
        order = await engine.get_order(order_id)
        return order.snapshot()

    @app.get("/health")
    async def health() -> dict[str, Any]:
        body: dict[str, Any] = {"status": "ok", "version": __version__}
        if outbox is not None:
            try:
                body["outbox_backlog"] = await outbox.pending_count()
            except OrderServiceError as exc:
                logger.warning("Health check could not read the outbox: %s", exc)
                body["status"] = "degraded"
        return body

    return app
