"""Test HTTP routes, status codes and error mapping of the order API."""

from __future__ import annotations

import pytest
from starlette.testclient import TestClient

from order_orchestrator.api.app import create_app

ADDRESS = "Av. Siempre Viva 742, Springfield"


@pytest.fixture
def client(engine, store):
    with TestClient(create_app(engine, outbox=store)) as test_client:
        yield test_client


def _create(client, client_id="client-1", quantity=2):
    resp = client.post(
        "/orders",
        json={
            "client_id": client_id,
            "shipping_address": ADDRESS,
            "items": [{"product_id": "p-widget", "quantity": quantity}],
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


class TestCreateOrderRoute:
    def test_create_returns_snapshot(self, client):
        body = _create(client)
        assert body["status"] == "Pending"
        assert body["total_amount"] == "20.00"
        assert body["version"] == 0
        assert body["items"][0]["product_name"] == "Widget"

    def test_validation_error_is_400(self, client):
        resp = client.post(
            "/orders",
            json={"client_id": "client-1", "shipping_address": ADDRESS, "items": []},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation"

    def test_malformed_body_is_400(self, client):
        resp = client.post("/orders", json={"client_id": "client-1"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation"

    def test_unknown_product_is_400(self, client):
        resp = client.post(
            "/orders",
            json={
                "client_id": "client-1",
                "shipping_address": ADDRESS,
                "items": [{"product_id": "p-ghost", "quantity": 1}],
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "unknown_product"


class TestStatusRoutes:
    def test_update_status(self, client):
        order = _create(client)
        resp = client.patch(f"/orders/{order['id']}/status", json={"status": "Processing"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "Processing"
        assert resp.json()["version"] == 1

    def test_invalid_transition_is_409(self, client):
        order = _create(client)
        resp = client.patch(
            f"/orders/{order['id']}/status",
            json={"status": "Shipped", "tracking_number": "TRK-1"},
        )
        assert resp.status_code == 409
        assert resp.json() == {
            "error": "invalid_transition",
            "detail": "Invalid transition: Pending -> Shipped",
        }

    def test_version_conflict_is_409(self, client):
        order = _create(client)
        client.patch(f"/orders/{order['id']}/status", json={"status": "Processing"})
        resp = client.patch(
            f"/orders/{order['id']}/status",
            json={"status": "Shipped", "tracking_number": "TRK-1", "expected_version": 0},
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "version_conflict"

    def test_missing_order_is_404(self, client):
        resp = client.patch("/orders/nope/status", json={"status": "Processing"})
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_cancel(self, client):
        order = _create(client)
        resp = client.post(f"/orders/{order['id']}/cancel", json={"reason": "No longer needed"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "Cancelled"
        assert resp.json()["cancellation_reason"] == "No longer needed"

        again = client.post(f"/orders/{order['id']}/cancel", json={"reason": "again"})
        assert again.status_code == 409


# ------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------


class TestQueryRoutes:
    def test_get_order(self, client):
        order = _create(client)
        resp = client.get(f"/orders/{order['id']}")
        assert resp.status_code == 200
        assert resp.json() == order

    def test_list_filters_by_client(self, client):
        _create(client, "client-1")
        mine = _create(client, "client-2")
        resp = client.get("/orders", params={"client_id": "client-2"})
        assert resp.status_code == 200
        assert [o["id"] for o in resp.json()] == [mine["id"]]

    def test_list_by_date(self, client):
        order = _create(client)
        day = order["created_at"][:10]
        resp = client.get("/orders", params={"start_date": day, "end_date": day})
        assert [o["id"] for o in resp.json()] == [order["id"]]

    def test_bad_date_is_400(self, client):
        resp = client.get("/orders", params={"start_date": "yesterday"})
        assert resp.status_code == 400

    def test_health_reports_backlog(self, client):
        _create(client)
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["outbox_backlog"] == 1

    def test_request_id_is_echoed_or_generated(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert client.get("/health").headers["X-Request-ID"]
