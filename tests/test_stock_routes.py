"""
HTTP tests for the stock endpoints, health checks and actor header handling.
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy.orm.exc import StaleDataError

from app.services.stock_service import StockLedgerService


class TestHealth:
    async def test_root(self, client: AsyncClient):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_health_checks_database(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    async def test_request_id_header_echoed(self, client: AsyncClient):
        response = await client.get("/", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"


class TestActorHeader:
    async def test_missing_actor_is_unauthorized(self, client: AsyncClient):
        response = await client.post("/api/stock/initialize")
        assert response.status_code == 401

    async def test_malformed_actor_is_bad_request(self, client: AsyncClient):
        response = await client.post(
            "/api/stock/initialize", headers={"X-Actor-Id": "not-a-uuid"}
        )
        assert response.status_code == 400


class TestStockEndpoints:
    async def test_overview_lists_all_types(self, client: AsyncClient):
        response = await client.get("/api/stock/")

        assert response.status_code == 200
        data = response.json()
        assert len(data["stocks"]) == 8
        assert data["total_available_units"] == 0
        assert data["critical_count"] == 8

    async def test_initialize(self, client: AsyncClient, actor_headers: dict):
        response = await client.post("/api/stock/initialize", headers=actor_headers)

        assert response.status_code == 201
        assert sorted(s["blood_type"] for s in response.json()) == sorted(
            ["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
        )

    async def test_adjust_expire_and_alert_flow(self, client: AsyncClient, actor_headers: dict):
        response = await client.put(
            "/api/stock/O-", json={"available_units": 12}, headers=actor_headers
        )
        assert response.status_code == 200
        assert response.json()["available_units"] == 12
        assert response.json()["status"] == "adequate"

        response = await client.post(
            "/api/stock/O-/remove-expired",
            json={"quantity": 8, "reason": "Past expiry"},
            headers=actor_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["available_units"] == 4
        assert data["expired_units"] == 8
        assert data["status"] == "critical"

        response = await client.get("/api/stock/alerts/active")
        assert response.status_code == 200
        alerts = response.json()
        assert alerts["total_active_alerts"] == 1
        alert = alerts["alerts"][0]
        assert alert["kind"] == "critical"
        assert alert["current_stock"] == 4

        response = await client.post(
            f"/api/stock/alerts/{alert['id']}/acknowledge", headers=actor_headers
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        response = await client.get("/api/stock/alerts/active")
        assert response.json()["total_active_alerts"] == 0

    async def test_detail_includes_recent_movements(
        self, client: AsyncClient, actor_headers: dict
    ):
        await client.put("/api/stock/AB-", json={"available_units": 3}, headers=actor_headers)

        response = await client.get("/api/stock/AB-")

        assert response.status_code == 200
        data = response.json()
        assert data["available_units"] == 3
        assert len(data["recent_movements"]) == 1
        assert data["recent_movements"][0]["action"] == "adjust"
        assert [a["kind"] for a in data["alerts"]] == ["critical"]

    async def test_history_pagination(self, client: AsyncClient, actor_headers: dict):
        for units in (5, 9, 2):
            await client.put(
                "/api/stock/A-", json={"available_units": units}, headers=actor_headers
            )

        response = await client.get("/api/stock/A-/history", params={"page": 1, "page_size": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["total_items"] == 3
        assert data["has_next"] is True
        assert [m["balance_after"] for m in data["items"]] == [2, 9]

    async def test_thresholds_update(self, client: AsyncClient, actor_headers: dict):
        response = await client.put(
            "/api/stock/B-",
            json={"minimum_threshold": 6, "critical_threshold": 9},
            headers=actor_headers,
        )

        assert response.status_code == 200
        assert response.json()["minimum_threshold"] == 6
        assert response.json()["critical_threshold"] == 5

    async def test_empty_update_rejected(self, client: AsyncClient, actor_headers: dict):
        response = await client.put("/api/stock/B-", json={}, headers=actor_headers)
        assert response.status_code == 422

    @pytest.mark.parametrize("payload", [{"quantity": 0}, {"quantity": -2}])
    async def test_invalid_expiry_quantity(
        self, client: AsyncClient, actor_headers: dict, payload: dict
    ):
        response = await client.post(
            "/api/stock/O-/remove-expired", json=payload, headers=actor_headers
        )
        assert response.status_code == 422

    async def test_unknown_blood_type(self, client: AsyncClient):
        response = await client.get("/api/stock/C-")
        assert response.status_code == 422

    async def test_acknowledge_unknown_alert(self, client: AsyncClient, actor_headers: dict):
        response = await client.post(
            f"/api/stock/alerts/{uuid4()}/acknowledge", headers=actor_headers
        )
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    async def test_concurrent_update_conflicts(
        self, client: AsyncClient, actor_headers: dict, monkeypatch
    ):
        async def lost_race(self, *args, **kwargs):
            raise StaleDataError("UPDATE statement on table 'blood_stock' expected 1 row")

        monkeypatch.setattr(StockLedgerService, "expire", lost_race)

        response = await client.post(
            "/api/stock/O-/remove-expired", json={"quantity": 1}, headers=actor_headers
        )

        assert response.status_code == 409
        assert response.json()["error"] == "StaleDataError"
