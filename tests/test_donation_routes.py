"""
HTTP tests for donation registration, screening, review and deletion.
"""

from uuid import uuid4

from httpx import AsyncClient

from tests.conftest import TestDataFactory, approved_donation

CLEAR_SCREEN = {
    "hemoglobin": 13.8,
    "hiv": "negative",
    "hepatitis_b": "negative",
    "hepatitis_c": "negative",
    "syphilis": "negative",
}


class TestDonationEndpoints:
    async def test_register_and_fetch(self, client: AsyncClient, actor_headers: dict):
        response = await client.post(
            "/api/donations/", json=TestDataFactory.donation_data("A+"), headers=actor_headers
        )
        assert response.status_code == 201
        donation = response.json()
        assert donation["status"] == "pending"

        response = await client.get(f"/api/donations/{donation['id']}")
        assert response.status_code == 200
        assert response.json()["blood_type"] == "A+"

    async def test_quantity_outside_range_rejected(
        self, client: AsyncClient, actor_headers: dict
    ):
        payload = TestDataFactory.donation_data()
        payload["quantity_ml"] = 600

        response = await client.post("/api/donations/", json=payload, headers=actor_headers)
        assert response.status_code == 422

    async def test_second_pending_donation_from_donor_conflicts(
        self, client: AsyncClient, actor_headers: dict
    ):
        payload = TestDataFactory.donation_data("B-")
        response = await client.post("/api/donations/", json=payload, headers=actor_headers)
        assert response.status_code == 201
        first_id = response.json()["id"]

        response = await client.post("/api/donations/", json=payload, headers=actor_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidState"

        await client.post(f"/api/donations/{first_id}/approve", headers=actor_headers)
        response = await client.post("/api/donations/", json=payload, headers=actor_headers)
        assert response.status_code == 201

    async def test_approval_credits_stock(self, client: AsyncClient, actor_headers: dict):
        await approved_donation(client, actor_headers, "B+")

        response = await client.get("/api/stock/B+")
        assert response.status_code == 200
        assert response.json()["available_units"] == 1

    async def test_screening_auto_approves(self, client: AsyncClient, actor_headers: dict):
        response = await client.post(
            "/api/donations/", json=TestDataFactory.donation_data("A-"), headers=actor_headers
        )
        donation_id = response.json()["id"]

        response = await client.patch(
            f"/api/donations/{donation_id}/screening", json=CLEAR_SCREEN, headers=actor_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "approved"

    async def test_screening_expired_donation_does_not_credit(
        self, client: AsyncClient, actor_headers: dict
    ):
        response = await client.post(
            "/api/donations/",
            json=TestDataFactory.donation_data("AB-", days_ago=40),
            headers=actor_headers,
        )
        donation_id = response.json()["id"]

        response = await client.patch(
            f"/api/donations/{donation_id}/screening", json=CLEAR_SCREEN, headers=actor_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "expired"
        assert (await client.get("/api/stock/AB-")).json()["available_units"] == 0

    async def test_reject_then_approve_conflicts(self, client: AsyncClient, actor_headers: dict):
        response = await client.post(
            "/api/donations/", json=TestDataFactory.donation_data(), headers=actor_headers
        )
        donation_id = response.json()["id"]

        response = await client.post(
            f"/api/donations/{donation_id}/reject",
            json={"reason": "Clotted unit"},
            headers=actor_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "rejected"

        response = await client.post(
            f"/api/donations/{donation_id}/approve", headers=actor_headers
        )
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidState"

    async def test_list_donations(self, client: AsyncClient, actor_headers: dict):
        await approved_donation(client, actor_headers, "O-")
        await client.post(
            "/api/donations/", json=TestDataFactory.donation_data("O-"), headers=actor_headers
        )

        response = await client.get("/api/donations/", params={"status": "approved"})

        assert response.status_code == 200
        assert response.json()["total_items"] == 1

    async def test_delete_pending_donation(self, client: AsyncClient, actor_headers: dict):
        response = await client.post(
            "/api/donations/", json=TestDataFactory.donation_data(), headers=actor_headers
        )
        donation_id = response.json()["id"]

        response = await client.delete(f"/api/donations/{donation_id}", headers=actor_headers)
        assert response.status_code == 204

        response = await client.get(f"/api/donations/{donation_id}")
        assert response.status_code == 404

    async def test_delete_approved_donation_conflicts(
        self, client: AsyncClient, actor_headers: dict
    ):
        donation_id = await approved_donation(client, actor_headers)

        response = await client.delete(f"/api/donations/{donation_id}", headers=actor_headers)

        assert response.status_code == 409
        assert (await client.get(f"/api/donations/{donation_id}")).json()["status"] == "approved"

    async def test_delete_unknown_donation(self, client: AsyncClient, actor_headers: dict):
        response = await client.delete(f"/api/donations/{uuid4()}", headers=actor_headers)
        assert response.status_code == 404
