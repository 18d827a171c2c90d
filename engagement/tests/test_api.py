"""
HTTP boundary tests

Tests cover:
1. Error mapping (402 / 403 / 404 / 401 / 400)
2. Token purchase and status endpoints
3. Request submission, status update and messages
"""

import pytest
from fastapi.testclient import TestClient

from engagement.api import create_app


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def as_user(user_id):
    return {"X-User-Id": user_id}


def submit(client, provider_id, email="organizer@example.com"):
    response = client.post("/requests", json={
        "provider_id": provider_id,
        "contact_name": "Alice Organizer",
        "contact_email": email,
        "event_type": "Corporate dinner",
        "guest_count": 40,
        "message": "Looking for a photographer for our annual dinner.",
    })
    assert response.status_code == 201
    return response.json()


class TestSystem:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestTokenEndpoints:
    """Tests for balance, purchase and admin grant endpoints."""

    def test_purchase_and_status(self, client, make_provider):
        provider = make_provider(balance=2)

        response = client.post("/tokens/purchase", json={"package": "popular"}, headers=as_user(provider.user_id))
        assert response.status_code == 201
        assert response.json() == {"balance": 17}

        status = client.get("/tokens", headers=as_user(provider.user_id)).json()
        assert status["balance"] == 17
        assert status["transactions"][0]["type"] == "PURCHASE"
        assert status["transactions"][0]["balance_after"] == 17

    def test_status_uses_default_page_size(self, client, admin, make_provider):
        provider = make_provider(balance=1)
        for i in range(24):
            client.post(
                "/admin/tokens",
                json={"provider_id": provider.id, "amount": 1, "reason": f"Bonus {i}"},
                headers=as_user(admin.id),
            )

        status = client.get("/tokens", headers=as_user(provider.user_id)).json()
        assert status["total_count"] == 25
        assert len(status["transactions"]) == 20

    def test_status_rejects_zero_limit(self, client, make_provider):
        provider = make_provider(balance=1)
        response = client.get("/tokens", params={"limit": 0}, headers=as_user(provider.user_id))
        assert response.status_code == 400

    def test_purchase_unknown_package_is_rejected(self, client, make_provider):
        provider = make_provider(balance=0)
        response = client.post("/tokens/purchase", json={"package": "gold"}, headers=as_user(provider.user_id))
        assert response.status_code == 422

    def test_missing_identity(self, client):
        assert client.get("/tokens").status_code == 401

    def test_admin_grant(self, client, admin, make_provider):
        provider = make_provider(balance=5)

        response = client.post(
            "/admin/tokens",
            json={"provider_id": provider.id, "amount": 10, "reason": "Launch bonus"},
            headers=as_user(admin.id),
        )
        assert response.status_code == 200
        assert response.json() == {"balance": 15}

        listing = client.get("/admin/tokens", headers=as_user(admin.id)).json()
        assert listing[0]["balance"] == 15

    def test_admin_grant_amount_bounds(self, client, admin, make_provider):
        provider = make_provider(balance=0)
        response = client.post(
            "/admin/tokens",
            json={"provider_id": provider.id, "amount": 500, "reason": "Too generous"},
            headers=as_user(admin.id),
        )
        assert response.status_code == 422

    def test_grant_by_non_admin_is_forbidden(self, client, make_provider):
        provider = make_provider(balance=0)
        response = client.post(
            "/admin/tokens",
            json={"provider_id": provider.id, "amount": 10, "reason": "Free tokens"},
            headers=as_user(provider.user_id),
        )
        assert response.status_code == 403

    def test_grant_to_unknown_provider(self, client, admin):
        response = client.post(
            "/admin/tokens",
            json={"provider_id": "missing", "amount": 10, "reason": "Nobody"},
            headers=as_user(admin.id),
        )
        assert response.status_code == 404

    def test_audit(self, client, admin, make_provider):
        provider = make_provider(balance=5)
        response = client.get(f"/admin/providers/{provider.id}/audit", headers=as_user(admin.id))
        assert response.status_code == 200
        assert response.json()["consistent"] is True


class TestRequestEndpoints:
    """Tests for the gated request actions."""

    def test_accept_without_tokens_returns_402(self, client, make_provider):
        provider = make_provider(balance=0)
        request_id = submit(client, provider.id)["request"]["id"]

        response = client.patch(
            f"/requests/{request_id}", json={"status": "ACCEPTED"}, headers=as_user(provider.user_id)
        )
        assert response.status_code == 402
        assert response.json() == {"error": "INSUFFICIENT_TOKENS", "balance": 0}

        current = client.get(f"/requests/{request_id}", headers=as_user(provider.user_id)).json()
        assert current["status"] == "PENDING"

    def test_accept_with_tokens(self, client, make_provider):
        provider = make_provider(balance=1)
        request_id = submit(client, provider.id)["request"]["id"]

        preview = client.get(f"/requests/{request_id}/unlock", headers=as_user(provider.user_id)).json()
        assert preview["cost"] == 1

        response = client.patch(
            f"/requests/{request_id}", json={"status": "ACCEPTED"}, headers=as_user(provider.user_id)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "ACCEPTED"
        assert client.get("/tokens", headers=as_user(provider.user_id)).json()["balance"] == 0

    def test_status_update_by_other_provider_is_404(self, client, make_provider):
        owner = make_provider(balance=1)
        other = make_provider(balance=1)
        request_id = submit(client, owner.id)["request"]["id"]

        response = client.patch(
            f"/requests/{request_id}", json={"status": "REFUSED"}, headers=as_user(other.user_id)
        )
        assert response.status_code == 404

    def test_status_update_by_organizer_is_403(self, client, make_provider):
        provider = make_provider(balance=1)
        submitted = submit(client, provider.id)

        response = client.patch(
            f"/requests/{submitted['request']['id']}",
            json={"status": "ACCEPTED"},
            headers=as_user(submitted["organizer_id"]),
        )
        assert response.status_code == 403

    def test_invalid_status_value(self, client, make_provider):
        provider = make_provider(balance=1)
        request_id = submit(client, provider.id)["request"]["id"]

        response = client.patch(
            f"/requests/{request_id}", json={"status": "MAYBE"}, headers=as_user(provider.user_id)
        )
        assert response.status_code == 422

    def test_archived_request_is_conflict(self, client, make_provider):
        provider = make_provider(balance=1)
        request_id = submit(client, provider.id)["request"]["id"]
        client.patch(f"/requests/{request_id}", json={"status": "ARCHIVED"}, headers=as_user(provider.user_id))

        response = client.patch(
            f"/requests/{request_id}", json={"status": "ACCEPTED"}, headers=as_user(provider.user_id)
        )
        assert response.status_code == 409


class TestMessageEndpoints:
    """Tests for the message thread endpoints."""

    def test_first_message_charges_and_responds(self, client, make_provider):
        provider = make_provider(balance=3)
        request_id = submit(client, provider.id)["request"]["id"]

        response = client.post(
            "/messages",
            json={"request_id": request_id, "content": "Here is our quote."},
            headers=as_user(provider.user_id),
        )
        assert response.status_code == 201
        assert client.get("/tokens", headers=as_user(provider.user_id)).json()["balance"] == 2
        assert client.get(f"/requests/{request_id}", headers=as_user(provider.user_id)).json()["status"] == "RESPONDED"

    def test_message_without_tokens_returns_402(self, client, make_provider):
        provider = make_provider(balance=0)
        request_id = submit(client, provider.id)["request"]["id"]

        response = client.post(
            "/messages",
            json={"request_id": request_id, "content": "Here is our quote."},
            headers=as_user(provider.user_id),
        )
        assert response.status_code == 402
        assert response.json() == {"error": "INSUFFICIENT_TOKENS", "balance": 0}
        thread = client.get(f"/requests/{request_id}/messages", headers=as_user(provider.user_id)).json()
        assert thread == []

    def test_outsider_message_is_forbidden(self, client, make_provider):
        provider = make_provider(balance=1)
        outsider = make_provider(balance=1)
        request_id = submit(client, provider.id)["request"]["id"]

        response = client.post(
            "/messages",
            json={"request_id": request_id, "content": "Pick me instead."},
            headers=as_user(outsider.user_id),
        )
        assert response.status_code == 403

    def test_message_too_long(self, client, make_provider):
        provider = make_provider(balance=1)
        request_id = submit(client, provider.id)["request"]["id"]

        response = client.post(
            "/messages",
            json={"request_id": request_id, "content": "x" * 2001},
            headers=as_user(provider.user_id),
        )
        assert response.status_code == 422

    def test_organizer_lists_requests(self, client, make_provider):
        provider = make_provider(balance=0)
        submitted = submit(client, provider.id, email="planner@example.com")

        listing = client.get("/requests", headers=as_user(submitted["organizer_id"])).json()
        assert [r["id"] for r in listing] == [submitted["request"]["id"]]
