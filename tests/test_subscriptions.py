"""Tests for /api/subscriptions."""

import pytest

from models import billing_store, credential_store
from utils.payment_gateway import ProviderError
from tests.conftest import bearer


@pytest.fixture
def linked(user):
    """A user whose active premium subscription is linked to the provider."""
    user_id = user["user"]["id"]
    billing_store.upsert_provider_subscription(user_id, "sub_123", "premium", "active")
    billing_store.set_user_subscription(user_id, "active", "premium")
    return user


def _headers(user):
    return bearer(user["accessToken"])


class TestStatus:
    def test_no_subscription(self, client, auth_headers):
        response = client.get("/api/subscriptions/status", headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()["status"] == "none"

    def test_local_subscription(self, client, subscriber, gateway):
        body = client.get("/api/subscriptions/status", headers=_headers(subscriber)).get_json()

        assert body["status"] == "active"
        assert body["plan_type"] == "basic"
        assert body["cancel_at_period_end"] is False
        # no provider id, nothing to reconcile
        assert not [call for call in gateway.calls if call[0] == "retrieve_subscription"]

    def test_falls_back_to_user_record(self, client, user):
        billing_store.set_user_subscription(user["user"]["id"], "inactive", "basic")

        body = client.get("/api/subscriptions/status", headers=_headers(user)).get_json()

        assert body["status"] == "inactive"
        assert body["plan_type"] == "basic"

    def test_provider_divergence_is_written_back(self, client, linked, gateway):
        gateway.remote_subscriptions["sub_123"] = {
            "id": "sub_123",
            "status": "past_due",
            "current_period_end": 1702592000,
            "cancel_at_period_end": False,
        }

        body = client.get("/api/subscriptions/status", headers=_headers(linked)).get_json()

        assert body["status"] == "past_due"
        assert body["next_billing_date"].startswith("2023-12-14")
        assert billing_store.find_by_provider_id("sub_123")["status"] == "past_due"
        assert credential_store.find_by_id(linked["user"]["id"]).user.subscription_status == "past_due"

    def test_provider_outage_serves_local_row(self, client, linked, gateway):
        gateway.failures["retrieve_subscription"] = ProviderError("timeout")

        response = client.get("/api/subscriptions/status", headers=_headers(linked))

        assert response.status_code == 200
        assert response.get_json()["status"] == "active"


class TestHistory:
    def test_paginated(self, client, subscriber):
        body = client.get("/api/subscriptions/history?limit=5", headers=_headers(subscriber)).get_json()

        assert len(body["subscriptions"]) == 1
        assert body["subscriptions"][0]["plan_type"] == "basic"
        assert body["pagination"]["totalSubscriptions"] == 1


class TestCancelAndReactivate:
    def test_cancel_without_subscription(self, client, auth_headers):
        response = client.post("/api/subscriptions/cancel", headers=auth_headers)

        assert response.status_code == 404
        assert response.get_json()["code"] == "NO_ACTIVE_SUBSCRIPTION"

    def test_cancel_then_reactivate(self, client, linked, gateway):
        headers = _headers(linked)

        assert client.post("/api/subscriptions/cancel", headers=headers).status_code == 200
        assert ("set_cancel_at_period_end", "sub_123", True) in gateway.calls
        subscription = billing_store.find_by_provider_id("sub_123")
        assert subscription["cancel_at_period_end"] is True
        assert subscription["status"] == "active"

        assert client.post("/api/subscriptions/reactivate", headers=headers).status_code == 200
        assert ("set_cancel_at_period_end", "sub_123", False) in gateway.calls
        assert billing_store.find_by_provider_id("sub_123")["cancel_at_period_end"] is False

    def test_cancel_provider_failure(self, client, linked, gateway):
        gateway.failures["set_cancel_at_period_end"] = ProviderError("down")

        response = client.post("/api/subscriptions/cancel", headers=_headers(linked))

        assert response.status_code == 500
        assert response.get_json()["code"] == "STRIPE_CANCELLATION_ERROR"
        assert billing_store.find_by_provider_id("sub_123")["cancel_at_period_end"] is False

    def test_reactivate_without_subscription(self, client, auth_headers):
        response = client.post("/api/subscriptions/reactivate", headers=auth_headers)

        assert response.status_code == 404
        assert response.get_json()["code"] == "NO_SUBSCRIPTION"

    def test_reactivate_when_nothing_pending(self, client, subscriber):
        response = client.post("/api/subscriptions/reactivate", headers=_headers(subscriber))

        assert response.status_code == 400
        assert response.get_json()["code"] == "ALREADY_ACTIVE"

    def test_reactivate_after_it_ended(self, client, linked):
        subscription = billing_store.find_by_provider_id("sub_123")
        billing_store.update_subscription(subscription["id"], status="cancelled")

        response = client.post("/api/subscriptions/reactivate", headers=_headers(linked))

        assert response.status_code == 400
        assert response.get_json()["code"] == "SUBSCRIPTION_ENDED"

    def test_reactivate_provider_failure(self, client, linked, gateway):
        headers = _headers(linked)
        client.post("/api/subscriptions/cancel", headers=headers)
        gateway.failures["set_cancel_at_period_end"] = ProviderError("down")

        response = client.post("/api/subscriptions/reactivate", headers=headers)

        assert response.status_code == 500
        assert response.get_json()["code"] == "STRIPE_REACTIVATION_ERROR"


class TestChangePlan:
    @pytest.mark.parametrize("payload", [{}, {"newPlanId": "gold"}, {"newPlanId": ["basic"]}])
    def test_invalid_plan(self, client, linked, payload):
        response = client.put("/api/subscriptions/plan", json=payload, headers=_headers(linked))

        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_PLAN_ID"

    def test_no_active_subscription(self, client, auth_headers):
        response = client.put("/api/subscriptions/plan", json={"newPlanId": "family"}, headers=auth_headers)

        assert response.status_code == 404
        assert response.get_json()["code"] == "NO_ACTIVE_SUBSCRIPTION"

    def test_same_plan(self, client, linked):
        response = client.put("/api/subscriptions/plan", json={"newPlanId": "premium"}, headers=_headers(linked))

        assert response.status_code == 400
        assert response.get_json()["code"] == "SAME_PLAN"

    def test_change(self, client, linked, gateway):
        response = client.put("/api/subscriptions/plan", json={"newPlanId": "family"}, headers=_headers(linked))

        assert response.status_code == 200
        assert response.get_json()["new_plan"] == "family"
        assert ("change_plan", "sub_123", "family", 1799) in gateway.calls
        assert billing_store.find_by_provider_id("sub_123")["plan_type"] == "family"
        assert credential_store.find_by_id(linked["user"]["id"]).user.subscription_plan_type == "family"

    def test_provider_failure(self, client, linked, gateway):
        gateway.failures["change_plan"] = ProviderError("down")

        response = client.put("/api/subscriptions/plan", json={"newPlanId": "family"}, headers=_headers(linked))

        assert response.status_code == 500
        assert response.get_json()["code"] == "STRIPE_UPDATE_ERROR"
        assert billing_store.find_by_provider_id("sub_123")["plan_type"] == "premium"


class TestDevActivate:
    def test_activation_unlocks_videos(self, client, user):
        headers = _headers(user)

        response = client.post("/api/subscriptions/dev/activate", json={"plan": "family"}, headers=headers)

        assert response.status_code == 200
        assert client.get("/api/auth/me", headers=headers).get_json()["user"]["subscription_status"] == "active"

    def test_repeated_activation_reuses_the_row(self, client, user):
        headers = _headers(user)
        client.post("/api/subscriptions/dev/activate", json={"plan": "basic"}, headers=headers)
        client.post("/api/subscriptions/dev/activate", json={"plan": "premium"}, headers=headers)

        rows, total = billing_store.subscription_history(user["user"]["id"], 1, 10)
        assert total == 1
        assert rows[0]["plan_type"] == "premium"

    def test_disabled_outside_development(self, app, client, user):
        app.config["DEV_ROUTES"] = False

        response = client.post("/api/subscriptions/dev/activate", json={}, headers=_headers(user))

        assert response.status_code == 404
