"""Auth and subscription writes against tables created before the optional columns existed."""

import pytest
from sqlalchemy import create_engine, text

from models import billing_store, credential_store, storage
from tests.conftest import STRONG_PASSWORD, bearer
from tests.test_payments import _checkout_completed

LEGACY_USERS_TABLE = """
CREATE TABLE users (
    id VARCHAR(36) PRIMARY KEY,
    email VARCHAR(255) NOT NULL UNIQUE,
    password_hash VARCHAR(255) NOT NULL,
    name VARCHAR(100) NOT NULL,
    subscription_status VARCHAR(20) NOT NULL DEFAULT 'none',
    refresh_token TEXT,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
)
"""

LEGACY_SUBSCRIPTIONS_TABLE = """
CREATE TABLE subscriptions (
    id VARCHAR(36) PRIMARY KEY,
    user_id VARCHAR(36) NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    plan_type VARCHAR(50) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'active',
    stripe_subscription_id VARCHAR(255) UNIQUE,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
)
"""


def _legacy_database(path, *statements):
    url = f"sqlite:///{path}"
    engine = create_engine(url)
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    engine.dispose()
    return url


class TestLegacyUsersTable:
    @pytest.fixture
    def database_url(self, tmp_path):
        return _legacy_database(tmp_path / "legacy_users.db", LEGACY_USERS_TABLE)

    def test_lockout_columns_are_reported_missing(self, app):
        assert not storage.capabilities.has("users", "failed_login_attempts")
        assert not storage.capabilities.has("users", "last_login")

    def test_register_login_and_me(self, client, register, login):
        response = register(email="old@example.com")

        assert response.status_code == 201
        assert login(email="old@example.com").status_code == 200
        me = client.get("/api/auth/me", headers=bearer(response.get_json()["accessToken"]))
        assert me.status_code == 200
        assert me.get_json()["user"]["email"] == "old@example.com"

    def test_failures_are_not_tracked_without_lockout_columns(self, user, login):
        for _ in range(6):
            assert login(password="Wrong123!").status_code == 401

        assert login(password=STRONG_PASSWORD).status_code == 200
        record = credential_store.find_by_id(user["user"]["id"]).user
        assert record.failed_login_attempts == 0
        assert record.account_locked_until is None


class TestLegacySubscriptionsTable:
    @pytest.fixture
    def database_url(self, tmp_path):
        return _legacy_database(tmp_path / "legacy_subscriptions.db", LEGACY_SUBSCRIPTIONS_TABLE)

    def test_dev_activation(self, client, subscriber):
        response = client.get("/api/subscriptions/status", headers=bearer(subscriber["accessToken"]))

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "active"
        assert body["plan_type"] == "basic"
        assert body["cancel_at_period_end"] is False
        assert body["expires_at"] is None

    def test_webhook_upsert(self, post_event, user):
        user_id = user["user"]["id"]

        response = post_event("checkout.session.completed", _checkout_completed(user_id))

        assert response.status_code == 200
        subscription = billing_store.find_by_provider_id("sub_123")
        assert subscription["status"] == "active"
        assert subscription["plan_type"] == "premium"
        assert subscription["current_period_end"] is None
        assert credential_store.find_by_id(user_id).user.subscription_status == "active"
