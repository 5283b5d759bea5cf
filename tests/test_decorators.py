"""Tests for the bearer-token gate and the subscription gate."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from api.errors import AuthenticationFailed, AuthorizationFailed
from models import credential_store
from models.base_model import utcnow
from tests.conftest import bearer
from utils.decorators import Identity, check_active_subscription

ME = "/api/auth/me"


def _code(response):
    return response.get_json()["code"]


class TestAuthRequired:
    def test_missing_header(self, client):
        response = client.get(ME)

        assert response.status_code == 401
        assert _code(response) == "NO_AUTH_HEADER"

    def test_not_bearer(self, client, user):
        response = client.get(ME, headers={"Authorization": f"Token {user['accessToken']}"})

        assert response.status_code == 401
        assert _code(response) == "INVALID_AUTH_FORMAT"

    def test_empty_bearer(self, client):
        response = client.get(ME, headers={"Authorization": "Bearer "})

        assert response.status_code == 401
        assert _code(response) in ("NO_TOKEN", "INVALID_AUTH_FORMAT")

    def test_garbage_token(self, client):
        response = client.get(ME, headers=bearer("garbage"))

        assert response.status_code == 401
        assert _code(response) == "INVALID_TOKEN"

    def test_expired_token(self, app, client, user):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode(
            {"sub": user["user"]["id"], "iat": past, "exp": past + timedelta(minutes=15)},
            app.config["JWT_ACCESS_SECRET"],
        )

        response = client.get(ME, headers=bearer(token))

        assert response.status_code == 401
        assert _code(response) == "TOKEN_EXPIRED"

    def test_not_yet_valid_token(self, app, client, user):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        token = jwt.encode(
            {"sub": user["user"]["id"], "nbf": future, "exp": future + timedelta(minutes=15)},
            app.config["JWT_ACCESS_SECRET"],
        )

        response = client.get(ME, headers=bearer(token))

        assert _code(response) == "TOKEN_NOT_ACTIVE"

    def test_token_without_subject(self, app, client):
        token = jwt.encode(
            {"exp": datetime.now(timezone.utc) + timedelta(minutes=5)}, app.config["JWT_ACCESS_SECRET"]
        )

        response = client.get(ME, headers=bearer(token))

        assert response.status_code == 401
        assert _code(response) == "INVALID_TOKEN_STRUCTURE"

    def test_unknown_user(self, app, client):
        token = app.extensions["token_service"].issue_token_pair("no-such-user").access_token

        response = client.get(ME, headers=bearer(token))

        assert response.status_code == 401
        assert _code(response) == "USER_NOT_FOUND"

    def test_locked_user(self, client, user):
        credential_store.record_failed_login(user["user"]["id"], 5, utcnow() + timedelta(minutes=15))

        response = client.get(ME, headers=bearer(user["accessToken"]))

        assert response.status_code == 423
        assert _code(response) == "ACCOUNT_LOCKED"

    def test_lookup_failure_fails_closed(self, client, user, monkeypatch):
        from models.credential_store import LookupStatus, UserLookup

        monkeypatch.setattr(
            credential_store, "find_by_id", lambda user_id: UserLookup(LookupStatus.DB_ERROR)
        )

        response = client.get(ME, headers=bearer(user["accessToken"]))

        assert response.status_code == 500
        assert _code(response) == "DATABASE_ERROR"

    def test_unexpected_failure_fails_closed(self, client, user, monkeypatch):
        def explode(user_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(credential_store, "find_by_id", explode)

        response = client.get(ME, headers=bearer(user["accessToken"]))

        assert response.status_code == 500
        assert _code(response) == "INTERNAL_ERROR"
        assert "boom" not in response.get_data(as_text=True)


class TestCheckActiveSubscription:
    @staticmethod
    def _identity(status):
        return Identity(id="u1", email="a@b.com", name="A B", subscription_status=status)

    def test_active_passes(self):
        assert check_active_subscription(self._identity("active")) is None

    def test_no_identity(self):
        error = check_active_subscription(None)

        assert isinstance(error, AuthenticationFailed)
        assert error.code == "AUTH_REQUIRED"

    @pytest.mark.parametrize("status", ["none", "inactive", "cancelled", "past_due", "ACTIVE", ""])
    def test_anything_else_is_rejected(self, status):
        error = check_active_subscription(self._identity(status))

        assert isinstance(error, AuthorizationFailed)
        assert error.status == 403
        assert error.code == "SUBSCRIPTION_REQUIRED"
