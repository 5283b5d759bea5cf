"""Tests for the users-table data layer."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from models import credential_store, storage
from models.base_model import utcnow
from models.credential_store import LookupStatus


@pytest.fixture
def stored_user(app):
    return credential_store.create_user("  Alice@Example.COM ", "hash", " Alice ")


class TestLookups:
    def test_create_normalizes_email_and_name(self, stored_user):
        assert stored_user.email == "alice@example.com"
        assert stored_user.name == "Alice"
        assert stored_user.subscription_status == "none"

    def test_find_by_email_is_case_insensitive(self, stored_user):
        lookup = credential_store.find_by_email("ALICE@example.com ")

        assert lookup.status is LookupStatus.FOUND
        assert lookup.user.id == stored_user.id
        assert lookup.user.failed_login_attempts == 0
        assert lookup.user.account_locked_until is None

    def test_missing_user(self, app):
        assert credential_store.find_by_id("nope").status is LookupStatus.NOT_FOUND
        assert not credential_store.find_by_email("nobody@example.com").found

    def test_email_exists(self, stored_user):
        assert credential_store.email_exists("alice@example.com")
        assert not credential_store.email_exists("bob@example.com")

    def test_database_failure_is_reported_not_raised(self, stored_user, monkeypatch):
        def broken(statement):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(storage, "execute", broken)
        lookup = credential_store.find_by_id(stored_user.id)

        assert lookup.status is LookupStatus.DB_ERROR
        assert isinstance(lookup.error, OperationalError)

    def test_public_projection_hides_hash(self, stored_user):
        assert stored_user.public() == {"id": stored_user.id, "email": "alice@example.com", "name": "Alice"}


class TestRefreshTokens:
    def test_find_requires_matching_token(self, stored_user):
        credential_store.store_refresh_token(stored_user.id, "token-1")

        assert credential_store.find_by_refresh_token(stored_user.id, "token-1").found
        assert not credential_store.find_by_refresh_token(stored_user.id, "token-2").found

    def test_rotation_has_a_single_winner(self, stored_user):
        credential_store.store_refresh_token(stored_user.id, "token-1")

        assert credential_store.rotate_refresh_token(stored_user.id, "token-1", "token-2") is True
        assert credential_store.rotate_refresh_token(stored_user.id, "token-1", "token-3") is False
        assert credential_store.find_by_refresh_token(stored_user.id, "token-2").found

    def test_clear(self, stored_user):
        credential_store.store_refresh_token(stored_user.id, "token-1")
        credential_store.clear_refresh_token(stored_user.id)

        assert not credential_store.find_by_refresh_token(stored_user.id, "token-1").found


class TestLoginBookkeeping:
    def test_failed_then_successful_login(self, stored_user):
        locked_until = utcnow() + timedelta(minutes=15)
        assert credential_store.record_failed_login(stored_user.id, 5, locked_until) is True

        user = credential_store.find_by_id(stored_user.id).user
        assert user.failed_login_attempts == 5
        assert user.account_locked_until is not None

        credential_store.record_successful_login(stored_user.id, "token-9")

        user = credential_store.find_by_id(stored_user.id).user
        assert user.failed_login_attempts == 0
        assert user.account_locked_until is None
        assert user.last_login is not None
        assert credential_store.find_by_refresh_token(stored_user.id, "token-9").found
