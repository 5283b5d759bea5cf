"""Tests for schema capability inspection and the helpers that lean on it."""

from sqlalchemy import insert

from models.schema import SchemaCapabilities
from models.user import User
from models.video import Video
from models.billing_store import normalize_status, user_status_for


class TestSchemaCapabilities:
    def test_full_schema_has_everything(self, app):
        from models import storage

        assert storage.capabilities.missing == {}
        assert storage.capabilities.has("users", "account_locked_until")

    def test_columns_and_writable_skip_missing(self):
        caps = SchemaCapabilities(missing={"videos": frozenset({"genre", "rating"})})

        names = [col.name for col in caps.columns(Video.__table__)]

        assert "genre" not in names and "rating" not in names
        assert "title" in names
        assert caps.writable("videos", {"title": "x", "genre": "y"}) == {"title": "x"}
        assert caps.writable("users", {"last_login": None}) == {"last_login": None}

    def test_insert_names_only_live_columns(self):
        caps = SchemaCapabilities(missing={"users": frozenset({"failed_login_attempts", "last_login"})})

        statement = insert(caps.insertable(User.__table__)).values(
            id="u1", email="a@b.com", password_hash="h", name="A"
        )
        sql = str(statement.compile())

        assert "failed_login_attempts" not in sql
        assert "subscription_status" not in sql
        assert sql.startswith("INSERT INTO users")
        assert all(name in sql for name in ("id", "email", "password_hash", "name"))


class TestStatusMapping:
    def test_provider_spelling_is_normalized(self):
        assert normalize_status("canceled") == "cancelled"
        assert normalize_status("active") == "active"
        assert normalize_status(None) is None

    def test_user_status(self):
        assert user_status_for("active") == "active"
        assert user_status_for("trialing") == "active"
        assert user_status_for("past_due") == "past_due"
        assert user_status_for("canceled") == "cancelled"
        assert user_status_for("incomplete_expired") == "inactive"
