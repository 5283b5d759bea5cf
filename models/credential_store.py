"""
Credential store: every read and write of the users table made by the auth
flows goes through here.

Lookups never raise. They return a UserLookup whose status tells the caller
whether the row was found, absent, or whether the database failed, so the
controllers and the bearer middleware switch on an explicit kind instead of
catching driver exceptions. Writes propagate SQLAlchemyError after rolling
back; the global error handler turns those into 500 DATABASE_ERROR.

Optional columns (lockout counters, last_login, plan bookkeeping) are only
selected or written when the live schema has them; UserRecord supplies the
defaults otherwise.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import select, update, insert, func
from sqlalchemy.exc import SQLAlchemyError

from models import storage
from models.base_model import _uuid_str, as_naive_utc, utcnow
from models.user import User, SubscriptionStatus

logger = logging.getLogger(__name__)

users = User.__table__


class LookupStatus(str, Enum):
    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"
    DB_ERROR = "DB_ERROR"


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    name: str
    password_hash: str = ""
    subscription_status: str = SubscriptionStatus.NONE.value
    subscription_plan_type: Optional[str] = None
    failed_login_attempts: int = 0
    account_locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "UserRecord":
        data = row._mapping
        return cls(
            id=data["id"],
            email=data["email"],
            name=data["name"],
            password_hash=data.get("password_hash") or "",
            subscription_status=data.get("subscription_status") or SubscriptionStatus.NONE.value,
            subscription_plan_type=data.get("subscription_plan_type"),
            failed_login_attempts=data.get("failed_login_attempts") or 0,
            account_locked_until=as_naive_utc(data.get("account_locked_until")),
            last_login=as_naive_utc(data.get("last_login")),
        )

    def public(self) -> dict:
        """Projection safe to return to the client."""
        return {"id": self.id, "email": self.email, "name": self.name}


@dataclass(frozen=True)
class UserLookup:
    status: LookupStatus
    user: Optional[UserRecord] = None
    error: Optional[Exception] = None

    @property
    def found(self) -> bool:
        return self.status is LookupStatus.FOUND


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _select_user(*criteria) -> UserLookup:
    caps = storage.capabilities
    columns = [col for col in caps.columns(users) if col.name != "refresh_token"]
    try:
        row = storage.execute(select(*columns).where(*criteria)).first()
    except SQLAlchemyError as exc:
        storage.rollback()
        logger.exception("User lookup failed")
        return UserLookup(LookupStatus.DB_ERROR, error=exc)
    if row is None:
        return UserLookup(LookupStatus.NOT_FOUND)
    return UserLookup(LookupStatus.FOUND, user=UserRecord.from_row(row))


def find_by_email(email: str) -> UserLookup:
    return _select_user(users.c.email == normalize_email(email))


def find_by_id(user_id: str) -> UserLookup:
    return _select_user(users.c.id == str(user_id))


def find_by_refresh_token(user_id: str, refresh_token: str) -> UserLookup:
    """Match on id AND the stored token; a superseded token finds nothing."""
    return _select_user(users.c.id == str(user_id), users.c.refresh_token == refresh_token)


def email_exists(email: str) -> bool:
    stmt = select(func.count()).select_from(users).where(users.c.email == normalize_email(email))
    return storage.execute(stmt).scalar_one() > 0


def _write(statement):
    try:
        result = storage.execute(statement)
        storage.save()
    except SQLAlchemyError:
        storage.rollback()
        raise
    return result


def create_user(email: str, password_hash: str, name: str) -> UserRecord:
    user_id = _uuid_str()
    now = utcnow()
    values = storage.capabilities.writable(
        "users",
        {
            "id": user_id,
            "email": normalize_email(email),
            "password_hash": password_hash,
            "name": name.strip(),
            "subscription_status": SubscriptionStatus.NONE.value,
            "failed_login_attempts": 0,
            "created_at": now,
            "updated_at": now,
        },
    )
    _write(insert(storage.capabilities.insertable(users)).values(**values))
    return UserRecord(id=user_id, email=values["email"], name=values["name"], password_hash=password_hash)


def record_failed_login(user_id: str, failed_attempts: int, locked_until: Optional[datetime]) -> bool:
    """Persist the counter and lock. Returns False when the schema cannot track them."""
    values = storage.capabilities.writable(
        "users",
        {"failed_login_attempts": failed_attempts, "account_locked_until": locked_until},
    )
    if not values:
        logger.info("Lockout columns missing; failed attempt not tracked for user_id=%s", user_id)
        return False
    _write(update(users).where(users.c.id == user_id).values(**values))
    return True


def record_successful_login(user_id: str, refresh_token: str) -> None:
    """Reset lockout state, stamp last_login and install the new refresh token."""
    values = storage.capabilities.writable(
        "users",
        {
            "failed_login_attempts": 0,
            "account_locked_until": None,
            "last_login": utcnow(),
            "refresh_token": refresh_token,
        },
    )
    _write(update(users).where(users.c.id == user_id).values(**values))


def store_refresh_token(user_id: str, refresh_token: str) -> None:
    _write(update(users).where(users.c.id == user_id).values(refresh_token=refresh_token))


def rotate_refresh_token(user_id: str, old_token: str, new_token: str) -> bool:
    """Compare-and-swap: only replaces the token if `old_token` is still current.

    Of two concurrent refreshes presenting the same token exactly one sees
    rowcount == 1; the other gets False.
    """
    stmt = (
        update(users)
        .where(users.c.id == user_id, users.c.refresh_token == old_token)
        .values(refresh_token=new_token)
    )
    return _write(stmt).rowcount == 1


def clear_refresh_token(user_id: str) -> None:
    _write(update(users).where(users.c.id == user_id).values(refresh_token=None))
