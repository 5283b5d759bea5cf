"""
Subscription and payment persistence shared by the payment webhook and the
subscription routes.

Rows are read with SQLAlchemy Core and returned as plain dicts; columns the
live subscriptions table lacks are filled with None / False so callers see one
shape. Writes commit immediately and roll back on failure.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from models import storage
from models.base_model import _uuid_str, utcnow
from models.payment import Payment
from models.subscription import Subscription
from models.user import SubscriptionStatus, User

logger = logging.getLogger(__name__)

subscriptions = Subscription.__table__
payments = Payment.__table__
users = User.__table__

# provider spelling -> stored spelling
_STATUS_ALIASES = {"canceled": "cancelled"}

_SUBSCRIPTION_DEFAULTS = {
    "current_period_start": None,
    "current_period_end": None,
    "cancel_at_period_end": False,
}


def normalize_status(status: Optional[str]) -> Optional[str]:
    if status is None:
        return None
    return _STATUS_ALIASES.get(status, status)


def user_status_for(subscription_status: Optional[str]) -> str:
    """Map a subscription status onto the coarser users.subscription_status."""
    status = normalize_status(subscription_status)
    if status in ("active", "trialing"):
        return SubscriptionStatus.ACTIVE.value
    if status == "past_due":
        return SubscriptionStatus.PAST_DUE.value
    if status == "cancelled":
        return SubscriptionStatus.CANCELLED.value
    return SubscriptionStatus.INACTIVE.value


def _write(statement):
    try:
        result = storage.execute(statement)
        storage.save()
    except SQLAlchemyError:
        storage.rollback()
        raise
    return result


def _insert_subscription(row: dict) -> None:
    capabilities = storage.capabilities
    _write(insert(capabilities.insertable(subscriptions)).values(**capabilities.writable("subscriptions", row)))


def _subscription_row(row) -> dict:
    data = dict(_SUBSCRIPTION_DEFAULTS)
    data.update(row._mapping)
    data["cancel_at_period_end"] = bool(data["cancel_at_period_end"])
    return data


def _select_subscriptions():
    return select(*storage.capabilities.columns(subscriptions))


def latest_subscription(user_id: str, active_only: bool = False) -> Optional[dict]:
    stmt = _select_subscriptions().where(subscriptions.c.user_id == user_id)
    if active_only:
        stmt = stmt.where(subscriptions.c.status == "active")
    row = storage.execute(
        stmt.order_by(subscriptions.c.created_at.desc(), subscriptions.c.id.desc()).limit(1)
    ).first()
    return _subscription_row(row) if row is not None else None


def find_by_provider_id(stripe_subscription_id: str) -> Optional[dict]:
    row = storage.execute(
        _select_subscriptions().where(subscriptions.c.stripe_subscription_id == stripe_subscription_id)
    ).first()
    return _subscription_row(row) if row is not None else None


def has_active_subscription(user_id: str) -> bool:
    stmt = (
        select(func.count())
        .select_from(subscriptions)
        .where(subscriptions.c.user_id == user_id, subscriptions.c.status == "active")
    )
    return storage.execute(stmt).scalar_one() > 0


def subscription_history(user_id: str, page: int, limit: int) -> Tuple[List[dict], int]:
    total = storage.execute(
        select(func.count()).select_from(subscriptions).where(subscriptions.c.user_id == user_id)
    ).scalar_one()
    rows = storage.execute(
        _select_subscriptions()
        .where(subscriptions.c.user_id == user_id)
        .order_by(subscriptions.c.created_at.desc(), subscriptions.c.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return [_subscription_row(row) for row in rows], total


def update_subscription(subscription_id: str, **values) -> None:
    values = storage.capabilities.writable("subscriptions", values)
    values["updated_at"] = utcnow()
    _write(update(subscriptions).where(subscriptions.c.id == subscription_id).values(**values))


def upsert_provider_subscription(
    user_id: str,
    stripe_subscription_id: str,
    plan_type: Optional[str],
    status: str,
    current_period_start: Optional[datetime] = None,
    current_period_end: Optional[datetime] = None,
    cancel_at_period_end: bool = False,
) -> dict:
    """Insert or update the row keyed by the provider subscription id.

    Replaying the same event leaves exactly one row with the same values.
    """
    values = {
        "status": normalize_status(status),
        "current_period_start": current_period_start,
        "current_period_end": current_period_end,
        "cancel_at_period_end": bool(cancel_at_period_end),
    }
    if plan_type:
        values["plan_type"] = plan_type

    existing = find_by_provider_id(stripe_subscription_id)
    if existing is not None:
        update_subscription(existing["id"], **values)
        return {**existing, **values}

    now = utcnow()
    row = {
        "id": _uuid_str(),
        "user_id": user_id,
        "stripe_subscription_id": stripe_subscription_id,
        "plan_type": plan_type or "unknown",
        "created_at": now,
        "updated_at": now,
        **values,
    }
    _insert_subscription(row)
    logger.info("Subscription %s recorded for user %s", stripe_subscription_id, user_id)
    return row


def activate_local_subscription(user_id: str, plan_type: str) -> None:
    """Activate the latest unlinked subscription row, or create one."""
    latest = latest_subscription(user_id)
    if latest is not None and not latest["stripe_subscription_id"]:
        update_subscription(latest["id"], plan_type=plan_type, status="active", cancel_at_period_end=False)
        return
    now = utcnow()
    row = {
        "id": _uuid_str(),
        "user_id": user_id,
        "plan_type": plan_type,
        "status": "active",
        "cancel_at_period_end": False,
        "created_at": now,
        "updated_at": now,
    }
    _insert_subscription(row)


def set_user_subscription(user_id: str, status: str, plan_type: Optional[str] = None) -> None:
    """Write the user's coarse status; the first activation stamps the start time."""
    values = {"subscription_status": status, "updated_at": utcnow()}
    if plan_type:
        values["subscription_plan_type"] = plan_type
    if status == SubscriptionStatus.ACTIVE.value:
        values["subscription_started_at"] = func.coalesce(users.c.subscription_started_at, utcnow())
    values = storage.capabilities.writable("users", values)
    _write(update(users).where(users.c.id == user_id).values(**values))


def record_payment(
    user_id: str,
    stripe_payment_id: Optional[str],
    stripe_subscription_id: Optional[str],
    amount: int,
    currency: str,
    status: str,
) -> bool:
    """Insert a payment unless the same provider payment was already recorded with this status.

    Returns True when a row was written.
    """
    if stripe_payment_id:
        duplicate = storage.execute(
            select(func.count())
            .select_from(payments)
            .where(payments.c.stripe_payment_id == stripe_payment_id, payments.c.status == status)
        ).scalar_one()
        if duplicate:
            logger.info("Payment %s (%s) already recorded", stripe_payment_id, status)
            return False
    now = utcnow()
    _write(
        insert(payments).values(
            id=_uuid_str(),
            user_id=user_id,
            stripe_payment_id=stripe_payment_id,
            stripe_subscription_id=stripe_subscription_id,
            amount=int(amount or 0),
            currency=(currency or "usd").lower(),
            status=status,
            created_at=now,
            updated_at=now,
        )
    )
    return True


def payment_history(user_id: str, page: int, limit: int) -> Tuple[List[dict], int]:
    total = storage.execute(
        select(func.count()).select_from(payments).where(payments.c.user_id == user_id)
    ).scalar_one()
    rows = storage.execute(
        select(payments)
        .where(payments.c.user_id == user_id)
        .order_by(payments.c.created_at.desc(), payments.c.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return [dict(row._mapping) for row in rows], total
