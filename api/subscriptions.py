"""
Subscription management for the signed-in user.

State normally arrives through the payment webhook; these routes read it,
reconcile it with the provider on demand, and forward cancel / reactivate /
plan-change requests to the provider before updating the local row.
"""
from __future__ import annotations

import logging
from functools import wraps

from flask import Blueprint, request, jsonify, g, current_app

from api.errors import NotFound, ServerError, ValidationFailed
from api.utils.pagination import pagination_meta, parse_pagination
from models import billing_store, credential_store
from models.schemas.payment import SubscriptionOutSchema
from models.subscription import PLAN_PRICES
from models.user import SubscriptionStatus
from utils.decorators import auth_required
from utils.payment_gateway import ProviderError, field, from_epoch, period_bound

logger = logging.getLogger(__name__)

bp = Blueprint("subscriptions", __name__)

subscriptions_out_schema = SubscriptionOutSchema(many=True)

INVALID_PLAN = "Invalid plan ID. Must be one of: basic, premium, family"


def _gateway():
    return current_app.extensions["payment_gateway"]


def _iso(value):
    return value.isoformat() if value is not None else None


def _linked(subscription) -> bool:
    """True when the row has a provider counterpart we can talk to."""
    return bool(subscription["stripe_subscription_id"]) and _gateway().enabled


def _valid_plan(plan_id) -> bool:
    return isinstance(plan_id, str) and plan_id in PLAN_PRICES


def dev_only(fn):
    """404 unless DEV_ROUTES is switched on."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_app.config.get("DEV_ROUTES"):
            raise NotFound()
        return fn(*args, **kwargs)

    return wrapper


def _reconcile(user_id: str, subscription: dict) -> dict:
    """Pull the provider's view and write back a diverging status.

    Provider failures are logged and the local row is served as-is.
    """
    extra = {}
    try:
        remote = _gateway().retrieve_subscription(subscription["stripe_subscription_id"])
    except ProviderError as exc:
        logger.warning("Could not reach provider for %s: %s", subscription["stripe_subscription_id"], exc)
        return extra

    remote_status = billing_store.normalize_status(field(remote, "status"))
    if remote_status and remote_status != subscription["status"]:
        logger.info(
            "Subscription %s status %s -> %s from provider",
            subscription["id"], subscription["status"], remote_status,
        )
        billing_store.update_subscription(subscription["id"], status=remote_status)
        billing_store.set_user_subscription(
            user_id, billing_store.user_status_for(remote_status), subscription["plan_type"]
        )
        subscription["status"] = remote_status

    extra["next_billing_date"] = period_bound(remote, "current_period_end")
    extra["cancel_at_period_end"] = bool(field(remote, "cancel_at_period_end", False))
    extra["canceled_at"] = from_epoch(field(remote, "canceled_at"))
    return extra


@bp.get("/status")
@auth_required()
def status():
    """
    Current subscription status
    ---
    tags:
      - Subscriptions
    security:
      - Bearer: []
    responses:
      200:
        description: Latest subscription, or {status: "none"} when there is none
    """
    user = g.current_user
    subscription = billing_store.latest_subscription(user.id)

    if subscription is None:
        lookup = credential_store.find_by_id(user.id)
        record = lookup.user if lookup.found else None
        if record is not None and record.subscription_status != SubscriptionStatus.NONE.value:
            return jsonify(
                {
                    "plan_type": record.subscription_plan_type,
                    "status": record.subscription_status,
                    "expires_at": None,
                    "next_billing_date": None,
                    "cancel_at_period_end": False,
                    "canceled_at": None,
                }
            ), 200
        return jsonify({"status": "none", "message": "No subscription found"}), 200

    extra = _reconcile(user.id, subscription) if _linked(subscription) else {}

    return jsonify(
        {
            "plan_type": subscription["plan_type"],
            "status": subscription["status"],
            "expires_at": _iso(subscription["current_period_end"]),
            "next_billing_date": _iso(extra.get("next_billing_date", subscription["current_period_end"])),
            "cancel_at_period_end": extra.get("cancel_at_period_end", subscription["cancel_at_period_end"]),
            "canceled_at": _iso(extra.get("canceled_at")),
            "created_at": _iso(subscription["created_at"]),
            "updated_at": _iso(subscription["updated_at"]),
        }
    ), 200


@bp.get("/history")
@auth_required()
def history():
    """
    Subscription history, newest first
    ---
    tags:
      - Subscriptions
    security:
      - Bearer: []
    parameters:
      - { in: query, name: page, type: integer, default: 1 }
      - { in: query, name: limit, type: integer, default: 10 }
    responses:
      200:
        description: "{subscriptions, pagination}"
    """
    page, limit = parse_pagination(default_limit=10)
    rows, total = billing_store.subscription_history(g.current_user.id, page, limit)
    return jsonify(
        {
            "subscriptions": subscriptions_out_schema.dump(rows),
            "pagination": pagination_meta(page, limit, total, total_key="totalSubscriptions"),
        }
    ), 200


@bp.post("/cancel")
@auth_required()
def cancel():
    """
    Cancel at the end of the current billing period
    ---
    tags:
      - Subscriptions
    security:
      - Bearer: []
    responses:
      200:
        description: Cancellation scheduled
      404:
        description: NO_ACTIVE_SUBSCRIPTION
      500:
        description: STRIPE_CANCELLATION_ERROR
    """
    subscription = billing_store.latest_subscription(g.current_user.id, active_only=True)
    if subscription is None:
        raise NotFound("No active subscription found", code="NO_ACTIVE_SUBSCRIPTION")

    if _linked(subscription):
        try:
            _gateway().set_cancel_at_period_end(subscription["stripe_subscription_id"], True)
        except ProviderError as exc:
            raise ServerError(
                "Failed to cancel subscription with payment provider", code="STRIPE_CANCELLATION_ERROR"
            ) from exc

    # status stays active until the provider reports the period has ended
    billing_store.update_subscription(subscription["id"], cancel_at_period_end=True)
    logger.info("Subscription %s set to cancel at period end", subscription["id"])
    return jsonify(
        {
            "message": "Subscription will be cancelled at the end of the current billing period",
            "cancellation_effective_date": _iso(subscription["current_period_end"]),
        }
    ), 200


@bp.post("/reactivate")
@auth_required()
def reactivate():
    """
    Undo a pending cancellation
    ---
    tags:
      - Subscriptions
    security:
      - Bearer: []
    responses:
      200:
        description: Reactivated
      400:
        description: ALREADY_ACTIVE or SUBSCRIPTION_ENDED
      404:
        description: NO_SUBSCRIPTION
      500:
        description: STRIPE_REACTIVATION_ERROR
    """
    subscription = billing_store.latest_subscription(g.current_user.id)
    if subscription is None:
        raise NotFound("No subscription found", code="NO_SUBSCRIPTION")
    if subscription["status"] != "active":
        raise ValidationFailed(
            "Subscription has ended. Please start a new subscription.", code="SUBSCRIPTION_ENDED"
        )
    if not subscription["cancel_at_period_end"]:
        raise ValidationFailed("Subscription is already active", code="ALREADY_ACTIVE")

    if _linked(subscription):
        try:
            _gateway().set_cancel_at_period_end(subscription["stripe_subscription_id"], False)
        except ProviderError as exc:
            raise ServerError(
                "Failed to reactivate subscription with payment provider", code="STRIPE_REACTIVATION_ERROR"
            ) from exc

    billing_store.update_subscription(subscription["id"], cancel_at_period_end=False)
    logger.info("Subscription %s reactivated", subscription["id"])
    return jsonify({"message": "Subscription reactivated successfully"}), 200


@bp.put("/plan")
@auth_required()
def change_plan():
    """
    Switch the active subscription to another plan (prorated)
    ---
    tags:
      - Subscriptions
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [newPlanId]
          properties:
            newPlanId: { type: string, enum: [basic, premium, family] }
    responses:
      200:
        description: Plan changed
      400:
        description: INVALID_PLAN_ID or SAME_PLAN
      404:
        description: NO_ACTIVE_SUBSCRIPTION
      500:
        description: STRIPE_UPDATE_ERROR
    """
    payload = request.get_json(silent=True) or {}
    new_plan = payload.get("newPlanId")
    if not _valid_plan(new_plan):
        raise ValidationFailed(INVALID_PLAN, code="INVALID_PLAN_ID")

    user = g.current_user
    subscription = billing_store.latest_subscription(user.id, active_only=True)
    if subscription is None:
        raise NotFound("No active subscription found", code="NO_ACTIVE_SUBSCRIPTION")
    if subscription["plan_type"] == new_plan:
        raise ValidationFailed("You are already subscribed to this plan", code="SAME_PLAN")

    if _linked(subscription):
        try:
            _gateway().change_plan(subscription["stripe_subscription_id"], new_plan, PLAN_PRICES[new_plan])
        except ProviderError as exc:
            raise ServerError(
                "Failed to update subscription with payment provider", code="STRIPE_UPDATE_ERROR"
            ) from exc

    billing_store.update_subscription(subscription["id"], plan_type=new_plan)
    billing_store.set_user_subscription(user.id, SubscriptionStatus.ACTIVE.value, new_plan)
    return jsonify(
        {"message": f"Subscription updated to {new_plan} plan successfully", "new_plan": new_plan}
    ), 200


@bp.post("/dev/activate")
@dev_only
@auth_required()
def dev_activate():
    """
    Development only: activate a plan without going through checkout
    ---
    tags:
      - Subscriptions
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            plan: { type: string, default: basic }
    responses:
      200:
        description: Activated
      404:
        description: Route disabled
    """
    payload = request.get_json(silent=True) or {}
    plan = payload.get("plan") or "basic"
    if not _valid_plan(plan):
        raise ValidationFailed(INVALID_PLAN, code="INVALID_PLAN_ID")

    user = g.current_user
    billing_store.activate_local_subscription(user.id, plan)
    billing_store.set_user_subscription(user.id, SubscriptionStatus.ACTIVE.value, plan)
    logger.info("Development activation of %s plan for user %s", plan, user.id)
    return jsonify({"message": "Subscription activated for development", "plan": plan}), 200
