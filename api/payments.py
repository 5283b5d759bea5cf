"""
Payments blueprint:
- POST /payments/create-checkout-session
- POST /payments/webhook
- GET  /payments/history

The webhook is the only route that changes subscription state on the
provider's behalf. Its signature is verified against the raw request body
before anything in the payload is read, and every handler can be replayed
without creating a second row.
"""
from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP

from flask import Blueprint, request, jsonify, g, current_app

from api import limiter
from api.errors import ServerError, ServiceUnavailable, ValidationFailed
from api.utils.pagination import pagination_meta, parse_pagination
from models import billing_store, credential_store
from models.schemas.payment import CheckoutSessionSchema, PaymentOutSchema
from models.subscription import PLAN_PRICES
from utils.decorators import auth_required
from utils.payment_gateway import (
    CardError,
    ProviderError,
    SignatureVerificationError,
    field,
    period_bound,
)

logger = logging.getLogger(__name__)

bp = Blueprint("payments", __name__)

checkout_schema = CheckoutSessionSchema()
payments_out_schema = PaymentOutSchema(many=True)

REQUIRED_CHECKOUT_FIELDS = ("planId", "planName", "price")


def _gateway():
    return current_app.extensions["payment_gateway"]


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@bp.post("/create-checkout-session")
@auth_required()
def create_checkout_session():
    """
    Start a hosted checkout for a subscription plan
    ---
    tags:
      - Payments
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
          required: [planId, planName, price]
          properties:
            planId: { type: string, enum: [basic, premium, family] }
            planName: { type: string, example: "Premium" }
            price: { type: number, example: 13.99 }
            currency: { type: string, default: usd }
            interval: { type: string, default: month }
    responses:
      200:
        description: "{url, sessionId}"
      400:
        description: MISSING_REQUIRED_FIELDS, VALIDATION_ERROR, INVALID_PLAN_ID, EXISTING_SUBSCRIPTION or PAYMENT_FAILED
      500:
        description: STRIPE_CUSTOMER_ERROR
      503:
        description: PAYMENTS_UNAVAILABLE
    """
    gateway = _gateway()
    if not gateway.enabled:
        raise ServiceUnavailable("Payments are not configured", code="PAYMENTS_UNAVAILABLE")

    payload = request.get_json(silent=True) or {}
    if any(not payload.get(key) for key in REQUIRED_CHECKOUT_FIELDS):
        raise ValidationFailed(
            "Missing required fields: planId, planName, and price are required",
            code="MISSING_REQUIRED_FIELDS",
        )
    data = checkout_schema.load(payload)

    if data["plan_id"] not in PLAN_PRICES:
        raise ValidationFailed(
            "Invalid plan ID. Must be one of: basic, premium, family", code="INVALID_PLAN_ID"
        )

    user = g.current_user
    if billing_store.has_active_subscription(user.id):
        raise ValidationFailed("User already has an active subscription", code="EXISTING_SUBSCRIPTION")

    try:
        customer = gateway.find_or_create_customer(user.email, user.name, user.id)
    except ProviderError as exc:
        logger.error("Stripe customer error for user %s: %s", user.id, exc)
        raise ServerError("Failed to create customer", code="STRIPE_CUSTOMER_ERROR") from exc

    try:
        session = gateway.create_checkout_session(
            customer_id=field(customer, "id"),
            user_id=user.id,
            plan_id=data["plan_id"],
            plan_name=data["plan_name"],
            unit_amount=to_minor_units(data["price"]),
            currency=data["currency"],
            interval=data["interval"],
        )
    except CardError as exc:
        logger.info("Card declined at checkout for user %s: %s", user.id, exc)
        raise ValidationFailed("Payment failed. Please check your card details.", code="PAYMENT_FAILED")
    except ProviderError as exc:
        raise ServerError() from exc

    return jsonify({"url": field(session, "url"), "sessionId": field(session, "id")}), 200


def _invoice_subscription_id(invoice):
    subscription_id = field(invoice, "subscription")
    if subscription_id is None:
        details = field(field(invoice, "parent", {}), "subscription_details", {})
        subscription_id = field(details, "subscription")
    if subscription_id is not None and not isinstance(subscription_id, str):
        # expanded object
        subscription_id = field(subscription_id, "id")
    return subscription_id


def _known_user(user_id) -> bool:
    return bool(user_id) and credential_store.find_by_id(user_id).found


def handle_checkout_completed(gateway, session):
    metadata = field(session, "metadata", {})
    user_id = field(metadata, "userId")
    plan_id = field(metadata, "planId")
    subscription_id = field(session, "subscription")
    if not subscription_id or not _known_user(user_id):
        logger.warning("Checkout %s has no usable user or subscription; ignored", field(session, "id"))
        return

    start = end = None
    cancel_at_period_end = False
    if gateway.enabled:
        subscription = gateway.retrieve_subscription(subscription_id)
        start = period_bound(subscription, "current_period_start")
        end = period_bound(subscription, "current_period_end")
        cancel_at_period_end = bool(field(subscription, "cancel_at_period_end", False))

    billing_store.upsert_provider_subscription(
        user_id, subscription_id, plan_id, "active", start, end, cancel_at_period_end
    )
    # keyed by invoice so the invoice.paid event for the same charge is not counted twice
    payment_id = field(session, "invoice") or field(session, "payment_intent") or field(session, "id")
    billing_store.record_payment(
        user_id,
        payment_id,
        subscription_id,
        field(session, "amount_total", 0),
        field(session, "currency", "usd"),
        "completed",
    )
    billing_store.set_user_subscription(user_id, "active", plan_id)
    logger.info("Subscription activated for user %s plan %s", user_id, plan_id)


def handle_subscription_changed(gateway, subscription):
    subscription_id = field(subscription, "id")
    metadata = field(subscription, "metadata", {})
    existing = billing_store.find_by_provider_id(subscription_id)
    user_id = existing["user_id"] if existing else field(metadata, "userId")
    if not _known_user(user_id):
        logger.info("Subscription %s is not linked to a user yet; ignored", subscription_id)
        return

    plan_id = field(metadata, "planId") or (existing["plan_type"] if existing else None)
    row = billing_store.upsert_provider_subscription(
        user_id,
        subscription_id,
        plan_id,
        field(subscription, "status", "active"),
        period_bound(subscription, "current_period_start"),
        period_bound(subscription, "current_period_end"),
        bool(field(subscription, "cancel_at_period_end", False)),
    )
    billing_store.set_user_subscription(user_id, billing_store.user_status_for(row["status"]), plan_id)
    logger.info("Subscription %s now %s", subscription_id, row["status"])


def handle_subscription_deleted(gateway, subscription):
    subscription_id = field(subscription, "id")
    existing = billing_store.find_by_provider_id(subscription_id)
    if existing is None:
        logger.info("Deleted subscription %s is unknown; ignored", subscription_id)
        return
    billing_store.update_subscription(existing["id"], status="cancelled", cancel_at_period_end=False)
    billing_store.set_user_subscription(existing["user_id"], "cancelled")
    logger.info("Subscription %s cancelled", subscription_id)


def handle_invoice_paid(gateway, invoice):
    subscription_id = _invoice_subscription_id(invoice)
    existing = billing_store.find_by_provider_id(subscription_id) if subscription_id else None
    if existing is None:
        logger.info("Invoice %s is not linked to a known subscription; ignored", field(invoice, "id"))
        return
    billing_store.record_payment(
        existing["user_id"],
        field(invoice, "id"),
        subscription_id,
        field(invoice, "amount_paid", 0),
        field(invoice, "currency", "usd"),
        "completed",
    )


def handle_invoice_failed(gateway, invoice):
    subscription_id = _invoice_subscription_id(invoice)
    existing = billing_store.find_by_provider_id(subscription_id) if subscription_id else None
    if existing is None:
        logger.info("Invoice %s is not linked to a known subscription; ignored", field(invoice, "id"))
        return
    billing_store.record_payment(
        existing["user_id"],
        field(invoice, "id"),
        subscription_id,
        field(invoice, "amount_due", 0),
        field(invoice, "currency", "usd"),
        "failed",
    )
    billing_store.update_subscription(existing["id"], status="past_due")
    billing_store.set_user_subscription(existing["user_id"], "past_due")
    logger.warning("Payment failed for subscription %s", subscription_id)


EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_paid,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_failed,
}


@bp.post("/webhook")
@limiter.exempt
def webhook():
    """
    Provider webhook (signed raw body)
    ---
    tags:
      - Payments
    consumes:
      - application/json
    parameters:
      - in: header
        name: Stripe-Signature
        type: string
        required: true
    responses:
      200:
        description: "{received: true}"
      400:
        description: INVALID_SIGNATURE
      503:
        description: PAYMENTS_UNAVAILABLE
    """
    gateway = _gateway()
    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature")

    try:
        event = gateway.construct_event(payload, signature)
    except RuntimeError as exc:
        raise ServiceUnavailable("Payments are not configured", code="PAYMENTS_UNAVAILABLE") from exc
    except (SignatureVerificationError, ValueError) as exc:
        logger.warning("Webhook signature verification failed: %s", exc)
        raise ValidationFailed("Webhook signature verification failed", code="INVALID_SIGNATURE")

    event_type = field(event, "type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled event type %s", event_type)
    else:
        handler(gateway, field(field(event, "data", {}), "object", {}))

    return jsonify({"received": True}), 200


@bp.get("/history")
@auth_required()
def history():
    """
    Payment history for the current user
    ---
    tags:
      - Payments
    security:
      - Bearer: []
    parameters:
      - { in: query, name: page, type: integer, default: 1 }
      - { in: query, name: limit, type: integer, default: 10 }
    responses:
      200:
        description: "{payments, pagination}; amounts in major units"
    """
    page, limit = parse_pagination(default_limit=10)
    rows, total = billing_store.payment_history(g.current_user.id, page, limit)
    return jsonify(
        {
            "payments": payments_out_schema.dump(rows),
            "pagination": pagination_meta(page, limit, total, total_key="totalPayments"),
        }
    ), 200
