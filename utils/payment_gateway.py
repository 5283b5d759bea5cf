"""
Thin wrapper over the stripe library.

Everything that talks to the payment provider goes through PaymentGateway so
the controllers can be exercised with a stand-in object. The gateway is
disabled (enabled == False) when no secret key is configured; controllers
then skip provider reconciliation and refuse to create checkout sessions.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import stripe

logger = logging.getLogger(__name__)

# re-exported so controllers do not import stripe directly
ProviderError = stripe.StripeError
CardError = stripe.CardError
SignatureVerificationError = stripe.SignatureVerificationError


def field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a StripeObject or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def from_epoch(value: Any) -> Optional[datetime]:
    """Provider timestamps are unix seconds; stored as naive UTC."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def period_bound(subscription: Any, key: str) -> Optional[datetime]:
    """current_period_start/end live on the subscription, or on its first item in newer API versions."""
    value = field(subscription, key)
    if value is None:
        items = field(field(subscription, "items", {}), "data", [])
        value = field(items[0], key) if items else None
    return from_epoch(value)


class PaymentGateway:
    def __init__(self, secret_key: str = "", webhook_secret: str = "", frontend_url: str = ""):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url.rstrip("/")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "PaymentGateway":
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY", ""),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET", ""),
            frontend_url=config.get("FRONTEND_URL", ""),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.secret_key)

    def find_or_create_customer(self, email: str, name: str, user_id: str):
        customers = stripe.Customer.list(email=email, limit=1, api_key=self.secret_key)
        data = field(customers, "data", [])
        if data:
            return data[0]
        return stripe.Customer.create(
            email=email,
            name=name,
            metadata={"userId": str(user_id)},
            api_key=self.secret_key,
        )

    def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        plan_id: str,
        plan_name: str,
        unit_amount: int,
        currency: str = "usd",
        interval: str = "month",
    ):
        metadata = {"userId": str(user_id), "planId": plan_id, "planName": plan_name}
        session = stripe.checkout.Session.create(
            customer=customer_id,
            payment_method_types=["card"],
            mode="subscription",
            line_items=[
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": {
                            "name": plan_name,
                            "description": f"{plan_name} subscription plan",
                            "metadata": {"planId": plan_id},
                        },
                        "unit_amount": unit_amount,
                        "recurring": {"interval": interval, "interval_count": 1},
                    },
                    "quantity": 1,
                }
            ],
            success_url=(
                f"{self.frontend_url}/subscription?success=true&plan={plan_name}"
                "&session_id={CHECKOUT_SESSION_ID}"
            ),
            cancel_url=f"{self.frontend_url}/subscription?cancelled=true",
            metadata=metadata,
            subscription_data={"metadata": metadata},
            allow_promotion_codes=True,
            billing_address_collection="required",
            customer_update={"address": "auto", "name": "auto"},
            api_key=self.secret_key,
        )
        logger.info("Checkout session %s created for user %s", field(session, "id"), user_id)
        return session

    def construct_event(self, payload: bytes, signature: str | None):
        """Verify the provider signature and parse the event.

        Raises SignatureVerificationError or ValueError; nothing in the payload
        is trusted before this returns.
        """
        if not self.webhook_secret:
            raise RuntimeError("Stripe webhook secret not configured")
        return stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)

    def retrieve_subscription(self, subscription_id: str):
        return stripe.Subscription.retrieve(subscription_id, api_key=self.secret_key)

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool):
        return stripe.Subscription.modify(
            subscription_id, cancel_at_period_end=cancel, api_key=self.secret_key
        )

    def change_plan(self, subscription_id: str, plan_id: str, unit_amount: int, currency: str = "usd"):
        current = self.retrieve_subscription(subscription_id)
        items = field(field(current, "items", {}), "data", [])
        if not items:
            raise stripe.InvalidRequestError(f"Subscription {subscription_id} has no items", param="items")
        item = items[0]
        # subscription items only accept price_data for an existing product
        product_id = field(field(item, "price", {}), "product")
        updated = stripe.Subscription.modify(
            subscription_id,
            items=[
                {
                    "id": field(item, "id"),
                    "price_data": {
                        "currency": currency,
                        "product": product_id,
                        "unit_amount": unit_amount,
                        "recurring": {"interval": "month"},
                    },
                }
            ],
            proration_behavior="create_prorations",
            api_key=self.secret_key,
        )
        logger.info("Subscription %s moved to plan %s", subscription_id, plan_id)
        return updated
