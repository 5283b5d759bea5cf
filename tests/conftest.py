"""Pytest configuration and fixtures."""

import hashlib
import hmac
import json
import time

import pytest

from api import create_app
from models import storage
from utils.payment_gateway import PaymentGateway

STRONG_PASSWORD = "Abcdef1!"
WEBHOOK_SECRET = "whsec_test"


class FakeGateway(PaymentGateway):
    """Records provider calls instead of reaching Stripe.

    construct_event is inherited unchanged, so webhook signatures are verified
    with the real stripe library against WEBHOOK_SECRET.
    """

    def __init__(self):
        super().__init__(
            secret_key="sk_test_fake",
            webhook_secret=WEBHOOK_SECRET,
            frontend_url="http://localhost:3000",
        )
        self.calls = []
        self.failures = {}
        self.remote_subscriptions = {}

    def _record(self, name, *args):
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def find_or_create_customer(self, email, name, user_id):
        self._record("find_or_create_customer", email)
        return {"id": "cus_test"}

    def create_checkout_session(self, customer_id, user_id, plan_id, plan_name, unit_amount, currency="usd", interval="month"):
        self._record("create_checkout_session", plan_id, unit_amount, currency, interval)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id)
        return self.remote_subscriptions.get(
            subscription_id,
            {
                "id": subscription_id,
                "status": "active",
                "current_period_start": 1700000000,
                "current_period_end": 1702592000,
                "cancel_at_period_end": False,
                "canceled_at": None,
            },
        )

    def set_cancel_at_period_end(self, subscription_id, cancel):
        self._record("set_cancel_at_period_end", subscription_id, cancel)
        return {"id": subscription_id, "cancel_at_period_end": cancel}

    def change_plan(self, subscription_id, plan_id, unit_amount, currency="usd"):
        self._record("change_plan", subscription_id, plan_id, unit_amount)
        return {"id": subscription_id}


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Build a Stripe-Signature header for payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(database_url, gateway):
    app = create_app("testing", DATABASE_URL=database_url)
    app.extensions["payment_gateway"] = gateway
    yield app
    storage.close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    """POST /api/auth/register with sensible defaults."""

    def _register(email="a@b.com", password=STRONG_PASSWORD, name="A B"):
        return client.post("/api/auth/register", json={"email": email, "password": password, "name": name})

    return _register


@pytest.fixture
def login(client):
    def _login(email="a@b.com", password=STRONG_PASSWORD):
        return client.post("/api/auth/login", json={"email": email, "password": password})

    return _login


@pytest.fixture
def user(register):
    """A registered user: the register response body."""
    response = register()
    assert response.status_code == 201
    return response.get_json()


@pytest.fixture
def auth_headers(user):
    return bearer(user["accessToken"])


@pytest.fixture
def subscriber(client, user, auth_headers):
    """A registered user with an active basic subscription."""
    response = client.post("/api/subscriptions/dev/activate", json={"plan": "basic"}, headers=auth_headers)
    assert response.status_code == 200
    return user


@pytest.fixture
def post_event(client):
    """Sign and deliver a webhook event."""

    def _post(event_type, obj, secret=WEBHOOK_SECRET):
        payload = json.dumps(
            {"id": f"evt_{event_type}", "object": "event", "type": event_type, "data": {"object": obj}}
        ).encode()
        return client.post(
            "/api/payments/webhook",
            data=payload,
            headers={"Stripe-Signature": sign_payload(payload, secret), "Content-Type": "application/json"},
        )

    return _post
