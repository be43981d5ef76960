"""
Shared fixtures: in-memory SQLite per test, and in-process fakes for Stripe
and OpenAI wired in through ``app.dependency_overrides``.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"

import copy
import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from emailresponder.config import Settings, get_settings
from emailresponder.db import get_db
from emailresponder.deps import get_gateway, get_generator
from emailresponder.generation import ReplyGenerator
from emailresponder.models import Base
from emailresponder.payments import NoSuchCustomer, StripeGateway

WEBHOOK_SECRET = "whsec_test_secret"
SHARED_SECRET = "shared-test-secret"
IDENTITY_SECRET = "identity-test-secret-0123456789abcdef"

TEST_SETTINGS = Settings(
    stripe_secret_key="sk_test_123",
    stripe_webhook_secret=WEBHOOK_SECRET,
    stripe_price_id="price_basic",
    shared_secret=SHARED_SECRET,
    identity_jwt_secret=IDENTITY_SECRET,
    app_url="https://app.example.com",
)

PERIOD_END = 1_900_000_000


class FakeGateway(StripeGateway):
    """Stripe stand-in backed by dicts shaped like API responses."""

    def __init__(self):
        super().__init__("sk_test_123", "price_basic", 7)
        self.customers = {}
        self.subscriptions = {}
        self.checkout_requests = []

    def add_customer(self, customer_id, email, metadata=None):
        self.customers[customer_id] = {"id": customer_id, "email": email, "metadata": dict(metadata or {})}
        return self.customers[customer_id]

    def add_subscription(self, subscription_id, customer_id, status, price_id="price_basic",
                         period_end=PERIOD_END, metadata=None):
        self.subscriptions[subscription_id] = {
            "id": subscription_id,
            "object": "subscription",
            "customer": customer_id,
            "status": status,
            "current_period_end": period_end,
            "cancel_at_period_end": False,
            "metadata": dict(metadata or {}),
            "items": {"data": [{"price": {"id": price_id}}]},
        }
        return self.subscriptions[subscription_id]

    def retrieve_subscription(self, subscription_id):
        return copy.deepcopy(self.subscriptions[subscription_id])

    def retrieve_customer(self, customer_id):
        return copy.deepcopy(self.customers[customer_id])

    def list_customers_by_email(self, email, limit=10):
        found = [c for c in self.customers.values() if c["email"] == email]
        return copy.deepcopy(found[:limit])

    def search_customers(self, query, limit=1):
        return []

    def list_subscriptions(self, customer_id, limit=10):
        found = [s for s in self.subscriptions.values() if s["customer"] == customer_id]
        return copy.deepcopy(found[:limit])

    def create_checkout_session(self, *, account_id, email, success_url, cancel_url):
        self.checkout_requests.append({
            "account_id": account_id,
            "email": email,
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        return "https://checkout.stripe.test/c/pay_123"

    def create_portal_session(self, email, return_url):
        customer = self.find_customer_by_email(email)
        if customer is None:
            raise NoSuchCustomer(email)
        return f"https://billing.stripe.test/p/session_{customer['id']}"

    def cancel_subscription(self, subscription_id):
        self.subscriptions[subscription_id]["status"] = "canceled"
        return copy.deepcopy(self.subscriptions[subscription_id])

    def cancel_at_period_end(self, subscription_id):
        self.subscriptions[subscription_id]["cancel_at_period_end"] = True
        return copy.deepcopy(self.subscriptions[subscription_id])


class FakeCompletions:
    def __init__(self, content="Sounds good, see you then.\n\nBest,", error=None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_openai(content="Sounds good, see you then.\n\nBest,", error=None):
    completions = FakeCompletions(content, error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_1") -> str:
    return json.dumps({"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}})


def identity_token(sub="acct_1", email="a@b.com", secret=IDENTITY_SECRET, ttl=3600) -> str:
    return jwt.encode({"sub": sub, "email": email, "exp": int(time.time()) + ttl}, secret, algorithm="HS256")


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def openai_client():
    return fake_openai()


@pytest.fixture
def generator(openai_client):
    return ReplyGenerator(api_key="", client=openai_client)


@pytest.fixture
def client(db, gateway, generator):
    from emailresponder.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_generator] = lambda: generator
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {identity_token()}"}
