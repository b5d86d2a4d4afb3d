"""Pytest fixtures: test client, test DB (in-memory SQLite), Stripe signing helpers."""
import hashlib
import hmac
import json
import os
import time
import uuid
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

# Must be set before app is imported (settings are read at import time)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_CURRENCY", "sar")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
# High enough that no ordinary test trips the limiter
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")

from sqlmodel import Session, SQLModel

from app.core.config import settings
from app.core.database import engine
from app.core.errors import GatewayUnavailableError
from app.core.rate_limit import limiter
from app.core.security import create_access_token
from app.main import app
from app.models import Template
from app.services.payment_gateway import PaymentGateway, PaymentIntent, StripeGateway, get_gateway, to_minor_units

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


@pytest.fixture(autouse=True)
def _fresh_db():
    """Every test starts with empty tables and a clean limiter."""
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    limiter.reset()
    yield
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client():
    """TestClient; lifespan runs init_db."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_template(db):
    def _make(name="Graduation certificate", price="150.00", is_free=False, is_active=True, type="ready"):
        template = Template(name=name, price=Decimal(price), is_free=is_free, is_active=is_active, type=type)
        db.add(template)
        db.commit()
        db.refresh(template)
        return template

    return _make


def _bearer(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture
def auth_headers():
    return _bearer("user-1")


@pytest.fixture
def other_headers():
    return _bearer("user-2")


@pytest.fixture
def admin_headers():
    return {"X-Admin-Secret": settings.admin_secret}


class FakeGateway(PaymentGateway):
    """Records intent requests; webhook verification is the real Stripe check."""

    def __init__(self):
        self.intents: list[str] = []
        self.attempts: list[str | None] = []
        self.unavailable = False
        self._verifier = StripeGateway(api_key="", webhook_secret=WEBHOOK_SECRET)

    def create_intent(self, order, attempt_id=None) -> PaymentIntent:
        self.attempts.append(attempt_id)
        if self.unavailable:
            raise GatewayUnavailableError("Stripe error: connection refused")
        self.intents.append(order.id)
        return PaymentIntent(
            client_secret=f"pi_fake_{len(self.intents)}_secret_abc",
            external_intent_id=f"pi_fake_{len(self.intents)}",
            amount=to_minor_units(order.total, order.currency),
            currency=order.currency,
        )

    def verify_webhook_signature(self, raw_body, signature_header, secret=None):
        return self._verifier.verify_webhook_signature(raw_body, signature_header, secret)


@pytest.fixture
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_gateway] = lambda: fake
    return fake


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value: t=<unix>,v1=<hex HMAC-SHA256 of "t.payload">."""
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def intent_event(
    event_type: str,
    order_id: str | None,
    intent_id: str = "pi_test_123",
    event_id: str | None = None,
    amount: int = 15000,
    failure_message: str | None = None,
) -> str:
    obj = {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "currency": "sar",
        "metadata": {"order_id": order_id} if order_id else {},
    }
    if failure_message:
        obj["last_payment_error"] = {"message": failure_message}
    return json.dumps(
        {
            "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }
    )


@pytest.fixture
def stripe_event():
    return intent_event


@pytest.fixture
def post_webhook(client):
    def _post(payload: str, signature: str | None = "sign", path: str = "/payments/webhook"):
        headers = {"Content-Type": "application/json"}
        if signature == "sign":
            signature = sign(payload)
        if signature is not None:
            headers["Stripe-Signature"] = signature
        return client.post(path, content=payload, headers=headers)

    return _post


@pytest.fixture
def signer():
    return sign
