"""Pytest configuration and shared fixtures for API tests."""

import hashlib
import hmac
import json
import os
import tempfile
import time

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import delete

# Set test DB and secrets before app imports so config/engine use them
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "saas_billing_test.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_PATH}")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRICE_PRO", "price_pro_test")

from saas_billing.config import settings
from saas_billing.db.session import async_session_maker, engine, init_db
from saas_billing.main import app
from saas_billing.models.subscription import Subscription

# 2025-01-01T00:00:00Z and one month earlier
PERIOD_END = 1735689600
PERIOD_START = 1733011200


@pytest_asyncio.fixture
async def clean_db():
    """Create tables and delete all subscriptions so the test starts clean."""
    await init_db()
    async with engine.begin() as conn:
        await conn.execute(delete(Subscription))
    yield
    # Pooled connections belong to this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def session(clean_db):
    async with async_session_maker() as s:
        yield s


@pytest_asyncio.fixture
async def client(clean_db):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def make_token():
    """Return a function issuing identity-provider style access tokens."""

    def _make(user_id: str | None = "user_1", email: str | None = "user1@test.com", **claims) -> str:
        payload = {
            "email": email,
            "aud": settings.auth_jwt_audience,
            "exp": int(time.time()) + 3600,
            **claims,
        }
        if user_id is not None:
            payload["sub"] = user_id
        return jwt.encode(payload, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)

    return _make


@pytest.fixture
def auth_headers(make_token):
    """Authorization header for user_1."""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def sign_payload():
    """Return a function building a Stripe-Signature header for a payload."""

    def _sign(payload: bytes, secret: str | None = None, timestamp: int | None = None) -> str:
        ts = int(time.time()) if timestamp is None else timestamp
        secret = settings.stripe_webhook_secret if secret is None else secret
        signed = f"{ts}.".encode("utf-8") + payload
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={ts},v1={signature}"

    return _sign


@pytest.fixture
def event_payload():
    """Return a function serializing a Stripe event envelope."""

    def _payload(event_type: str, obj: dict, event_id: str = "evt_test_1") -> bytes:
        return json.dumps(
            {
                "id": event_id,
                "object": "event",
                "type": event_type,
                "created": int(time.time()),
                "data": {"object": obj},
            }
        ).encode("utf-8")

    return _payload


@pytest.fixture
def stripe_subscription():
    """Return a function building a Stripe subscription object (webhook shape)."""

    def _make(**overrides) -> dict:
        sub = {
            "id": "sub_123",
            "object": "subscription",
            "customer": "cus_123",
            "status": "active",
            "metadata": {"user_id": "user_1", "plan_name": "Pro"},
            "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": "price_pro_test"}}]},
            "trial_start": None,
            "trial_end": None,
            "current_period_start": PERIOD_START,
            "current_period_end": PERIOD_END,
            "cancel_at_period_end": False,
            "canceled_at": None,
        }
        sub.update(overrides)
        return sub

    return _make


@pytest.fixture
def insert_subscription(clean_db):
    """Return a coroutine function storing a subscription row directly."""

    async def _insert(**fields) -> None:
        values = {
            "user_id": "user_1",
            "status": "active",
            "plan_name": "Pro",
            "cancel_at_period_end": False,
            **fields,
        }
        async with async_session_maker() as s:
            s.add(Subscription(**values))
            await s.commit()

    return _insert
