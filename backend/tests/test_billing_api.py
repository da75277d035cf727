"""Tests for billing endpoints: webhook, checkout, portal, subscription, entitlements, plans."""

from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from saas_billing.core.errors import UpstreamRetrievalFailure
from saas_billing.db.session import async_session_maker
from saas_billing.models.subscription import Subscription

WEBHOOK_URL = "/api/v1/billing/webhook"


async def _load(user_id: str) -> Subscription | None:
    async with async_session_maker() as session:
        r = await session.execute(select(Subscription).where(Subscription.user_id == user_id))
        return r.scalar_one_or_none()


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_webhook_missing_signature(client: AsyncClient):
    resp = await client.post(WEBHOOK_URL, content=b"{}")
    assert resp.status_code == 400
    assert resp.json() == {"error": "No signature provided"}


@pytest.mark.asyncio
async def test_webhook_invalid_signature_changes_nothing(
    client: AsyncClient, sign_payload, event_payload, stripe_subscription
):
    payload = event_payload("customer.subscription.updated", stripe_subscription())
    resp = await client.post(
        WEBHOOK_URL,
        content=payload,
        headers={"stripe-signature": sign_payload(payload, secret="whsec_wrong")},
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid signature"}
    assert await _load("user_1") is None


@pytest.mark.asyncio
async def test_webhook_malformed_payload(client: AsyncClient, sign_payload):
    payload = b'{"id": "evt_1", "type": "customer.subscription.updated"}'
    resp = await client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": sign_payload(payload)})
    assert resp.status_code == 400
    assert "error" in resp.json()


@pytest.mark.asyncio
async def test_webhook_subscription_updated_end_to_end(
    client: AsyncClient, sign_payload, event_payload, stripe_subscription, make_token
):
    sub = stripe_subscription(status="past_due", metadata={"user_id": "u1"}, trial_end=None)
    payload = event_payload("customer.subscription.updated", sub)
    resp = await client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": sign_payload(payload)})
    assert resp.status_code == 200
    assert resp.json() == {"received": True}

    record = await _load("u1")
    assert record is not None
    assert record.status == "past_due"

    resp = await client.get(
        "/api/v1/billing/subscription",
        headers={"Authorization": f"Bearer {make_token('u1')}"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "past_due"
    assert data["status_message"] == "Payment Past Due"
    assert data["trial_end"] is None
    assert data["current_period_end"].startswith("2025-01-01T00:00:00")
    assert data["is_active"] is False


@pytest.mark.asyncio
async def test_webhook_unknown_owner_acknowledged(
    client: AsyncClient, sign_payload, event_payload, stripe_subscription
):
    payload = event_payload("customer.subscription.updated", stripe_subscription(metadata={}))
    with patch(
        "saas_billing.services.stripe_service.retrieve_customer",
        return_value={"id": "cus_123", "metadata": {}},
    ):
        resp = await client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": sign_payload(payload)})
    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert await _load("user_1") is None


@pytest.mark.asyncio
async def test_webhook_unhandled_event_acknowledged(client: AsyncClient, sign_payload, event_payload):
    payload = event_payload("customer.created", {"id": "cus_1", "object": "customer"})
    resp = await client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": sign_payload(payload)})
    assert resp.status_code == 200
    assert resp.json() == {"received": True}


@pytest.mark.asyncio
async def test_webhook_upstream_failure_returns_500(client: AsyncClient, sign_payload, event_payload):
    payload = event_payload("invoice.payment_failed", {"id": "in_1", "subscription": "sub_123"})
    with patch(
        "saas_billing.services.stripe_service.retrieve_subscription",
        side_effect=UpstreamRetrievalFailure("stripe down"),
    ):
        resp = await client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": sign_payload(payload)})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Webhook processing failed"}


@pytest.mark.asyncio
async def test_webhook_subscription_deleted_downgrades(
    client: AsyncClient, sign_payload, event_payload, stripe_subscription, insert_subscription
):
    await insert_subscription(stripe_customer_id="cus_123", stripe_subscription_id="sub_123", stripe_price_id="price_pro_test")
    payload = event_payload("customer.subscription.deleted", stripe_subscription(status="canceled"))
    resp = await client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": sign_payload(payload)})
    assert resp.status_code == 200

    record = await _load("user_1")
    assert record.status == "free"
    assert record.plan_name == "Starter"
    assert record.stripe_subscription_id is None
    assert record.canceled_at is not None


@pytest.mark.asyncio
async def test_subscription_requires_auth(client: AsyncClient):
    resp = await client.get("/api/v1/billing/subscription")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_subscription_defaults_to_free(client: AsyncClient, auth_headers: dict):
    resp = await client.get("/api/v1/billing/subscription", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["has_subscription"] is False
    assert data["status"] == "free"
    assert data["plan_name"] == "Starter"
    assert data["is_free_plan"] is True
    assert await _load("user_1") is None


@pytest.mark.asyncio
async def test_checkout_session_creates_customer_once(client: AsyncClient, auth_headers: dict):
    with patch("saas_billing.services.stripe_service.create_customer", return_value="cus_new") as create_customer:
        with patch(
            "saas_billing.services.stripe_service.create_checkout_session",
            return_value="https://checkout.stripe.test/cs_1",
        ) as create_session:
            resp = await client.post(
                "/api/v1/billing/checkout-session", json={"plan_name": "pro"}, headers=auth_headers
            )
            assert resp.status_code == 200
            assert resp.json() == {"url": "https://checkout.stripe.test/cs_1"}

            resp2 = await client.post(
                "/api/v1/billing/checkout-session", json={"plan_name": "Pro"}, headers=auth_headers
            )
            assert resp2.status_code == 200

    create_customer.assert_called_once_with("user1@test.com", "user_1")
    assert create_session.call_count == 2
    customer_id, user_id, plan, price_id = create_session.call_args.args
    assert (customer_id, user_id, plan.name, price_id) == ("cus_new", "user_1", "Pro", "price_pro_test")

    record = await _load("user_1")
    assert record.status == "free"
    assert record.stripe_customer_id == "cus_new"
    assert record.stripe_subscription_id is None


@pytest.mark.asyncio
@pytest.mark.parametrize("plan_name", ["Starter", "Enterprise", "Platinum"])
async def test_checkout_session_rejects_unpurchasable_plan(client: AsyncClient, auth_headers: dict, plan_name):
    resp = await client.post(
        "/api/v1/billing/checkout-session", json={"plan_name": plan_name}, headers=auth_headers
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_checkout_session_stripe_failure(client: AsyncClient, auth_headers: dict):
    with patch(
        "saas_billing.services.stripe_service.create_customer",
        side_effect=UpstreamRetrievalFailure("stripe down"),
    ):
        resp = await client.post(
            "/api/v1/billing/checkout-session", json={"plan_name": "Pro"}, headers=auth_headers
        )
    assert resp.status_code == 502


@pytest.mark.asyncio
async def test_portal_session_without_customer(client: AsyncClient, auth_headers: dict):
    resp = await client.post("/api/v1/billing/portal-session", headers=auth_headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_portal_session(client: AsyncClient, auth_headers: dict, insert_subscription):
    await insert_subscription(stripe_customer_id="cus_123")
    with patch(
        "saas_billing.services.stripe_service.create_portal_session",
        return_value="https://billing.stripe.test/p_1",
    ) as create_portal:
        resp = await client.post("/api/v1/billing/portal-session", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json() == {"url": "https://billing.stripe.test/p_1"}
    create_portal.assert_called_once_with("cus_123")


@pytest.mark.asyncio
async def test_entitlements_free(client: AsyncClient, auth_headers: dict):
    resp = await client.get("/api/v1/billing/entitlements", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["plan_name"] == "Starter"
    assert data["features"] == ["basic_analytics", "community_support"]
    assert data["limits"] == {"projects": 3, "storage_gb": 1}


@pytest.mark.asyncio
async def test_entitlements_pro(client: AsyncClient, auth_headers: dict, insert_subscription):
    await insert_subscription(plan_name="Pro")
    resp = await client.get("/api/v1/billing/entitlements", headers=auth_headers)
    data = resp.json()
    assert data["plan_name"] == "Pro"
    assert "advanced_analytics" in data["features"]
    assert data["limits"]["projects"] == "unlimited"


@pytest.mark.asyncio
async def test_plans(client: AsyncClient):
    resp = await client.get("/api/v1/billing/plans")
    assert resp.status_code == 200
    plans = {p["name"]: p for p in resp.json()}
    assert list(plans) == ["Starter", "Pro", "Enterprise"]
    assert plans["Pro"]["checkout_available"] is True
    assert plans["Pro"]["trial_days"] == 14
    assert plans["Enterprise"]["price"] == "Custom"
    assert plans["Starter"]["checkout_available"] is False


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


@pytest.mark.asyncio
async def test_metrics_counts_webhook_outcomes(client: AsyncClient, sign_payload, event_payload):
    payload = event_payload("customer.created", {"id": "cus_1", "object": "customer"})
    await client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": sign_payload(payload)})
    resp = await client.get("/metrics/")
    assert resp.status_code == 200
    assert "billing_webhook_events_total" in resp.text
