"""Billing: Stripe webhook, checkout, portal, subscription status and entitlements."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.api.deps import CurrentUser, get_current_user
from saas_billing.config import settings
from saas_billing.core.errors import MalformedEvent, SignatureInvalid, UpstreamRetrievalFailure
from saas_billing.db.session import async_session_maker, get_db
from saas_billing.schemas.subscription import (
    CheckoutSessionRequest,
    EntitlementsView,
    PricingPlanView,
    SubscriptionView,
)
from saas_billing.services import stripe_service, subscription_queries
from saas_billing.services.features import plan_access
from saas_billing.services.pricing import PRICING_PLANS, get_plan
from saas_billing.services.reconciler import reconcile
from saas_billing.services.status import enhance_subscription, plan_display_name
from saas_billing.services.webhook_events import parse_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

WEBHOOK_EVENTS = Counter(
    "billing_webhook_events_total",
    "Stripe webhook deliveries by event type and outcome",
    ["event_type", "outcome"],
)


@router.post(
    "/webhook",
    summary="Stripe webhook",
    include_in_schema=False,
)
async def stripe_webhook(request: Request):
    """Stripe sends events here. Signature is verified, then the event is reconciled into subscriptions."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    if not sig_header:
        return JSONResponse(status_code=400, content={"error": "No signature provided"})
    if not settings.stripe_webhook_secret:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set")
        return JSONResponse(status_code=500, content={"error": "Webhook secret not configured"})
    try:
        event = parse_event(
            payload,
            sig_header,
            settings.stripe_webhook_secret,
            settings.stripe_webhook_tolerance_seconds,
        )
    except SignatureInvalid as e:
        logger.warning("Webhook signature verification failed: %s", e)
        WEBHOOK_EVENTS.labels(event_type="unknown", outcome="rejected").inc()
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})
    except MalformedEvent as e:
        logger.warning("Malformed webhook payload: %s", e)
        WEBHOOK_EVENTS.labels(event_type="unknown", outcome="rejected").inc()
        return JSONResponse(status_code=400, content={"error": str(e)})

    async with async_session_maker() as session:
        try:
            await reconcile(session, event)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("Error processing webhook %s (%s)", event.id, event.type)
            WEBHOOK_EVENTS.labels(event_type=event.type, outcome="failed").inc()
            return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})
    WEBHOOK_EVENTS.labels(event_type=event.type, outcome="processed").inc()
    return {"received": True}


@router.post(
    "/checkout-session",
    summary="Create Stripe Checkout Session",
    responses={401: {"description": "Not authenticated"}, 400: {"description": "Unknown plan or Stripe not configured"}},
)
async def create_checkout_session(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
    body: CheckoutSessionRequest,
) -> dict:
    """Create a Stripe Checkout Session for a subscription plan. Frontend redirects user to returned url."""
    plan = get_plan(body.plan_name)
    if plan is None:
        raise HTTPException(status_code=400, detail=f"Unknown plan: {body.plan_name}")
    price_id = plan.stripe_price_id
    if not price_id:
        raise HTTPException(status_code=400, detail=f"Plan {plan.name} cannot be purchased online")
    try:
        record = await subscription_queries.get_or_create_free_subscription(session, user.id)
        if not record.stripe_customer_id:
            record.stripe_customer_id = stripe_service.create_customer(user.email, user.id)
            await session.flush()
        url = stripe_service.create_checkout_session(record.stripe_customer_id, user.id, plan, price_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamRetrievalFailure as e:
        logger.error("Checkout for user %s failed: %s", user.id, e)
        raise HTTPException(status_code=502, detail="Failed to create checkout session")
    await session.commit()
    return {"url": url}


@router.post(
    "/portal-session",
    summary="Create Stripe Customer Portal Session",
    responses={401: {"description": "Not authenticated"}, 400: {"description": "No customer"}},
)
async def create_portal_session(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
) -> dict:
    """Create a Stripe Customer Portal session for managing subscription. Redirect user to returned url."""
    record = await subscription_queries.get_by_user_id(session, user.id)
    if record is None or not record.stripe_customer_id:
        raise HTTPException(status_code=400, detail="No active subscription found")
    try:
        url = stripe_service.create_portal_session(record.stripe_customer_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamRetrievalFailure as e:
        logger.error("Portal for user %s failed: %s", user.id, e)
        raise HTTPException(status_code=502, detail="Failed to create portal session")
    return {"url": url}


@router.get(
    "/subscription",
    summary="Get current subscription status",
    responses={401: {"description": "Not authenticated"}},
)
async def get_subscription(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
) -> SubscriptionView:
    """Return current subscription info for the authenticated user (free plan when none)."""
    record = await subscription_queries.get_by_user_id(session, user.id)
    return enhance_subscription(record)


@router.get(
    "/entitlements",
    summary="Features and usage limits of the current plan",
    responses={401: {"description": "Not authenticated"}},
)
async def get_entitlements(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[CurrentUser, Depends(get_current_user)],
) -> EntitlementsView:
    record = await subscription_queries.get_by_user_id(session, user.id)
    access = plan_access(record)
    return EntitlementsView(
        plan_name=plan_display_name(record),
        features=sorted(access.features),
        limits=dict(access.limits),
    )


@router.get("/plans", summary="Pricing plans")
async def list_plans() -> list[PricingPlanView]:
    return [
        PricingPlanView(
            name=plan.name,
            description=plan.description,
            price=plan.price,
            period=plan.period,
            features=list(plan.features),
            trial_days=plan.trial_days,
            popular=plan.popular,
            checkout_available=bool(plan.stripe_price_id),
        )
        for plan in PRICING_PLANS
    ]
