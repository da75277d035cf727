"""Stripe gateway: customers, checkout, portal, subscription retrieval."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import stripe

from saas_billing.config import settings
from saas_billing.core.errors import UpstreamRetrievalFailure
from saas_billing.services.pricing import PricingPlan

logger = logging.getLogger(__name__)

stripe.api_key = settings.stripe_secret_key
if settings.stripe_api_version:
    stripe.api_version = settings.stripe_api_version

# Metadata key carrying the identity-provider user id on Stripe customers and subscriptions
USER_ID_METADATA_KEY = "user_id"
PLAN_NAME_METADATA_KEY = "plan_name"


def _require_configured() -> None:
    if not settings.stripe_configured:
        raise ValueError("Stripe is not configured")


def create_customer(email: str | None, user_id: str) -> str:
    """Create a Stripe customer tagged with the local user id. Returns customer id."""
    _require_configured()
    try:
        customer = stripe.Customer.create(
            email=email,
            metadata={USER_ID_METADATA_KEY: user_id},
        )
    except stripe.StripeError as e:
        raise UpstreamRetrievalFailure(f"Failed to create Stripe customer: {e}") from e
    return customer.id


def create_checkout_session(customer_id: str, user_id: str, plan: PricingPlan, price_id: str) -> str:
    """Create a subscription-mode Checkout Session. Returns the session URL."""
    _require_configured()
    base = settings.site_url.rstrip("/")
    owner_metadata = {USER_ID_METADATA_KEY: user_id, PLAN_NAME_METADATA_KEY: plan.name}
    subscription_data: dict[str, Any] = {"metadata": owner_metadata}
    if plan.trial_days and plan.trial_days > 0:
        subscription_data["trial_period_days"] = plan.trial_days

    try:
        checkout = stripe.checkout.Session.create(
            customer=customer_id,
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{base}/dashboard?checkout=success",
            cancel_url=f"{base}/dashboard?checkout=canceled",
            client_reference_id=user_id,
            metadata={**owner_metadata, "price_id": price_id},
            subscription_data=subscription_data,
            allow_promotion_codes=True,
            billing_address_collection="auto",
        )
    except stripe.StripeError as e:
        raise UpstreamRetrievalFailure(f"Failed to create checkout session: {e}") from e
    if not checkout.url:
        raise UpstreamRetrievalFailure("Stripe returned a checkout session without url")
    return checkout.url


def create_portal_session(customer_id: str) -> str:
    """Create a Customer Portal session. Returns portal URL."""
    _require_configured()
    try:
        portal = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=f"{settings.site_url.rstrip('/')}/dashboard",
        )
    except stripe.StripeError as e:
        raise UpstreamRetrievalFailure(f"Failed to create portal session: {e}") from e
    if not portal.url:
        raise UpstreamRetrievalFailure("Stripe returned a portal session without url")
    return portal.url


def retrieve_subscription(subscription_id: str) -> Mapping[str, Any]:
    """Fetch the full subscription object (first item price expanded)."""
    _require_configured()
    try:
        return stripe.Subscription.retrieve(subscription_id, expand=["items.data.price"])
    except stripe.StripeError as e:
        raise UpstreamRetrievalFailure(f"Failed to retrieve subscription {subscription_id}: {e}") from e


def update_subscription_metadata(subscription_id: str, metadata: Mapping[str, str]) -> None:
    _require_configured()
    try:
        stripe.Subscription.modify(subscription_id, metadata=dict(metadata))
    except stripe.StripeError as e:
        raise UpstreamRetrievalFailure(f"Failed to update metadata on {subscription_id}: {e}") from e


def retrieve_customer(customer_id: str) -> Mapping[str, Any]:
    """Fetch a customer; deleted customers come back as {"id", "deleted": True}."""
    _require_configured()
    try:
        return stripe.Customer.retrieve(customer_id)
    except stripe.StripeError as e:
        raise UpstreamRetrievalFailure(f"Failed to retrieve customer {customer_id}: {e}") from e
