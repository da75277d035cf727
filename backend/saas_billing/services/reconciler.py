"""
Fold verified Stripe webhook events into the local subscription record.

Every path is idempotent: provider delivery is at-least-once, and replays
converge on the same record because writes are upserts keyed on user id with
deterministic field mapping. Transient failures (PersistenceFailure,
UpstreamRetrievalFailure) propagate so Stripe redelivers; an unresolvable owner
is logged and acknowledged.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.config import settings
from saas_billing.core.errors import UnresolvedOwner
from saas_billing.models.subscription import Subscription
from saas_billing.services import stripe_service, subscription_queries
from saas_billing.services.subscription_mapping import object_id, resolve_owner, snapshot_from_stripe
from saas_billing.services.webhook_events import EventKind, WebhookEvent

logger = logging.getLogger(__name__)


async def apply_stripe_subscription(
    session: AsyncSession, subscription: Mapping[str, Any], now: datetime | None = None
) -> Subscription:
    """Resolve the owner, map the object and upsert. Raises UnresolvedOwner."""
    user_id = resolve_owner(subscription)
    snapshot = snapshot_from_stripe(subscription, user_id, now)
    record = await subscription_queries.upsert_subscription(session, snapshot.as_values(), now)
    logger.info(
        "Subscription %s for user %s reconciled: status=%s plan=%s",
        snapshot.stripe_subscription_id,
        user_id,
        snapshot.status.value,
        snapshot.plan_name,
    )
    return record


async def handle_checkout_completed(
    session: AsyncSession, checkout: Mapping[str, Any], now: datetime | None = None
) -> Subscription | None:
    """Copy checkout metadata onto the Stripe subscription, then sync it."""
    sub_id = object_id(checkout.get("subscription"))
    if not sub_id:
        logger.info("Checkout session %s has no subscription, ignoring", checkout.get("id"))
        return None

    subscription = stripe_service.retrieve_subscription(sub_id)
    metadata = checkout.get("metadata") or {}
    existing = dict(subscription.get("metadata") or {})
    user_key = stripe_service.USER_ID_METADATA_KEY
    plan_key = stripe_service.PLAN_NAME_METADATA_KEY
    owner_metadata = {
        user_key: metadata.get(user_key) or existing.get(user_key) or checkout.get("client_reference_id"),
        plan_key: metadata.get(plan_key) or existing.get(plan_key) or settings.default_paid_plan_name,
    }
    # Stripe deletes a metadata key sent with an empty value
    owner_metadata = {k: v for k, v in owner_metadata.items() if v}
    stripe_service.update_subscription_metadata(sub_id, owner_metadata)

    merged = dict(subscription)
    merged["metadata"] = {**existing, **owner_metadata}
    return await apply_stripe_subscription(session, merged, now)


async def handle_subscription_deleted(
    session: AsyncSession, subscription: Mapping[str, Any], now: datetime | None = None
) -> Subscription | None:
    """Downgrade the customer's record to the free plan; the row is never removed."""
    customer_id = object_id(subscription.get("customer"))
    existing = await subscription_queries.get_by_customer_id(session, customer_id) if customer_id else None
    if existing is None:
        logger.info(
            "Subscription %s deleted for unknown customer %s, nothing to downgrade",
            subscription.get("id"),
            customer_id,
        )
        return None
    deleted_id = object_id(subscription.get("id"))
    if existing.stripe_subscription_id and existing.stripe_subscription_id != deleted_id:
        logger.info(
            "Subscription %s deleted but user %s is on %s, leaving record unchanged",
            deleted_id,
            existing.user_id,
            existing.stripe_subscription_id,
        )
        return None
    record = await subscription_queries.downgrade_to_free(session, existing, now)
    logger.info("User %s downgraded to %s", record.user_id, record.plan_name)
    return record


def invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    """Subscription an invoice belongs to (top-level on older API versions, under parent on newer)."""
    sub_id = object_id(invoice.get("subscription"))
    if sub_id:
        return sub_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return object_id(details.get("subscription"))


async def handle_invoice(
    session: AsyncSession, invoice: Mapping[str, Any], now: datetime | None = None
) -> Subscription | None:
    """Re-sync the invoice's subscription; status comes from Stripe, not from the invoice."""
    sub_id = invoice_subscription_id(invoice)
    if not sub_id:
        logger.info("Invoice %s has no subscription, ignoring", invoice.get("id"))
        return None
    subscription = stripe_service.retrieve_subscription(sub_id)
    return await apply_stripe_subscription(session, subscription, now)


async def reconcile(session: AsyncSession, event: WebhookEvent, now: datetime | None = None) -> Subscription | None:
    """Apply one webhook event. Returns the touched record, or None when nothing changed."""
    now = now or datetime.now(timezone.utc)
    obj = event.object
    try:
        match event.kind:
            case EventKind.CHECKOUT_COMPLETED:
                return await handle_checkout_completed(session, obj, now)
            case EventKind.SUBSCRIPTION_CREATED | EventKind.SUBSCRIPTION_UPDATED:
                return await apply_stripe_subscription(session, obj, now)
            case EventKind.SUBSCRIPTION_DELETED:
                return await handle_subscription_deleted(session, obj, now)
            case EventKind.TRIAL_WILL_END:
                logger.info("Trial will end for subscription %s", obj.get("id"))
                return None
            case EventKind.INVOICE_PAYMENT_SUCCEEDED | EventKind.INVOICE_PAYMENT_FAILED:
                return await handle_invoice(session, obj, now)
            case _:
                logger.info("Unhandled event type: %s", event.type)
                return None
    except UnresolvedOwner as e:
        logger.warning("Event %s (%s) acknowledged without changes: %s", event.id, event.type, e)
        return None
