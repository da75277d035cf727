"""
Translate Stripe subscription objects into the canonical subscription record.

This is the only module that reads Stripe field names on subscriptions. Works on
plain dicts (webhook payloads) and StripeObject instances (API responses) alike.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from saas_billing.config import settings
from saas_billing.core.errors import UnresolvedOwner
from saas_billing.models.subscription import SubscriptionStatus
from saas_billing.services import stripe_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Canonical field values derived from one Stripe subscription object."""

    user_id: str
    stripe_customer_id: str | None
    stripe_subscription_id: str | None
    stripe_price_id: str | None
    status: SubscriptionStatus
    plan_name: str
    trial_start: datetime | None
    trial_end: datetime | None
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    canceled_at: datetime | None

    def as_values(self) -> dict[str, Any]:
        values = asdict(self)
        values["status"] = self.status.value
        return values


def map_stripe_status(raw: str | None) -> SubscriptionStatus:
    """1:1 status translation; anything unrecognized is treated as canceled."""
    match (raw or "").lower():
        case "active":
            return SubscriptionStatus.ACTIVE
        case "trialing":
            return SubscriptionStatus.TRIALING
        case "past_due":
            return SubscriptionStatus.PAST_DUE
        case "canceled":
            return SubscriptionStatus.CANCELED
        case "unpaid":
            return SubscriptionStatus.UNPAID
        case "incomplete":
            return SubscriptionStatus.INCOMPLETE
        case "incomplete_expired":
            return SubscriptionStatus.INCOMPLETE_EXPIRED
        case "paused":
            return SubscriptionStatus.PAUSED
        case _:
            logger.warning("Unrecognized Stripe subscription status %r, recording as canceled", raw)
            return SubscriptionStatus.CANCELED


def from_timestamp(value: Any) -> datetime | None:
    """Epoch seconds -> aware UTC datetime; None and 0 stay None."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def object_id(value: Any) -> str | None:
    """Id of a reference that may be a plain id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        return value.get("id")
    return getattr(value, "id", None)


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any] | None:
    # subscription["items"] rather than .items: StripeObject is a dict subclass
    items = subscription.get("items") or {}
    data = items.get("data") if isinstance(items, Mapping) else None
    return data[0] if data else None


def _period_boundary(subscription: Mapping[str, Any], key: str) -> Any:
    """Period field from the top level, or from the first item on newer API versions."""
    value = subscription.get(key)
    if value is None:
        item = _first_item(subscription)
        if item is not None:
            value = item.get(key)
    return value


def price_id(subscription: Mapping[str, Any]) -> str | None:
    item = _first_item(subscription)
    if item is None:
        return None
    return object_id(item.get("price"))


def resolve_owner(subscription: Mapping[str, Any]) -> str:
    """Local user id from subscription metadata, else from the Stripe customer's metadata."""
    user_id = _metadata(subscription).get(stripe_service.USER_ID_METADATA_KEY)
    if user_id:
        return str(user_id)

    customer_id = object_id(subscription.get("customer"))
    if customer_id:
        customer = stripe_service.retrieve_customer(customer_id)
        if not customer.get("deleted"):
            user_id = _metadata(customer).get(stripe_service.USER_ID_METADATA_KEY)
            if user_id:
                return str(user_id)
    raise UnresolvedOwner(subscription.get("id"), customer_id)


def snapshot_from_stripe(
    subscription: Mapping[str, Any], user_id: str, now: datetime | None = None
) -> SubscriptionSnapshot:
    """Map a Stripe subscription onto canonical values for user_id."""
    now = now or datetime.now(timezone.utc)
    status = map_stripe_status(subscription.get("status"))
    cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
    period_start = from_timestamp(_period_boundary(subscription, "current_period_start")) or now
    period_end = from_timestamp(_period_boundary(subscription, "current_period_end")) or now

    if status == SubscriptionStatus.CANCELED and cancel_at_period_end and period_end > now:
        # Scheduled cancellation has not taken effect yet
        status = SubscriptionStatus.ACTIVE

    return SubscriptionSnapshot(
        user_id=user_id,
        stripe_customer_id=object_id(subscription.get("customer")),
        stripe_subscription_id=subscription.get("id"),
        stripe_price_id=price_id(subscription),
        status=status,
        plan_name=_metadata(subscription).get(stripe_service.PLAN_NAME_METADATA_KEY)
        or settings.default_paid_plan_name,
        trial_start=from_timestamp(subscription.get("trial_start")),
        trial_end=from_timestamp(subscription.get("trial_end")),
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=cancel_at_period_end,
        canceled_at=from_timestamp(subscription.get("canceled_at")),
    )
