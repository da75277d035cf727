"""Read-only projections over a subscription record (no I/O)."""

from __future__ import annotations

import math
from datetime import datetime, timezone

from saas_billing.config import settings
from saas_billing.models.subscription import Subscription, SubscriptionStatus
from saas_billing.schemas.subscription import SubscriptionView

SECONDS_PER_DAY = 24 * 60 * 60


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _status(subscription: Subscription) -> SubscriptionStatus | None:
    try:
        return SubscriptionStatus(subscription.status)
    except ValueError:
        return None


def _status_value(status: SubscriptionStatus | str) -> str:
    return status.value if isinstance(status, SubscriptionStatus) else status


def days_until(timestamp: datetime | None, now: datetime | None = None) -> int | None:
    """Whole days until timestamp, rounded up; negative once it has passed."""
    if timestamp is None:
        return None
    diff = (_aware(timestamp) - _now(now)).total_seconds()
    return math.ceil(diff / SECONDS_PER_DAY)


def is_trialing(subscription: Subscription | None, now: datetime | None = None) -> bool:
    if subscription is None or subscription.trial_end is None:
        return False
    return (
        subscription.status == SubscriptionStatus.TRIALING
        and _aware(subscription.trial_end) > _now(now)
    )


def is_active(subscription: Subscription | None) -> bool:
    return subscription is not None and subscription.status == SubscriptionStatus.ACTIVE


def is_free_plan(subscription: Subscription | None) -> bool:
    return subscription is None or subscription.status == SubscriptionStatus.FREE


def is_paid_plan(subscription: Subscription | None) -> bool:
    return subscription is not None and subscription.status in (
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.TRIALING,
    )


def is_canceled(subscription: Subscription | None) -> bool:
    if subscription is None:
        return False
    return subscription.status == SubscriptionStatus.CANCELED or bool(subscription.cancel_at_period_end)


def status_message(subscription: Subscription | None) -> str:
    if subscription is None:
        return "Free Plan"
    match _status(subscription):
        case SubscriptionStatus.FREE:
            return "Free Plan"
        case SubscriptionStatus.TRIALING:
            return "Free Trial"
        case SubscriptionStatus.ACTIVE:
            if subscription.cancel_at_period_end:
                return "Canceling at period end"
            return "Active"
        case SubscriptionStatus.PAST_DUE:
            return "Payment Past Due"
        case SubscriptionStatus.CANCELED:
            return "Canceled"
        case SubscriptionStatus.UNPAID:
            return "Unpaid"
        case SubscriptionStatus.INCOMPLETE:
            return "Payment Incomplete"
        case SubscriptionStatus.INCOMPLETE_EXPIRED:
            return "Payment Expired"
        case SubscriptionStatus.PAUSED:
            return "Paused"
        case _:
            return "Unknown"


def plan_display_name(subscription: Subscription | None) -> str:
    if subscription is None or not subscription.plan_name:
        return settings.default_plan_name
    return subscription.plan_name


def enhance_subscription(subscription: Subscription | None, now: datetime | None = None) -> SubscriptionView:
    """Build the API view of a record; None yields the free-plan view."""
    now = _now(now)
    if subscription is None:
        return SubscriptionView(
            has_subscription=False,
            status=SubscriptionStatus.FREE.value,
            status_message=status_message(None),
            plan_name=plan_display_name(None),
            is_active=False,
            is_trialing=False,
            is_free_plan=True,
            is_paid_plan=False,
            is_canceled=False,
        )
    return SubscriptionView(
        has_subscription=True,
        status=_status_value(subscription.status),
        status_message=status_message(subscription),
        plan_name=plan_display_name(subscription),
        stripe_price_id=subscription.stripe_price_id,
        trial_start=subscription.trial_start,
        trial_end=subscription.trial_end,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        cancel_at_period_end=bool(subscription.cancel_at_period_end),
        canceled_at=subscription.canceled_at,
        is_active=is_active(subscription),
        is_trialing=is_trialing(subscription, now),
        is_free_plan=is_free_plan(subscription),
        is_paid_plan=is_paid_plan(subscription),
        is_canceled=is_canceled(subscription),
        days_until_trial_end=days_until(subscription.trial_end, now),
        days_until_period_end=days_until(subscription.current_period_end, now),
    )
