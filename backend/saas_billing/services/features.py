"""
Plan -> feature/limit table and entitlement checks.

Loaded once at import; plans are keyed by lowercase plan name. Records without a
plan, or with a plan missing from the table, fall back to the starter entry.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal

from saas_billing.models.subscription import Subscription

UNLIMITED: Literal["unlimited"] = "unlimited"
Limit = int | Literal["unlimited"]

FALLBACK_PLAN = "starter"


@dataclass(frozen=True)
class PlanAccess:
    features: frozenset[str]
    limits: Mapping[str, Limit] = field(default_factory=dict)


_STARTER_FEATURES = frozenset({"basic_analytics", "community_support"})
_PRO_FEATURES = frozenset(
    {"basic_analytics", "advanced_analytics", "priority_support", "custom_integrations"}
)

FEATURE_ACCESS: Mapping[str, PlanAccess] = MappingProxyType(
    {
        "starter": PlanAccess(
            features=_STARTER_FEATURES,
            limits=MappingProxyType({"projects": 3, "storage_gb": 1}),
        ),
        "pro": PlanAccess(
            features=_PRO_FEATURES,
            limits=MappingProxyType({"projects": UNLIMITED, "storage_gb": 50}),
        ),
        "enterprise": PlanAccess(
            features=_PRO_FEATURES | {"dedicated_support", "advanced_security"},
            limits=MappingProxyType({"projects": UNLIMITED, "storage_gb": UNLIMITED}),
        ),
    }
)


def plan_access(subscription: Subscription | None) -> PlanAccess:
    """Table entry for the record's plan, starter when absent or unknown."""
    plan_name = subscription.plan_name if subscription is not None else None
    if plan_name:
        access = FEATURE_ACCESS.get(plan_name.lower())
        if access is not None:
            return access
    return FEATURE_ACCESS[FALLBACK_PLAN]


def has_feature_access(subscription: Subscription | None, feature: str) -> bool:
    return feature in plan_access(subscription).features


def get_usage_limit(subscription: Subscription | None, resource: str) -> Limit:
    """Numeric limit or UNLIMITED; resources the plan does not list are limited to 0."""
    return plan_access(subscription).limits.get(resource, 0)


def has_reached_limit(subscription: Subscription | None, resource: str, current_usage: int) -> bool:
    limit = get_usage_limit(subscription, resource)
    if limit == UNLIMITED:
        return False
    return current_usage >= limit
