"""Pricing catalogue shown on the pricing page and accepted by checkout."""

from __future__ import annotations

from dataclasses import dataclass

from saas_billing.config import settings


@dataclass(frozen=True)
class PricingPlan:
    name: str
    description: str
    price: int | str  # monthly price in USD, or "Custom"
    features: tuple[str, ...]
    period: str | None = None
    popular: bool = False
    trial_days: int | None = None
    price_setting: str | None = None  # Settings attribute holding the Stripe Price ID

    @property
    def stripe_price_id(self) -> str | None:
        if not self.price_setting:
            return None
        return getattr(settings, self.price_setting, "") or None


PRICING_PLANS: tuple[PricingPlan, ...] = (
    PricingPlan(
        name="Starter",
        description="Perfect for getting started",
        price=0,
        period="/month",
        features=("Up to 3 projects", "Basic analytics", "Community support", "1GB storage"),
    ),
    PricingPlan(
        name="Pro",
        description="For growing businesses",
        price=29,
        period="/month",
        features=(
            "Unlimited projects",
            "Advanced analytics",
            "Priority support",
            "50GB storage",
            "Custom integrations",
        ),
        popular=True,
        trial_days=14,
        price_setting="stripe_price_pro",
    ),
    PricingPlan(
        name="Enterprise",
        description="For large organizations",
        price="Custom",
        features=(
            "Everything in Pro",
            "Dedicated support",
            "Custom contracts",
            "Unlimited storage",
            "Advanced security",
        ),
    ),
)


def get_plan(name: str) -> PricingPlan | None:
    """Case-insensitive lookup by plan name."""
    wanted = name.strip().lower()
    for plan in PRICING_PLANS:
        if plan.name.lower() == wanted:
            return plan
    return None
