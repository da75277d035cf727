"""Pydantic schemas for billing API responses and requests."""

from datetime import datetime

from pydantic import BaseModel, Field


class SubscriptionView(BaseModel):
    """Subscription record plus the derived flags the UI renders."""

    has_subscription: bool
    status: str
    status_message: str
    plan_name: str
    stripe_price_id: str | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    is_active: bool
    is_trialing: bool
    is_free_plan: bool
    is_paid_plan: bool
    is_canceled: bool
    days_until_trial_end: int | None = None
    days_until_period_end: int | None = None


class EntitlementsView(BaseModel):
    plan_name: str
    features: list[str]
    limits: dict[str, int | str]


class CheckoutSessionRequest(BaseModel):
    plan_name: str = Field(..., min_length=1, max_length=64)


class PricingPlanView(BaseModel):
    """Plan as shown on the pricing page."""

    name: str
    description: str
    price: int | str
    period: str | None = None
    features: list[str]
    trial_days: int | None = None
    popular: bool = False
    checkout_available: bool
