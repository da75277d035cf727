"""Reads and writes of the subscriptions table."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.config import settings
from saas_billing.core.errors import PersistenceFailure
from saas_billing.models.subscription import Subscription, SubscriptionStatus

# Columns an upsert may overwrite; user_id is the conflict target, created_at is kept
_UPSERT_COLUMNS = (
    "stripe_customer_id",
    "stripe_subscription_id",
    "stripe_price_id",
    "status",
    "plan_name",
    "trial_start",
    "trial_end",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "canceled_at",
    "updated_at",
)


def _insert_for(session: AsyncSession):
    if session.bind is not None and session.bind.dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def get_by_user_id(session: AsyncSession, user_id: str) -> Subscription | None:
    try:
        r = await session.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return r.scalar_one_or_none()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to load subscription for user {user_id}") from e


async def get_by_customer_id(session: AsyncSession, customer_id: str) -> Subscription | None:
    """Most recently updated record for a Stripe customer."""
    try:
        r = await session.execute(
            select(Subscription)
            .where(Subscription.stripe_customer_id == customer_id)
            .order_by(Subscription.updated_at.desc())
            .limit(1)
        )
        return r.scalars().first()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to load subscription for customer {customer_id}") from e


async def get_by_stripe_subscription_id(session: AsyncSession, subscription_id: str) -> Subscription | None:
    try:
        r = await session.execute(
            select(Subscription)
            .where(Subscription.stripe_subscription_id == subscription_id)
            .order_by(Subscription.updated_at.desc())
            .limit(1)
        )
        return r.scalars().first()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to load subscription {subscription_id}") from e


async def upsert_subscription(
    session: AsyncSession, values: dict[str, Any], now: datetime | None = None
) -> Subscription:
    """INSERT ... ON CONFLICT (user_id) DO UPDATE. Returns the stored record."""
    now = now or datetime.now(timezone.utc)
    row = {**values, "updated_at": now}
    insert = _insert_for(session)
    stmt = insert(Subscription).values({**row, "created_at": now})
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={col: getattr(stmt.excluded, col) for col in _UPSERT_COLUMNS if col in row},
    )
    try:
        await session.execute(stmt)
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to upsert subscription for user {values.get('user_id')}") from e
    stored = await get_by_user_id(session, values["user_id"])
    if stored is None:
        raise PersistenceFailure(f"Upserted subscription for user {values['user_id']} not found")
    return stored


async def downgrade_to_free(
    session: AsyncSession, subscription: Subscription, now: datetime | None = None
) -> Subscription:
    """Soft downgrade: keep the row, drop everything tied to the ended Stripe subscription."""
    now = now or datetime.now(timezone.utc)
    subscription.status = SubscriptionStatus.FREE.value
    subscription.plan_name = settings.default_plan_name
    subscription.stripe_subscription_id = None
    subscription.stripe_price_id = None
    subscription.trial_start = None
    subscription.trial_end = None
    subscription.current_period_start = None
    subscription.current_period_end = None
    subscription.cancel_at_period_end = False
    subscription.canceled_at = now
    subscription.updated_at = now
    try:
        await session.flush()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to downgrade subscription for user {subscription.user_id}") from e
    return subscription


async def get_or_create_free_subscription(session: AsyncSession, user_id: str) -> Subscription:
    """Existing record for user_id, or a new free one (created lazily before first checkout)."""
    existing = await get_by_user_id(session, user_id)
    if existing is not None:
        return existing
    now = datetime.now(timezone.utc)
    insert = _insert_for(session)
    stmt = (
        insert(Subscription)
        .values(
            user_id=user_id,
            status=SubscriptionStatus.FREE.value,
            plan_name=settings.default_plan_name,
            cancel_at_period_end=False,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    try:
        await session.execute(stmt)
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to create subscription for user {user_id}") from e
    created = await get_by_user_id(session, user_id)
    if created is None:
        raise PersistenceFailure(f"Created subscription for user {user_id} not found")
    return created
