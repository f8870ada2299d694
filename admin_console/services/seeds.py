"""Startup seed helpers."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from admin_console.db.models.core import SubscriptionPlan
from admin_console.utils.datetime import utc_now

DEFAULT_PLANS = (
    {
        "tier": "registered",
        "name": "Registered",
        "description": "Trial access for registered users",
        "price_usd": 0.0,
        "credits_per_month": 50,
    },
    {
        "tier": "subscriber",
        "name": "Subscriber",
        "description": "Monthly subscriber plan",
        "price_usd": 9.99,
        "credits_per_month": 500,
    },
    {
        "tier": "founder",
        "name": "Founder",
        "description": "Founder plan with priority access",
        "price_usd": 19.99,
        "credits_per_month": 1500,
    },
    {
        "tier": "unlimited",
        "name": "Unlimited",
        "description": "Unlimited plan",
        "price_usd": 49.99,
        "credits_per_month": 10000,
    },
)


async def ensure_subscription_plans(session: AsyncSession, *, commit: bool = True) -> list[SubscriptionPlan]:
    """Ensure one active plan per tier exists and stays in sync."""

    plans: list[SubscriptionPlan] = []
    for payload in DEFAULT_PLANS:
        stmt = select(SubscriptionPlan).where(SubscriptionPlan.tier == payload["tier"])
        result = await session.execute(stmt)
        plan = result.scalar_one_or_none()
        now = utc_now()
        if plan:
            plan.name = payload["name"]
            plan.description = payload["description"]
            plan.price_usd = payload["price_usd"]
            plan.credits_per_month = payload["credits_per_month"]
            plan.is_active = True
            plan.updated_at = now
        else:
            plan = SubscriptionPlan(**payload, is_active=True, created_at=now, updated_at=now)
            session.add(plan)
        plans.append(plan)

    if commit:
        await session.commit()
    else:
        await session.flush()
    return plans


__all__ = ["DEFAULT_PLANS", "ensure_subscription_plans"]
