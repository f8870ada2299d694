"""Subscription lifecycle: plan changes, billing simulations and status toggles."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admin_console.config import AdminSettings, get_settings
from admin_console.db.models.core import (
    BillingSimulation,
    PlanChangeEvent,
    Subscription,
    SubscriptionPlan,
)
from admin_console.domain.models import (
    TIER_ORDER,
    ActivityEntry,
    BillingSimulationRecord,
    Caller,
    PlanChangeRecord,
    PlanRecord,
    SubscriptionDetails,
    SubscriptionRecord,
)
from admin_console.logging import logger
from admin_console.services.activity_log import ActivityLogService
from admin_console.services.exceptions import (
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
    translate_store_error,
)
from admin_console.utils.datetime import days_from_now, utc_now

DEFAULT_CANCEL_REASON = "User requested cancellation"


def tier_rank(tier: str) -> int:
    try:
        return TIER_ORDER.index(tier)
    except ValueError:
        raise ValidationError(f"Unknown subscription tier: {tier!r}.") from None


def classify_change(from_tier: str | None, to_tier: str) -> str:
    """Label a tier transition for presentation; carries no authorization meaning."""

    if from_tier is None:
        return "new"
    delta = tier_rank(to_tier) - tier_rank(from_tier)
    if delta > 0:
        return "upgrade"
    if delta < 0:
        return "downgrade"
    return "change"


class SubscriptionService:
    def __init__(
        self,
        session: AsyncSession,
        settings: AdminSettings | None = None,
        activity_log: ActivityLogService | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.activity_log = activity_log or ActivityLogService(session, settings=self.settings)

    async def change_plan(
        self,
        caller: Caller | None,
        user_id: int,
        new_tier: str,
        payment_method: str | None = None,
        *,
        reason: str | None = None,
    ) -> SubscriptionRecord:
        """Move a user onto ``new_tier`` through a recorded billing simulation.

        Steps run sequentially and any failure aborts the rest. A simulation
        that was already written stays ``pending``; see
        :meth:`reconcile_stale_simulations`.
        """

        tier_rank(new_tier)
        if caller is None:
            raise NotAuthenticatedError("Not authenticated.")
        payment_method = (payment_method or "").strip() or self._billing_setting(
            "default_payment_method", "card"
        )

        plan = await self._get_active_plan(new_tier)
        logger.info("plan_change_started", user_id=user_id, tier=new_tier, plan_id=plan.id)

        simulation = BillingSimulation(
            user_id=user_id,
            tier=new_tier,
            simulated_price=plan.price_usd,
            payment_method=payment_method,
            payment_status="pending",
        )
        self.session.add(simulation)
        await self._flush()

        subscription = await self._get_subscription(user_id)
        previous_tier = subscription.tier if subscription else None
        previous_plan_id = subscription.plan_id if subscription else None
        now = utc_now()
        if subscription is None:
            subscription = Subscription(user_id=user_id)
            self.session.add(subscription)
        subscription.plan_id = plan.id
        subscription.tier = new_tier
        subscription.status = "active"
        subscription.is_active = True
        subscription.credits_per_month = plan.credits_per_month
        subscription.price_paid = plan.price_usd
        subscription.next_billing_date = days_from_now(
            self._billing_setting("billing_cycle_days", 30), now=now
        )
        subscription.auto_renewal = True
        subscription.cancellation_date = None
        subscription.cancellation_reason = None
        subscription.updated_at = now
        await self._flush()

        simulation.payment_status = "completed"
        simulation.processed_at = utc_now()
        await self._flush()

        change_kind = classify_change(previous_tier, new_tier)
        event = PlanChangeEvent(
            user_id=user_id,
            from_plan_id=previous_plan_id,
            to_plan_id=plan.id,
            from_tier=previous_tier,
            to_tier=new_tier,
            change_reason=reason or f"Admin-initiated {change_kind}",
            processed_by=caller.user_id,
        )
        self.session.add(event)
        await self._flush()

        logger.info(
            "plan_changed",
            user_id=user_id,
            from_tier=previous_tier,
            to_tier=new_tier,
            change=change_kind,
            simulation_id=simulation.id,
        )

        admin_name = await self.activity_log.resolve_admin_name(caller)
        await self.activity_log.record_best_effort(
            ActivityEntry(
                admin_user_id=caller.user_id,
                user_id=user_id,
                entity_type="subscription",
                entity_id=subscription.id,
                activity_type="plan_change",
                description=(
                    f"Plan {change_kind} {previous_tier or 'none'} -> {new_tier} by {admin_name}"
                ),
                metadata={
                    "from_tier": previous_tier,
                    "to_tier": new_tier,
                    "change": change_kind,
                    "simulation_id": simulation.id,
                    "admin_name": admin_name,
                },
            )
        )
        return SubscriptionRecord.model_validate(subscription)

    async def cancel(
        self, caller: Caller | None, user_id: int, reason: str | None = None
    ) -> SubscriptionRecord:
        subscription = await self._require_active_subscription(caller, user_id)
        previous_status = subscription.status
        now = utc_now()
        subscription.status = "cancelled"
        subscription.cancellation_date = now
        subscription.cancellation_reason = (reason or "").strip() or DEFAULT_CANCEL_REASON
        subscription.auto_renewal = False
        subscription.updated_at = now
        await self._flush()
        logger.info("subscription_cancelled", user_id=user_id, reason=subscription.cancellation_reason)
        await self._log_status_change(
            caller, subscription, previous_status, extra={"reason": subscription.cancellation_reason}
        )
        return SubscriptionRecord.model_validate(subscription)

    async def pause(self, caller: Caller | None, user_id: int) -> SubscriptionRecord:
        subscription = await self._require_active_subscription(caller, user_id)
        if subscription.status == "cancelled":
            raise ValidationError("Cancelled subscriptions cannot be paused.")
        return await self._set_status(caller, subscription, "paused")

    async def resume(self, caller: Caller | None, user_id: int) -> SubscriptionRecord:
        subscription = await self._require_active_subscription(caller, user_id)
        if subscription.status != "paused":
            raise ValidationError(
                f"Only paused subscriptions can be resumed (current: {subscription.status})."
            )
        return await self._set_status(caller, subscription, "active")

    async def update_renewal_settings(self, user_id: int, auto_renewal: bool) -> SubscriptionRecord:
        subscription = await self._get_subscription(user_id, active_only=True)
        if subscription is None:
            raise NotFoundError(f"User {user_id} has no active subscription.")
        subscription.auto_renewal = bool(auto_renewal)
        subscription.updated_at = utc_now()
        await self._flush()
        return SubscriptionRecord.model_validate(subscription)

    async def get_current_subscription(self, user_id: int) -> SubscriptionDetails | None:
        subscription = await self._get_subscription(user_id)
        if subscription is None:
            return None
        plan = None
        if subscription.plan_id is not None:
            plan = await self.session.get(SubscriptionPlan, subscription.plan_id)
        return SubscriptionDetails(
            subscription=SubscriptionRecord.model_validate(subscription),
            plan=PlanRecord.model_validate(plan) if plan else None,
        )

    async def list_plans(self) -> list[PlanRecord]:
        stmt = (
            select(SubscriptionPlan)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.price_usd.asc(), SubscriptionPlan.id.asc())
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [PlanRecord.model_validate(row) for row in rows]

    async def get_history(self, user_id: int, limit: int = 10) -> list[PlanChangeRecord]:
        stmt = (
            select(PlanChangeEvent)
            .where(PlanChangeEvent.user_id == user_id)
            .order_by(PlanChangeEvent.created_at.desc(), PlanChangeEvent.id.desc())
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [PlanChangeRecord.model_validate(row) for row in rows]

    async def list_billing_simulations(
        self, user_id: int, limit: int = 5
    ) -> list[BillingSimulationRecord]:
        stmt = (
            select(BillingSimulation)
            .where(BillingSimulation.user_id == user_id)
            .order_by(BillingSimulation.created_at.desc(), BillingSimulation.id.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [BillingSimulationRecord.model_validate(row) for row in rows]

    async def reconcile_stale_simulations(self, older_than: timedelta | None = None) -> int:
        """Mark pending simulations older than the cutoff as failed."""

        if older_than is None:
            older_than = timedelta(minutes=self._billing_setting("stale_simulation_minutes", 60))
        now = utc_now()
        cutoff = now - older_than
        stmt = (
            update(BillingSimulation)
            .where(
                BillingSimulation.payment_status == "pending",
                BillingSimulation.created_at < cutoff,
            )
            .values(payment_status="failed", processed_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc
        reconciled = result.rowcount or 0
        if reconciled:
            logger.warning("billing_simulations_reconciled", count=reconciled, cutoff=cutoff.isoformat())
        return reconciled

    async def get_analytics(self) -> dict[str, Any]:
        stmt = select(Subscription).where(Subscription.is_active.is_(True))
        subscriptions = (await self.session.execute(stmt)).scalars().all()

        by_tier: dict[str, dict[str, Any]] = {}
        total_mrr = 0.0
        for sub in subscriptions:
            bucket = by_tier.setdefault(sub.tier, {"count": 0, "revenue": 0.0})
            bucket["count"] += 1
            if sub.status == "active":
                price = float(sub.price_paid or 0)
                bucket["revenue"] += price
                total_mrr += price

        return {
            "total_subscriptions": len(subscriptions),
            "active_subscriptions": sum(1 for s in subscriptions if s.status == "active"),
            "trial_subscriptions": sum(1 for s in subscriptions if s.status == "trial"),
            "paused_subscriptions": sum(1 for s in subscriptions if s.status == "paused"),
            "cancelled_subscriptions": sum(1 for s in subscriptions if s.status == "cancelled"),
            "by_tier": by_tier,
            "total_mrr": round(total_mrr, 2),
        }

    # Internal helpers -------------------------------------------------

    async def _set_status(
        self, caller: Caller, subscription: Subscription, status: str
    ) -> SubscriptionRecord:
        previous_status = subscription.status
        subscription.status = status
        subscription.updated_at = utc_now()
        await self._flush()
        logger.info(
            "subscription_status_changed",
            user_id=subscription.user_id,
            from_status=previous_status,
            to_status=status,
        )
        await self._log_status_change(caller, subscription, previous_status)
        return SubscriptionRecord.model_validate(subscription)

    async def _log_status_change(
        self,
        caller: Caller,
        subscription: Subscription,
        previous_status: str,
        extra: dict[str, Any] | None = None,
    ) -> None:
        admin_name = await self.activity_log.resolve_admin_name(caller)
        metadata = {
            "from_status": previous_status,
            "to_status": subscription.status,
            "tier": subscription.tier,
            "admin_name": admin_name,
        }
        metadata.update(extra or {})
        await self.activity_log.record_best_effort(
            ActivityEntry(
                admin_user_id=caller.user_id,
                user_id=subscription.user_id,
                entity_type="subscription",
                entity_id=subscription.id,
                activity_type="status_change",
                description=(
                    f"Subscription {previous_status} -> {subscription.status} by {admin_name}"
                ),
                metadata=metadata,
            )
        )

    async def _require_active_subscription(
        self, caller: Caller | None, user_id: int
    ) -> Subscription:
        if caller is None:
            raise NotAuthenticatedError("Not authenticated.")
        subscription = await self._get_subscription(user_id, active_only=True)
        if subscription is None:
            raise NotFoundError(f"User {user_id} has no active subscription.")
        return subscription

    async def _get_subscription(
        self, user_id: int, *, active_only: bool = False
    ) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.user_id == user_id)
        if active_only:
            stmt = stmt.where(Subscription.is_active.is_(True))
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _get_active_plan(self, tier: str) -> SubscriptionPlan:
        stmt = select(SubscriptionPlan).where(
            SubscriptionPlan.tier == tier,
            SubscriptionPlan.is_active.is_(True),
        )
        plan = (await self.session.execute(stmt)).scalar_one_or_none()
        if plan is None:
            raise NotFoundError(f"No active plan for tier {tier!r}.")
        return plan

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc

    def _billing_setting(self, name: str, default):
        return getattr(getattr(self.settings, "billing", None), name, default)


__all__ = [
    "SubscriptionService",
    "classify_change",
    "tier_rank",
    "DEFAULT_CANCEL_REASON",
]
