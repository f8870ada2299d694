"""User directory operations used by the admin console."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from admin_console.config import AdminSettings, get_settings
from admin_console.db.models.core import CreditBalance, Subscription, SubscriptionPlan, User
from admin_console.domain.models import (
    ActivityEntry,
    Caller,
    SubscriptionRecord,
    SubscriptionUpdate,
    UserInput,
    UserOverview,
    UserProfileUpdate,
    UserRecord,
)
from admin_console.logging import logger
from admin_console.services.activity_log import ActivityLogService
from admin_console.services.exceptions import (
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
    translate_store_error,
)
from admin_console.services.ledger import CreditLedgerService
from admin_console.utils.datetime import utc_now

USER_ROLES = ("admin", "standard")
PREMIUM_TIERS = ("subscriber", "founder", "unlimited")


def _round_half_up(numerator: int, denominator: int) -> int:
    return int((Decimal(numerator) / denominator).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class UserDirectoryService:
    def __init__(
        self,
        session: AsyncSession,
        settings: AdminSettings | None = None,
        activity_log: ActivityLogService | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.activity_log = activity_log or ActivityLogService(session, settings=self.settings)
        self.ledger = CreditLedgerService(session, settings=self.settings, activity_log=self.activity_log)

    async def create_user(self, data: UserInput | dict) -> UserRecord:
        """Insert a profile and open its zero-balance credit account."""

        payload = data if isinstance(data, UserInput) else self._parse(UserInput, data)
        user = User(
            email=payload.email,
            full_name=payload.full_name,
            role=payload.role,
            is_active=payload.is_active,
        )
        self.session.add(user)
        await self._flush()
        await self.ledger.open_account(user.id)
        logger.info("user_created", user_id=user.id, role=user.role)
        return UserRecord.model_validate(user)

    async def update_profile(self, user_id: int, changes: UserProfileUpdate | dict) -> UserRecord:
        payload = changes if isinstance(changes, UserProfileUpdate) else self._parse(
            UserProfileUpdate, changes
        )
        fields = payload.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No changes supplied.")
        if "email" in fields and fields["email"] is None:
            raise ValidationError("Email cannot be cleared.")
        user = await self._require(user_id)
        for key, value in fields.items():
            setattr(user, key, value)
        user.updated_at = utc_now()
        await self._flush()
        return UserRecord.model_validate(user)

    async def set_active(self, caller: Caller | None, user_id: int, is_active: bool) -> UserRecord:
        self._require_caller(caller)
        user = await self._require(user_id)
        previous = user.is_active
        user.is_active = bool(is_active)
        user.updated_at = utc_now()
        await self._flush()
        logger.info("user_status_changed", user_id=user_id, is_active=user.is_active)
        await self._log(
            caller,
            user,
            activity_type="status_change",
            summary="activated" if user.is_active else "deactivated",
            metadata={"from_active": previous, "to_active": user.is_active},
        )
        return UserRecord.model_validate(user)

    async def deactivate(self, caller: Caller | None, user_id: int) -> UserRecord:
        """Soft delete: users are never physically removed."""

        return await self.set_active(caller, user_id, False)

    async def change_role(self, caller: Caller | None, user_id: int, role: str) -> UserRecord:
        self._require_caller(caller)
        if role not in USER_ROLES:
            raise ValidationError(f"Role must be one of {', '.join(USER_ROLES)}.")
        user = await self._require(user_id)
        previous = user.role
        user.role = role
        user.updated_at = utc_now()
        await self._flush()
        logger.info("user_role_changed", user_id=user_id, from_role=previous, to_role=role)
        await self._log(
            caller,
            user,
            activity_type="role_change",
            summary=f"role changed {previous} -> {role}",
            metadata={"from_role": previous, "to_role": role},
        )
        return UserRecord.model_validate(user)

    async def bulk_update(
        self,
        caller: Caller | None,
        user_ids: Iterable[int],
        *,
        is_active: bool | None = None,
        role: str | None = None,
    ) -> list[UserRecord]:
        self._require_caller(caller)
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            raise ValidationError("No users selected.")
        if is_active is None and role is None:
            raise ValidationError("No changes supplied.")
        results: list[UserRecord] = []
        for user_id in ids:
            record = None
            if is_active is not None:
                record = await self.set_active(caller, user_id, is_active)
            if role is not None:
                record = await self.change_role(caller, user_id, role)
            results.append(record)
        return results

    async def update_subscription(
        self, caller: Caller | None, user_id: int, changes: SubscriptionUpdate | dict
    ) -> SubscriptionRecord:
        """Upsert the user's subscription row with the given fields."""

        self._require_caller(caller)
        payload = changes if isinstance(changes, SubscriptionUpdate) else self._parse(
            SubscriptionUpdate, changes
        )
        fields = payload.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No changes supplied.")
        cleared = [key for key, value in fields.items() if value is None and key != "next_billing_date"]
        if cleared:
            raise ValidationError(f"{cleared[0]} cannot be cleared.")
        await self._require(user_id)

        stmt = select(Subscription).where(Subscription.user_id == user_id)
        subscription = (await self.session.execute(stmt)).scalar_one_or_none()
        previous_tier = subscription.tier if subscription else None
        previous_status = subscription.status if subscription else None
        if subscription is None:
            if "tier" not in fields:
                raise ValidationError("A tier is required to create a subscription.")
            subscription = Subscription(
                user_id=user_id,
                tier=fields["tier"],
                status="trial",
                is_active=True,
                credits_per_month=0,
                price_paid=0.0,
                auto_renewal=True,
            )
            self.session.add(subscription)

        if "tier" in fields:
            plan = (
                await self.session.execute(
                    select(SubscriptionPlan).where(
                        SubscriptionPlan.tier == fields["tier"],
                        SubscriptionPlan.is_active.is_(True),
                    )
                )
            ).scalar_one_or_none()
            subscription.plan_id = plan.id if plan else None
            if plan is not None:
                fields.setdefault("credits_per_month", plan.credits_per_month)
                fields.setdefault("price_paid", plan.price_usd)
        for key, value in fields.items():
            setattr(subscription, key, value)
        subscription.updated_at = utc_now()
        await self._flush()
        logger.info(
            "subscription_updated",
            user_id=user_id,
            fields=sorted(fields),
            admin_user_id=caller.user_id,
        )

        tier_changed = subscription.tier != previous_tier
        admin_name = await self.activity_log.resolve_admin_name(caller)
        await self.activity_log.record_best_effort(
            ActivityEntry(
                admin_user_id=caller.user_id,
                user_id=user_id,
                entity_type="subscription",
                entity_id=subscription.id,
                activity_type="plan_change" if tier_changed else "status_change",
                description=f"Subscription for user {user_id} updated by {admin_name}",
                metadata={
                    "from_tier": previous_tier,
                    "to_tier": subscription.tier,
                    "from_status": previous_status,
                    "to_status": subscription.status,
                    "fields": sorted(fields),
                    "admin_name": admin_name,
                },
            )
        )
        return SubscriptionRecord.model_validate(subscription)

    async def sync_missing_credit_accounts(self) -> int:
        """Open a zero balance for every user that has no credit account."""

        stmt = (
            select(User.id)
            .outerjoin(CreditBalance, CreditBalance.user_id == User.id)
            .where(CreditBalance.id.is_(None))
            .order_by(User.id)
        )
        user_ids = (await self.session.execute(stmt)).scalars().all()
        for user_id in user_ids:
            await self.ledger.open_account(user_id)
        if user_ids:
            logger.info("credit_accounts_synced", count=len(user_ids))
        return len(user_ids)

    async def sync_missing_subscriptions(self) -> int:
        """Give every user without a subscription a registered trial."""

        stmt = (
            select(User.id)
            .outerjoin(Subscription, Subscription.user_id == User.id)
            .where(Subscription.id.is_(None))
            .order_by(User.id)
        )
        user_ids = (await self.session.execute(stmt)).scalars().all()
        if not user_ids:
            return 0
        plan = (
            await self.session.execute(
                select(SubscriptionPlan).where(
                    SubscriptionPlan.tier == "registered",
                    SubscriptionPlan.is_active.is_(True),
                )
            )
        ).scalar_one_or_none()
        if plan is None:
            raise NotFoundError("No active plan for tier 'registered'.")
        self.session.add_all(
            [
                Subscription(
                    user_id=user_id,
                    plan_id=plan.id,
                    tier="registered",
                    status="trial",
                    is_active=True,
                    credits_per_month=plan.credits_per_month,
                    price_paid=plan.price_usd,
                    auto_renewal=True,
                )
                for user_id in user_ids
            ]
        )
        await self._flush()
        logger.info("subscriptions_synced", count=len(user_ids))
        return len(user_ids)

    async def list_users(self) -> list[UserOverview]:
        stmt = (
            select(User)
            .options(selectinload(User.credits), selectinload(User.subscription))
            .order_by(User.created_at.desc(), User.id.desc())
        )
        users = (await self.session.execute(stmt)).scalars().all()
        overviews: list[UserOverview] = []
        for user in users:
            overviews.append(
                UserOverview(
                    user=UserRecord.model_validate(user),
                    balance=user.credits.balance if user.credits else None,
                    subscription=(
                        SubscriptionRecord.model_validate(user.subscription)
                        if user.subscription
                        else None
                    ),
                )
            )
        return overviews

    async def get_analytics(self) -> dict[str, Any]:
        overviews = await self.list_users()
        total = len(overviews)

        def _has(predicate) -> int:
            return sum(1 for o in overviews if o.subscription and predicate(o.subscription))

        total_credits = sum(o.balance or 0 for o in overviews)
        return {
            "total_users": total,
            "active_users": sum(1 for o in overviews if o.user.is_active),
            "trial_users": _has(lambda s: s.tier == "registered" and s.status == "trial"),
            "subscriber_users": _has(lambda s: s.tier == "subscriber"),
            "founder_users": _has(lambda s: s.tier == "founder"),
            "unlimited_users": _has(lambda s: s.tier == "unlimited"),
            "premium_users": _has(lambda s: s.tier in PREMIUM_TIERS),
            "admin_users": sum(1 for o in overviews if o.user.role == "admin"),
            "total_credits": total_credits,
            "avg_credits_per_user": _round_half_up(total_credits, total) if total else 0,
        }

    # Internal helpers -------------------------------------------------

    async def _log(
        self,
        caller: Caller,
        user: User,
        *,
        activity_type: str,
        summary: str,
        metadata: dict[str, Any],
    ) -> None:
        admin_name = await self.activity_log.resolve_admin_name(caller)
        await self.activity_log.record_best_effort(
            ActivityEntry(
                admin_user_id=caller.user_id,
                user_id=user.id,
                entity_type="user",
                entity_id=user.id,
                activity_type=activity_type,
                description=f"User {user.email} {summary} by {admin_name}",
                metadata={**metadata, "admin_name": admin_name},
            )
        )

    @staticmethod
    def _require_caller(caller: Caller | None) -> None:
        if caller is None:
            raise NotAuthenticatedError("Not authenticated.")

    @staticmethod
    def _parse(model, data):
        try:
            return model.model_validate(data)
        except PydanticValidationError as exc:
            error = exc.errors()[0]
            location = ".".join(str(part) for part in error.get("loc", ()))
            raise ValidationError(f"{location}: {error['msg']}" if location else error["msg"]) from exc

    async def _require(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found.")
        return user

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc


__all__ = ["UserDirectoryService", "USER_ROLES"]
