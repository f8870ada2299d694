"""SQLAlchemy models mirroring the admin console schema."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from admin_console.db.base import Base, CreatedAtMixin, TimestampMixin

TIERS = ("registered", "subscriber", "founder", "unlimited")


def _tier_enum() -> Enum:
    return Enum(*TIERS, name="subscription_tier")


class User(TimestampMixin, Base):
    __tablename__ = "user_profiles"
    __table_args__ = (UniqueConstraint("email", name="uq_user_profiles_email"),)

    email: Mapped[str] = mapped_column(String(191), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(128))
    role: Mapped[str] = mapped_column(
        Enum("admin", "standard", name="user_role"), default="standard", nullable=False
    )
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    credits: Mapped["CreditBalance | None"] = relationship(back_populates="user", uselist=False)
    subscription: Mapped["Subscription | None"] = relationship(
        back_populates="user", uselist=False
    )


class CreditBalance(Base):
    __tablename__ = "user_credits"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_user_credits_user"),
        CheckConstraint("balance >= 0", name="ck_user_credits_balance_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    user: Mapped[User] = relationship(back_populates="credits")


class CreditTransaction(CreatedAtMixin, Base):
    __tablename__ = "credit_transactions"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(
        Enum("credit", "debit", name="credit_transaction_type"), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)


class SubscriptionPlan(TimestampMixin, Base):
    __tablename__ = "subscription_plans"
    __table_args__ = (UniqueConstraint("tier", name="uq_subscription_plans_tier"),)

    tier: Mapped[str] = mapped_column(_tier_enum(), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    price_usd: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), default=0.0)
    credits_per_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)


class Subscription(TimestampMixin, Base):
    __tablename__ = "user_subscriptions"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_subscriptions_user"),)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    plan_id: Mapped[int | None] = mapped_column(ForeignKey("subscription_plans.id"))
    tier: Mapped[str] = mapped_column(_tier_enum(), default="registered", nullable=False)
    status: Mapped[str] = mapped_column(
        Enum("trial", "active", "paused", "cancelled", name="subscription_status"),
        default="trial",
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    credits_per_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price_paid: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), default=0.0)
    next_billing_date: Mapped[datetime | None] = mapped_column(DateTime)
    auto_renewal: Mapped[bool] = mapped_column(default=True, nullable=False)
    cancellation_date: Mapped[datetime | None] = mapped_column(DateTime)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    user: Mapped[User] = relationship(back_populates="subscription")
    plan: Mapped[SubscriptionPlan | None] = relationship()


class PlanChangeEvent(CreatedAtMixin, Base):
    __tablename__ = "subscription_plan_changes"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    from_plan_id: Mapped[int | None] = mapped_column(
        ForeignKey("subscription_plans.id", ondelete="SET NULL")
    )
    to_plan_id: Mapped[int | None] = mapped_column(
        ForeignKey("subscription_plans.id", ondelete="SET NULL")
    )
    from_tier: Mapped[str | None] = mapped_column(_tier_enum())
    to_tier: Mapped[str] = mapped_column(_tier_enum(), nullable=False)
    change_reason: Mapped[str | None] = mapped_column(Text)
    processed_by: Mapped[int | None] = mapped_column(
        ForeignKey("user_profiles.id", ondelete="SET NULL")
    )


class BillingSimulation(CreatedAtMixin, Base):
    __tablename__ = "billing_simulations"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    tier: Mapped[str] = mapped_column(_tier_enum(), nullable=False)
    simulated_price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), default=0.0)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_status: Mapped[str] = mapped_column(
        Enum("pending", "completed", "failed", name="billing_payment_status"),
        default="pending",
        nullable=False,
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime)


class AdminActivityLog(CreatedAtMixin, Base):
    __tablename__ = "admin_activity_log"

    admin_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("user_profiles.id", ondelete="SET NULL")
    )
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("user_profiles.id", ondelete="SET NULL")
    )
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[int | None] = mapped_column(Integer)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON)


class Assistant(TimestampMixin, Base):
    __tablename__ = "assistants"

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    domain: Mapped[str] = mapped_column(String(16), default="USMXXX", nullable=False)
    knowledge_bank: Mapped[str | None] = mapped_column(String(128))
    state: Mapped[str] = mapped_column(
        Enum("Active", "Inactive", name="assistant_state"), default="Active", nullable=False
    )
    external_id: Mapped[str | None] = mapped_column(String(128))
    credits_per_message: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


__all__ = [
    "TIERS",
    "User",
    "CreditBalance",
    "CreditTransaction",
    "SubscriptionPlan",
    "Subscription",
    "PlanChangeEvent",
    "BillingSimulation",
    "AdminActivityLog",
    "Assistant",
]
