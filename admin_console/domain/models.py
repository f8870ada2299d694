"""Pydantic records exchanged between services and their callers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Tier = Literal["registered", "subscriber", "founder", "unlimited"]
SubscriptionStatus = Literal["trial", "active", "paused", "cancelled"]
PaymentStatus = Literal["pending", "completed", "failed"]
AssistantState = Literal["Active", "Inactive"]
UserRole = Literal["admin", "standard"]

TIER_ORDER: tuple[str, ...] = ("registered", "subscriber", "founder", "unlimited")


class Record(BaseModel):
    """Strict row snapshot built from ORM objects."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)


class Caller(BaseModel):
    """Identity of the admin issuing an operation."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_id: int


class UserRecord(Record):
    id: int
    email: str
    full_name: str | None = None
    role: UserRole = "standard"
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CreditBalanceRecord(Record):
    user_id: int
    balance: int = Field(ge=0)
    updated_at: datetime


class CreditTransactionRecord(Record):
    id: int
    user_id: int
    amount: int
    transaction_type: Literal["credit", "debit"]
    description: str
    created_at: datetime


class PlanRecord(Record):
    id: int
    tier: Tier
    name: str
    description: str | None = None
    price_usd: float
    credits_per_month: int
    is_active: bool


class SubscriptionRecord(Record):
    id: int
    user_id: int
    plan_id: int | None = None
    tier: Tier
    status: SubscriptionStatus
    is_active: bool
    credits_per_month: int
    price_paid: float
    next_billing_date: datetime | None = None
    auto_renewal: bool
    cancellation_date: datetime | None = None
    cancellation_reason: str | None = None


class SubscriptionDetails(BaseModel):
    subscription: SubscriptionRecord
    plan: PlanRecord | None = None


class PlanChangeRecord(Record):
    id: int
    user_id: int
    from_plan_id: int | None = None
    to_plan_id: int | None = None
    from_tier: Tier | None = None
    to_tier: Tier
    change_reason: str | None = None
    processed_by: int | None = None
    created_at: datetime


class BillingSimulationRecord(Record):
    id: int
    user_id: int
    tier: Tier
    simulated_price: float
    payment_method: str
    payment_status: PaymentStatus
    created_at: datetime
    processed_at: datetime | None = None


class ActivityEntry(BaseModel):
    """Audit entry to be appended to the admin activity log."""

    model_config = ConfigDict(extra="forbid")

    admin_user_id: int | None = None
    user_id: int | None = None
    entity_type: Literal["user", "subscription", "assistant"]
    entity_id: int
    activity_type: Literal["credit_adjustment", "status_change", "role_change", "plan_change"]
    description: str = Field(min_length=1)
    amount: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ActivityLogRecord(Record):
    id: int
    admin_user_id: int | None = None
    user_id: int | None = None
    entity_type: str
    entity_id: int
    activity_type: str
    description: str
    amount: int | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class LedgerResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_id: int
    balance: int
    transaction: CreditTransactionRecord
    audit_error: Exception | None = None


class AssistantRecord(Record):
    id: int
    name: str
    description: str | None = None
    domain: str
    knowledge_bank: str | None = None
    state: AssistantState
    external_id: str | None = None
    credits_per_message: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AssistantInput(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=128)
    description: str | None = None
    domain: str = "USMXXX"
    knowledge_bank: str | None = None
    state: AssistantState = "Active"
    external_id: str | None = None
    credits_per_message: int = Field(default=1, ge=0)


class AssistantUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = None
    domain: str | None = None
    knowledge_bank: str | None = None
    external_id: str | None = None
    credits_per_message: int | None = Field(default=None, ge=0)


class UserInput(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=191)
    full_name: str | None = Field(default=None, max_length=128)
    role: UserRole = "standard"
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        if "@" not in value:
            raise ValueError("email must contain '@'")
        return value.lower()


class UserProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    email: str | None = Field(default=None, min_length=3, max_length=191)
    full_name: str | None = Field(default=None, max_length=128)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if "@" not in value:
            raise ValueError("email must contain '@'")
        return value.lower()


class SubscriptionUpdate(BaseModel):
    """Admin edit of a user's subscription row; unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    tier: Tier | None = None
    status: SubscriptionStatus | None = None
    auto_renewal: bool | None = None
    credits_per_month: int | None = Field(default=None, ge=0)
    price_paid: float | None = Field(default=None, ge=0)
    next_billing_date: datetime | None = None


class UserOverview(BaseModel):
    user: UserRecord
    balance: int | None = None
    subscription: SubscriptionRecord | None = None


__all__ = [
    "Tier",
    "TIER_ORDER",
    "SubscriptionStatus",
    "PaymentStatus",
    "AssistantState",
    "UserRole",
    "Caller",
    "UserRecord",
    "CreditBalanceRecord",
    "CreditTransactionRecord",
    "PlanRecord",
    "SubscriptionRecord",
    "SubscriptionDetails",
    "PlanChangeRecord",
    "BillingSimulationRecord",
    "ActivityEntry",
    "ActivityLogRecord",
    "LedgerResult",
    "AssistantRecord",
    "AssistantInput",
    "AssistantUpdate",
    "UserInput",
    "UserProfileUpdate",
    "SubscriptionUpdate",
    "UserOverview",
]
