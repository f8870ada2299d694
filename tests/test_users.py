"""User directory operations and their audit trail."""

from __future__ import annotations

import pytest

from admin_console.services.exceptions import (
    NotAuthenticatedError,
    NotFoundError,
    UniqueViolationError,
    ValidationError,
)
from admin_console.services.ledger import CreditLedgerService
from admin_console.services.subscriptions import SubscriptionService
from admin_console.services.users import UserDirectoryService

from tests.helpers import create_user


@pytest.mark.asyncio
async def test_create_user_opens_zero_balance_account(session, settings):
    directory = UserDirectoryService(session, settings=settings)

    user = await directory.create_user({"email": "New@Example.com", "full_name": "New Person"})

    assert user.email == "new@example.com"
    assert user.role == "standard"
    balance = await CreditLedgerService(session, settings=settings).get_balance(user.id)
    assert balance.balance == 0


@pytest.mark.asyncio
async def test_create_user_rejects_bad_payloads(session, settings):
    directory = UserDirectoryService(session, settings=settings)

    with pytest.raises(ValidationError):
        await directory.create_user({"email": "not-an-email"})
    with pytest.raises(ValidationError):
        await directory.create_user({"email": "x@example.com", "role": "superuser"})


@pytest.mark.asyncio
async def test_duplicate_email_surfaces_unique_violation(session, settings):
    directory = UserDirectoryService(session, settings=settings)
    await directory.create_user({"email": "dup@example.com"})

    with pytest.raises(UniqueViolationError):
        await directory.create_user({"email": "dup@example.com"})


@pytest.mark.asyncio
async def test_update_profile_changes_allowed_fields(session, settings):
    directory = UserDirectoryService(session, settings=settings)
    user = await directory.create_user({"email": "edit@example.com"})

    updated = await directory.update_profile(user.id, {"full_name": "Edited Name"})

    assert updated.full_name == "Edited Name"
    with pytest.raises(ValidationError):
        await directory.update_profile(user.id, {"role": "admin"})
    with pytest.raises(NotFoundError):
        await directory.update_profile(404, {"full_name": "Nobody"})


@pytest.mark.asyncio
async def test_deactivate_is_soft_and_audited(session, settings, admin):
    directory = UserDirectoryService(session, settings=settings)
    user = await directory.create_user({"email": "leaving@example.com"})

    record = await directory.deactivate(admin, user.id)

    assert record.is_active is False
    overviews = await directory.list_users()
    assert user.id in {overview.user.id for overview in overviews}
    entries = await directory.activity_log.list_entries(activity_type="status_change")
    assert entries[0].entity_id == user.id
    assert entries[0].metadata["to_active"] is False


@pytest.mark.asyncio
async def test_change_role_writes_role_change_entry(session, settings, admin):
    directory = UserDirectoryService(session, settings=settings)
    user = await directory.create_user({"email": "promote@example.com"})

    record = await directory.change_role(admin, user.id, "admin")

    assert record.role == "admin"
    entries = await directory.activity_log.list_entries(activity_type="role_change")
    assert entries[0].metadata["from_role"] == "standard"
    assert entries[0].metadata["admin_name"] == "Ada Admin"

    with pytest.raises(ValidationError):
        await directory.change_role(admin, user.id, "owner")
    with pytest.raises(NotAuthenticatedError):
        await directory.change_role(None, user.id, "standard")


@pytest.mark.asyncio
async def test_bulk_update_applies_to_each_user(session, settings, admin):
    directory = UserDirectoryService(session, settings=settings)
    first = await directory.create_user({"email": "a@example.com"})
    second = await directory.create_user({"email": "b@example.com"})

    records = await directory.bulk_update(admin, [first.id, second.id], is_active=False)

    assert all(record.is_active is False for record in records)
    with pytest.raises(ValidationError):
        await directory.bulk_update(admin, [first.id])


@pytest.mark.asyncio
async def test_user_analytics(session, settings, admin, plans):
    directory = UserDirectoryService(session, settings=settings)
    ledger = CreditLedgerService(session, settings=settings)
    subscriptions = SubscriptionService(session, settings=settings)
    first = await directory.create_user({"email": "one@example.com"})
    second = await directory.create_user({"email": "two@example.com"})
    await ledger.add_credits(admin, first.id, 30)
    await ledger.add_credits(admin, second.id, 10)
    await subscriptions.change_plan(admin, first.id, "founder")

    analytics = await directory.get_analytics()

    # the admin fixture user has no credit account
    assert analytics["total_users"] == 3
    assert analytics["admin_users"] == 1
    assert analytics["founder_users"] == 1
    assert analytics["premium_users"] == 1
    assert analytics["total_credits"] == 40
    assert analytics["avg_credits_per_user"] == 13


@pytest.mark.asyncio
async def test_average_credits_rounds_half_up(session, settings):
    await create_user(session, email="two@example.com", balance=2)
    await create_user(session, email="three@example.com", balance=3)
    directory = UserDirectoryService(session, settings=settings)

    analytics = await directory.get_analytics()

    assert analytics["total_credits"] == 5
    assert analytics["avg_credits_per_user"] == 3


@pytest.mark.asyncio
async def test_update_subscription_creates_then_edits_row(session, settings, admin, plans):
    directory = UserDirectoryService(session, settings=settings)
    user = await directory.create_user({"email": "upsert@example.com"})

    created = await directory.update_subscription(admin, user.id, {"tier": "founder"})

    assert created.tier == "founder"
    assert created.status == "trial"
    assert created.plan_id == plans["founder"].id
    assert created.credits_per_month == 1500
    assert created.price_paid == pytest.approx(19.99)

    edited = await directory.update_subscription(
        admin, user.id, {"status": "active", "auto_renewal": False}
    )

    assert edited.id == created.id
    assert edited.tier == "founder"
    assert edited.status == "active"
    assert edited.auto_renewal is False
    plan_changes = await directory.activity_log.list_entries(activity_type="plan_change")
    assert [entry.metadata["to_tier"] for entry in plan_changes] == ["founder"]
    status_changes = await directory.activity_log.list_entries(activity_type="status_change")
    assert status_changes[0].metadata["from_status"] == "trial"
    assert status_changes[0].metadata["to_status"] == "active"


@pytest.mark.asyncio
async def test_update_subscription_rejects_bad_requests(session, settings, admin, plans):
    directory = UserDirectoryService(session, settings=settings)
    user = await directory.create_user({"email": "strict@example.com"})

    with pytest.raises(ValidationError):
        await directory.update_subscription(admin, user.id, {"status": "active"})
    with pytest.raises(ValidationError):
        await directory.update_subscription(admin, user.id, {"tier": None})
    with pytest.raises(ValidationError):
        await directory.update_subscription(admin, user.id, {"tier": "gold"})
    with pytest.raises(NotFoundError):
        await directory.update_subscription(admin, 404, {"tier": "founder"})
    with pytest.raises(NotAuthenticatedError):
        await directory.update_subscription(None, user.id, {"tier": "founder"})


@pytest.mark.asyncio
async def test_sync_missing_credit_accounts_backfills_once(session, settings):
    first = await create_user(session, email="nocredit1@example.com", balance=None)
    second = await create_user(session, email="nocredit2@example.com", balance=None)
    funded = await create_user(session, email="funded@example.com", balance=7)
    directory = UserDirectoryService(session, settings=settings)
    ledger = CreditLedgerService(session, settings=settings)

    assert await directory.sync_missing_credit_accounts() == 2
    assert await directory.sync_missing_credit_accounts() == 0

    assert (await ledger.get_balance(first.id)).balance == 0
    assert (await ledger.get_balance(second.id)).balance == 0
    assert (await ledger.get_balance(funded.id)).balance == 7


@pytest.mark.asyncio
async def test_sync_missing_subscriptions_assigns_registered_trial(session, settings, admin, plans):
    bare = await create_user(session, email="bare@example.com")
    subscribed = await create_user(session, email="subscribed@example.com")
    subscriptions = SubscriptionService(session, settings=settings)
    await subscriptions.change_plan(admin, subscribed.id, "subscriber")
    directory = UserDirectoryService(session, settings=settings)

    # the admin fixture user has no subscription either
    assert await directory.sync_missing_subscriptions() == 2
    assert await directory.sync_missing_subscriptions() == 0

    current = await subscriptions.get_current_subscription(bare.id)
    assert current.subscription.tier == "registered"
    assert current.subscription.status == "trial"
    assert current.subscription.credits_per_month == 50
    assert current.plan.id == plans["registered"].id
    untouched = await subscriptions.get_current_subscription(subscribed.id)
    assert untouched.subscription.tier == "subscriber"


@pytest.mark.asyncio
async def test_sync_missing_subscriptions_requires_registered_plan(session, settings):
    await create_user(session, email="orphan@example.com")
    directory = UserDirectoryService(session, settings=settings)

    with pytest.raises(NotFoundError):
        await directory.sync_missing_subscriptions()
