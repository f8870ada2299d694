"""Factories shared across service tests."""

from __future__ import annotations

from types import SimpleNamespace

from admin_console.db.models.core import CreditBalance, User
from admin_console.utils.datetime import utc_now


def stub_settings(**overrides) -> SimpleNamespace:
    settings = SimpleNamespace(
        billing=SimpleNamespace(
            billing_cycle_days=30,
            default_payment_method="card",
            stale_simulation_minutes=60,
        ),
        ledger=SimpleNamespace(
            default_description="Admin credit adjustment",
            transaction_page_size=10,
        ),
        audit=SimpleNamespace(
            max_attempts=2,
            retry_base_delay=0,
            unknown_admin_name="Unknown Admin",
        ),
    )
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


async def create_user(
    session,
    *,
    email: str = "member@example.com",
    full_name: str | None = "Member",
    role: str = "standard",
    balance: int | None = 0,
) -> User:
    user = User(email=email, full_name=full_name, role=role)
    session.add(user)
    await session.flush()
    if balance is not None:
        session.add(CreditBalance(user_id=user.id, balance=balance, updated_at=utc_now()))
        await session.flush()
    return user
