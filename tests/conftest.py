"""Shared pytest fixtures for database-backed service tests."""

from __future__ import annotations

from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from admin_console.db.base import Base
from admin_console.db.models.core import SubscriptionPlan
from admin_console.domain.models import Caller

from tests.helpers import create_user, stub_settings


class _AsyncSessionWrapper:
    def __init__(self, sync_session) -> None:
        self._sync = sync_session

    async def execute(self, *args, **kwargs):
        return self._sync.execute(*args, **kwargs)

    async def get(self, *args, **kwargs):
        return self._sync.get(*args, **kwargs)

    def add(self, obj) -> None:
        self._sync.add(obj)

    def add_all(self, objs) -> None:
        self._sync.add_all(objs)

    async def flush(self) -> None:
        self._sync.flush()

    async def commit(self) -> None:
        self._sync.commit()

    async def rollback(self) -> None:
        self._sync.rollback()

    @asynccontextmanager
    async def begin_nested(self):
        with self._sync.begin_nested():
            yield

    async def close(self) -> None:
        self._sync.close()


@pytest.fixture
def settings():
    return stub_settings()


@pytest_asyncio.fixture
async def session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    # pysqlite issues its own BEGIN, which breaks SAVEPOINT handling.
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sync_session = SessionLocal()
    try:
        yield _AsyncSessionWrapper(sync_session)
    finally:
        sync_session.close()
        engine.dispose()


@pytest_asyncio.fixture
async def admin(session) -> Caller:
    user = await create_user(
        session, email="admin@example.com", full_name="Ada Admin", role="admin", balance=None
    )
    return Caller(user_id=user.id)


@pytest_asyncio.fixture
async def plans(session) -> dict[str, SubscriptionPlan]:
    rows = {
        "registered": SubscriptionPlan(
            tier="registered", name="Registered", price_usd=0.0, credits_per_month=50
        ),
        "subscriber": SubscriptionPlan(
            tier="subscriber", name="Subscriber", price_usd=9.99, credits_per_month=500
        ),
        "founder": SubscriptionPlan(
            tier="founder", name="Founder", price_usd=19.99, credits_per_month=1500
        ),
        "unlimited": SubscriptionPlan(
            tier="unlimited", name="Unlimited", price_usd=49.99, credits_per_month=10000
        ),
    }
    session.add_all(list(rows.values()))
    await session.flush()
    return rows
