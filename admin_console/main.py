"""Maintenance entrypoint: seed plans and reconcile stale billing simulations."""

from __future__ import annotations

import asyncio

from admin_console.config import get_settings
from admin_console.db.session import Database
from admin_console.logging import configure_logging, logger
from admin_console.services.seeds import ensure_subscription_plans
from admin_console.services.subscriptions import SubscriptionService


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.environment != "dev")

    database = Database(settings=settings)
    try:
        async with database.session() as session:
            await ensure_subscription_plans(session)

        async with database.session() as session:
            reconciled = await SubscriptionService(session, settings=settings).reconcile_stale_simulations()
            await session.commit()
    finally:
        await database.dispose()

    logger.info(
        "maintenance_completed",
        environment=settings.environment,
        reconciled_simulations=reconciled,
    )


if __name__ == "__main__":
    asyncio.run(main())
