"""Append-only admin activity log."""

from __future__ import annotations

from types import SimpleNamespace

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from admin_console.config import AdminSettings, get_settings
from admin_console.db.models.core import AdminActivityLog, User
from admin_console.domain.models import ActivityEntry, ActivityLogRecord, Caller
from admin_console.logging import logger
from admin_console.services.exceptions import AuditLogError, ValidationError
from admin_console.utils.retry import retry_async

UNKNOWN_ADMIN = "Unknown Admin"

# Integrity failures are deterministic and are not retried.
TRANSIENT_STORE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


class ActivityLogService:
    def __init__(self, session: AsyncSession, settings: AdminSettings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    async def record(self, entry: ActivityEntry | dict) -> ActivityLogRecord:
        """Append an entry, retrying store failures before giving up."""

        entry = self._coerce(entry)
        audit_cfg = getattr(self.settings, "audit", None) or SimpleNamespace(
            max_attempts=1, retry_base_delay=0
        )

        async def _insert() -> AdminActivityLog:
            async with self.session.begin_nested():
                row = AdminActivityLog(
                    admin_user_id=entry.admin_user_id,
                    user_id=entry.user_id,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    activity_type=entry.activity_type,
                    description=entry.description,
                    amount=entry.amount,
                    metadata_json=dict(entry.metadata),
                )
                self.session.add(row)
                await self.session.flush()
            return row

        try:
            row = await retry_async(
                _insert,
                max_attempts=audit_cfg.max_attempts,
                base_delay=audit_cfg.retry_base_delay,
                retry_on=TRANSIENT_STORE_ERRORS,
                logger=logger,
                operation_name="admin_activity_insert",
            )
        except SQLAlchemyError as exc:
            raise AuditLogError(
                f"Failed to record {entry.activity_type} for {entry.entity_type} {entry.entity_id}."
            ) from exc

        return ActivityLogRecord.model_validate(row)

    async def record_best_effort(self, entry: ActivityEntry | dict) -> AuditLogError | None:
        """Record an entry without letting failures escape to the caller."""

        try:
            await self.record(entry)
        except AuditLogError as exc:
            logger.warning(
                "audit_write_failed",
                error=str(exc),
                cause=str(exc.__cause__) if exc.__cause__ else None,
                severity=exc.severity,
            )
            return exc
        return None

    async def list_entries(
        self,
        *,
        entity_type: str | None = None,
        entity_id: int | None = None,
        activity_type: str | None = None,
        limit: int = 50,
    ) -> list[ActivityLogRecord]:
        stmt = select(AdminActivityLog)
        if entity_type is not None:
            stmt = stmt.where(AdminActivityLog.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AdminActivityLog.entity_id == entity_id)
        if activity_type is not None:
            stmt = stmt.where(AdminActivityLog.activity_type == activity_type)
        stmt = stmt.order_by(
            AdminActivityLog.created_at.desc(), AdminActivityLog.id.desc()
        ).limit(max(limit, 1))
        rows = (await self.session.execute(stmt)).scalars().all()
        return [ActivityLogRecord.model_validate(row) for row in rows]

    async def resolve_admin_name(self, caller: Caller) -> str:
        """Return a display name for the acting admin, never raising."""

        fallback = getattr(getattr(self.settings, "audit", None), "unknown_admin_name", UNKNOWN_ADMIN)
        try:
            stmt = select(User.full_name, User.email).where(User.id == caller.user_id)
            row = (await self.session.execute(stmt)).one_or_none()
        except SQLAlchemyError:
            logger.warning("admin_identity_lookup_failed", admin_user_id=caller.user_id)
            return fallback
        if row is None:
            return fallback
        return row.full_name or row.email or fallback

    @staticmethod
    def _coerce(entry: ActivityEntry | dict) -> ActivityEntry:
        if isinstance(entry, ActivityEntry):
            return entry
        try:
            return ActivityEntry.model_validate(entry)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid activity entry: {exc.errors()[0]['msg']}") from exc


__all__ = ["ActivityLogService", "UNKNOWN_ADMIN"]
