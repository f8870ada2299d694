"""Assistant catalog with domain-code validation and audited state toggles."""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admin_console.config import AdminSettings, get_settings
from admin_console.db.models.core import Assistant
from admin_console.domain.models import (
    ActivityEntry,
    AssistantInput,
    AssistantRecord,
    AssistantUpdate,
    Caller,
)
from admin_console.logging import logger
from admin_console.services.activity_log import ActivityLogService
from admin_console.services.exceptions import (
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
    translate_store_error,
)
from admin_console.utils.datetime import utc_now

DOMAIN_CODE_PATTERN = re.compile(r"^(USM[X0-9]{3}|ITIL|IT4IT)$")
ASSISTANT_STATES = ("Active", "Inactive")


def normalize_domain(code: str | None) -> str:
    """Uppercase and validate a domain code such as ``USM1XX`` or ``ITIL``."""

    normalized = (code or "").strip().upper()
    if not normalized:
        raise ValidationError("Domain is required.")
    if not DOMAIN_CODE_PATTERN.match(normalized):
        raise ValidationError(
            f"Invalid domain code {code!r}. Use USMXXX, USM1XX-USM9XX, ITIL, or IT4IT."
        )
    return normalized


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error['msg']}" if location else error["msg"]


class AssistantRegistry:
    def __init__(
        self,
        session: AsyncSession,
        settings: AdminSettings | None = None,
        activity_log: ActivityLogService | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.activity_log = activity_log or ActivityLogService(session, settings=self.settings)

    async def create(self, caller: Caller | None, data: AssistantInput | dict) -> AssistantRecord:
        if caller is None:
            raise NotAuthenticatedError("Not authenticated.")
        payload = self._parse(AssistantInput, data)
        assistant = Assistant(
            name=payload.name,
            description=payload.description,
            domain=normalize_domain(payload.domain),
            knowledge_bank=payload.knowledge_bank,
            state=payload.state,
            external_id=payload.external_id,
            credits_per_message=payload.credits_per_message,
        )
        self.session.add(assistant)
        await self._flush()
        logger.info(
            "assistant_created",
            assistant_id=assistant.id,
            domain=assistant.domain,
            admin_user_id=caller.user_id,
        )
        return AssistantRecord.model_validate(assistant)

    async def update(
        self, caller: Caller | None, assistant_id: int, changes: AssistantUpdate | dict
    ) -> AssistantRecord:
        if caller is None:
            raise NotAuthenticatedError("Not authenticated.")
        payload = self._parse(AssistantUpdate, changes)
        fields = payload.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No changes supplied.")
        if "domain" in fields:
            fields["domain"] = normalize_domain(fields["domain"])
        if "name" in fields and fields["name"] is None:
            raise ValidationError("Name cannot be cleared.")
        if "credits_per_message" in fields and fields["credits_per_message"] is None:
            raise ValidationError("credits_per_message cannot be cleared.")

        assistant = await self._require(assistant_id)
        for key, value in fields.items():
            setattr(assistant, key, value)
        assistant.updated_at = utc_now()
        await self._flush()
        logger.info(
            "assistant_updated",
            assistant_id=assistant_id,
            fields=sorted(fields),
            admin_user_id=caller.user_id,
        )
        return AssistantRecord.model_validate(assistant)

    async def get(self, assistant_id: int) -> AssistantRecord:
        return AssistantRecord.model_validate(await self._require(assistant_id))

    async def list(
        self, *, state: str | None = None, domain: str | None = None
    ) -> list[AssistantRecord]:
        stmt = select(Assistant)
        if state is not None:
            stmt = stmt.where(Assistant.state == self._check_state(state))
        if domain is not None:
            stmt = stmt.where(Assistant.domain == normalize_domain(domain))
        stmt = stmt.order_by(Assistant.name.asc(), Assistant.id.asc())
        rows = (await self.session.execute(stmt)).scalars().all()
        return [AssistantRecord.model_validate(row) for row in rows]

    async def set_state(
        self, caller: Caller | None, assistant_id: int, state: str, reason: str | None
    ) -> AssistantRecord:
        """Toggle an assistant between Active and Inactive.

        The reason is required and goes to the log and the activity trail; it
        is not stored on the assistant itself.
        """

        if caller is None:
            raise NotAuthenticatedError("Not authenticated.")
        state = self._check_state(state)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to change assistant state.")

        assistant = await self._require(assistant_id)
        previous_state = assistant.state
        assistant.state = state
        assistant.updated_at = utc_now()
        await self._flush()
        logger.info(
            "assistant_state_changed",
            assistant_id=assistant_id,
            from_state=previous_state,
            to_state=state,
            reason=reason,
            admin_user_id=caller.user_id,
        )

        admin_name = await self.activity_log.resolve_admin_name(caller)
        await self.activity_log.record_best_effort(
            ActivityEntry(
                admin_user_id=caller.user_id,
                entity_type="assistant",
                entity_id=assistant_id,
                activity_type="status_change",
                description=f"Assistant '{assistant.name}' set {state} by {admin_name}: {reason}",
                metadata={
                    "from_state": previous_state,
                    "to_state": state,
                    "reason": reason,
                    "admin_name": admin_name,
                },
            )
        )
        return AssistantRecord.model_validate(assistant)

    async def bulk_set_state(
        self,
        caller: Caller | None,
        assistant_ids: Iterable[int],
        state: str,
        reason: str | None,
    ) -> list[AssistantRecord]:
        ids: Sequence[int] = list(dict.fromkeys(assistant_ids))
        if not ids:
            raise ValidationError("No assistants selected.")
        return [await self.set_state(caller, assistant_id, state, reason) for assistant_id in ids]

    # Internal helpers -------------------------------------------------

    @staticmethod
    def _check_state(state: str) -> str:
        if state not in ASSISTANT_STATES:
            raise ValidationError(f"Assistant state must be one of {', '.join(ASSISTANT_STATES)}.")
        return state

    @staticmethod
    def _parse(model, data):
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(_first_error(exc)) from exc

    async def _require(self, assistant_id: int) -> Assistant:
        assistant = await self.session.get(Assistant, assistant_id)
        if assistant is None:
            raise NotFoundError(f"Assistant {assistant_id} not found.")
        return assistant

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc


__all__ = ["AssistantRegistry", "DOMAIN_CODE_PATTERN", "normalize_domain"]
