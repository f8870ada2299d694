"""Credit ledger: atomic balance changes with transaction and audit trail."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admin_console.config import AdminSettings, get_settings
from admin_console.db.models.core import CreditBalance, CreditTransaction
from admin_console.domain.models import (
    ActivityEntry,
    Caller,
    CreditBalanceRecord,
    CreditTransactionRecord,
    LedgerResult,
)
from admin_console.logging import logger
from admin_console.services.activity_log import ActivityLogService
from admin_console.services.exceptions import (
    CheckViolationError,
    InsufficientBalanceError,
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
    translate_store_error,
)
from admin_console.utils.datetime import utc_now

DEFAULT_DESCRIPTION = "Admin credit adjustment"


class CreditLedgerService:
    def __init__(
        self,
        session: AsyncSession,
        settings: AdminSettings | None = None,
        activity_log: ActivityLogService | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.activity_log = activity_log or ActivityLogService(session, settings=self.settings)

    async def add_credits(
        self,
        caller: Caller | None,
        user_id: int,
        amount: int,
        description: str | None = None,
    ) -> LedgerResult:
        return await self._adjust(caller, user_id, amount, description, direction=1)

    async def deduct_credits(
        self,
        caller: Caller | None,
        user_id: int,
        amount: int,
        description: str | None = None,
    ) -> LedgerResult:
        return await self._adjust(caller, user_id, amount, description, direction=-1)

    async def get_balance(self, user_id: int) -> CreditBalanceRecord:
        account = await self._get_account(user_id)
        if account is None:
            raise NotFoundError(f"User {user_id} has no credit account.")
        return CreditBalanceRecord.model_validate(account)

    async def list_transactions(
        self, user_id: int, limit: int | None = None
    ) -> list[CreditTransactionRecord]:
        page_size = limit or self._ledger_setting("transaction_page_size", 10)
        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .limit(page_size)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [CreditTransactionRecord.model_validate(row) for row in rows]

    async def open_account(self, user_id: int) -> CreditBalanceRecord:
        """Create a zero balance for the user if none exists yet."""

        account = await self._get_account(user_id)
        if account is None:
            account = CreditBalance(user_id=user_id, balance=0, updated_at=utc_now())
            self.session.add(account)
            await self._flush()
            logger.info("credit_account_opened", user_id=user_id)
        return CreditBalanceRecord.model_validate(account)

    # Internal helpers -------------------------------------------------

    async def _adjust(
        self,
        caller: Caller | None,
        user_id: int,
        amount: int,
        description: str | None,
        *,
        direction: int,
    ) -> LedgerResult:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Credit amount must be an integer.")
        if amount <= 0:
            raise ValidationError("Credit amount must be greater than zero.")
        if caller is None:
            raise NotAuthenticatedError("Not authenticated.")

        description = (description or "").strip() or self._ledger_setting(
            "default_description", DEFAULT_DESCRIPTION
        )
        action = "add_credits" if direction > 0 else "deduct_credits"
        admin_name = await self.activity_log.resolve_admin_name(caller)

        balance = await self._apply_delta(user_id, amount, direction=direction)
        transaction = CreditTransaction(
            user_id=user_id,
            amount=direction * amount,
            transaction_type="credit" if direction > 0 else "debit",
            description=description,
        )
        self.session.add(transaction)
        await self._flush()
        logger.info(
            "credits_added" if direction > 0 else "credits_deducted",
            user_id=user_id,
            amount=amount,
            balance=balance,
            admin_user_id=caller.user_id,
        )

        verb = "added" if direction > 0 else "deducted"
        audit_error = await self.activity_log.record_best_effort(
            ActivityEntry(
                admin_user_id=caller.user_id,
                user_id=user_id,
                entity_type="user",
                entity_id=user_id,
                activity_type="credit_adjustment",
                description=f"{amount} credits {verb} by {admin_name}: {description}",
                amount=direction * amount,
                metadata={
                    "action": action,
                    "amount": amount,
                    "description": description,
                    "admin_name": admin_name,
                },
            )
        )
        return LedgerResult(
            user_id=user_id,
            balance=balance,
            transaction=CreditTransactionRecord.model_validate(transaction),
            audit_error=audit_error,
        )

    async def _apply_delta(self, user_id: int, amount: int, *, direction: int) -> int:
        """Apply a field-level increment/decrement and return the new balance."""

        stmt = update(CreditBalance).where(CreditBalance.user_id == user_id)
        if direction < 0:
            stmt = stmt.where(self._balance_guard(amount))
        stmt = stmt.values(
            balance=CreditBalance.balance + direction * amount,
            updated_at=utc_now(),
        ).execution_options(synchronize_session="evaluate")

        try:
            result = await self.session.execute(stmt)
        except IntegrityError as exc:
            error = translate_store_error(exc)
            if isinstance(error, CheckViolationError):
                raise InsufficientBalanceError(
                    f"Insufficient balance to deduct {amount} credits."
                ) from exc
            raise error from exc
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc

        if result.rowcount == 0:
            current = await self._current_balance(user_id)
            if current is None:
                raise NotFoundError(f"User {user_id} has no credit account.")
            logger.info(
                "credit_deduction_rejected",
                user_id=user_id,
                amount=amount,
                balance=current,
            )
            raise InsufficientBalanceError(
                f"Insufficient balance: {current} available, {amount} requested."
            )

        balance = await self._current_balance(user_id)
        if balance is None:
            raise NotFoundError(f"User {user_id} has no credit account.")
        return balance

    @staticmethod
    def _balance_guard(amount: int):
        return CreditBalance.balance >= amount

    async def _current_balance(self, user_id: int) -> int | None:
        stmt = select(CreditBalance.balance).where(CreditBalance.user_id == user_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _get_account(self, user_id: int) -> CreditBalance | None:
        stmt = (
            select(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise translate_store_error(exc) from exc

    def _ledger_setting(self, name: str, default):
        return getattr(getattr(self.settings, "ledger", None), name, default)


__all__ = ["CreditLedgerService", "DEFAULT_DESCRIPTION"]
