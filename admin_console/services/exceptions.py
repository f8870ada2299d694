"""Domain-specific exceptions."""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError, SQLAlchemyError


class ServiceError(Exception):
    pass


class ValidationError(ServiceError):
    pass


class NotAuthenticatedError(ServiceError):
    pass


class NotFoundError(ServiceError):
    pass


class InsufficientBalanceError(ServiceError):
    pass


class RemoteOperationError(ServiceError):
    """Store failure passed through to the caller."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail


class UniqueViolationError(RemoteOperationError):
    pass


class CheckViolationError(RemoteOperationError):
    pass


class AuditLogError(ServiceError):
    """Audit entry could not be written; never fails the primary operation."""

    severity = "warning"


_UNIQUE_MARKERS = ("unique", "duplicate")
_CHECK_MARKERS = ("check constraint", "check_violation")


def translate_store_error(exc: SQLAlchemyError) -> RemoteOperationError:
    """Map a SQLAlchemy failure onto the remote error taxonomy."""

    detail = str(getattr(exc, "orig", None) or exc)
    lowered = detail.lower()
    if isinstance(exc, IntegrityError):
        if any(marker in lowered for marker in _UNIQUE_MARKERS):
            return UniqueViolationError("Record violates a uniqueness constraint.", detail=detail)
        if any(marker in lowered for marker in _CHECK_MARKERS):
            return CheckViolationError("Record violates a check constraint.", detail=detail)
    return RemoteOperationError("Store operation failed.", detail=detail)


__all__ = [
    "ServiceError",
    "ValidationError",
    "NotAuthenticatedError",
    "NotFoundError",
    "InsufficientBalanceError",
    "RemoteOperationError",
    "UniqueViolationError",
    "CheckViolationError",
    "AuditLogError",
    "translate_store_error",
]
