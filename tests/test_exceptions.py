from __future__ import annotations

from sqlalchemy.exc import IntegrityError, OperationalError

from admin_console.services.exceptions import (
    CheckViolationError,
    RemoteOperationError,
    UniqueViolationError,
    translate_store_error,
)


def _integrity(message: str) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception(message))


def test_unique_violation_is_distinguished():
    error = translate_store_error(_integrity("UNIQUE constraint failed: user_profiles.email"))

    assert isinstance(error, UniqueViolationError)
    assert "user_profiles.email" in error.detail


def test_mysql_duplicate_entry_is_unique_violation():
    error = translate_store_error(_integrity("(1062, \"Duplicate entry 'a@b.c' for key 'uq_user_profiles_email'\")"))

    assert isinstance(error, UniqueViolationError)


def test_check_violation_is_distinguished():
    error = translate_store_error(
        _integrity("CHECK constraint failed: ck_user_credits_balance_non_negative")
    )

    assert isinstance(error, CheckViolationError)
    assert not isinstance(error, UniqueViolationError)


def test_other_failures_pass_through_as_remote_errors():
    error = translate_store_error(OperationalError("SELECT 1", {}, Exception("server has gone away")))

    assert type(error) is RemoteOperationError
    assert error.detail == "server has gone away"
