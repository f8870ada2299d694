"""Time utilities with timezone-aware defaults."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return current UTC time with tzinfo."""

    return datetime.now(timezone.utc)


def days_from_now(days: int, *, now: datetime | None = None) -> datetime:
    return (now or utc_now()) + timedelta(days=days)


__all__ = ["utc_now", "days_from_now"]
