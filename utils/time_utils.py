"""Time helpers.

Run timestamps are timezone-aware UTC; filing dates are plain ``date`` values
as published by EDGAR (Eastern calendar days, no time component).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


def utcnow_sa_default() -> datetime:
    """Column default callable for ``DateTime`` fields."""

    return utcnow()


def utc_today() -> date:
    return utcnow().date()


def parse_ymd_date(date_str: str) -> date:
    """Parse ``YYYY-MM-DD``.

    Raises:
        ValueError: if `date_str` is not a valid YYYY-MM-DD date.
    """

    return date.fromisoformat(date_str.strip())


def parse_ymd_or_none(value: object) -> date | None:
    """Lenient variant for upstream payloads: anything unparseable is None."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def next_day(d: date) -> date:
    return d + timedelta(days=1)


def iso_or_none(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
