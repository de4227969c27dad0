"""UTC date/time helpers.

SQLite hands timestamps back without tzinfo; everything stored is UTC, so
naive values are re-tagged rather than converted.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime read back from the database."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_today(now: datetime | None = None) -> date:
    return (now or utcnow()).astimezone(timezone.utc).date()


def start_of_day(day: date) -> datetime:
    """Midnight UTC of the given calendar day."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)
