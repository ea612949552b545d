"""
deskpoints.engine.business_time — Fixed-offset business clock
==============================================================

The helpdesk runs on a fixed UTC offset (GMT+2 by default, no daylight
saving).  Every day-scoped rule (milestones, badges, note ordinals, shift
starts) uses the *business day*: local midnight to local midnight, i.e.
``[local_date 00:00 - offset, +24h)`` in UTC.

All functions accept aware or naive datetimes; naive values are taken to
be UTC, which is what SQLite hands back in tests.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta

DEFAULT_OFFSET = timedelta(hours=2)


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def business_date(now: datetime, offset: timedelta = DEFAULT_OFFSET) -> date:
    """The business-local calendar date at instant *now*."""
    return (as_utc(now) + offset).date()


def day_bounds(day: date, offset: timedelta = DEFAULT_OFFSET) -> tuple[datetime, datetime]:
    """UTC ``[start, end)`` of business day *day*."""
    start = datetime.combine(day, time.min, tzinfo=UTC) - offset
    return start, start + timedelta(days=1)


def is_weekend(day: date) -> bool:
    return day.isoweekday() >= 6


def parse_shift_time(value: str) -> time:
    """Parse ``"HH:MM"`` (seconds tolerated) into a :class:`time`."""
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid shift start time: {value!r}")
    return time(hour=int(parts[0]), minute=int(parts[1]))


def scheduled_start_utc(
    day: date,
    shift_start: str,
    offset: timedelta = DEFAULT_OFFSET,
) -> datetime:
    """UTC instant of a business-local ``HH:MM`` shift start on *day*."""
    local = datetime.combine(day, parse_shift_time(shift_start), tzinfo=UTC)
    return local - offset


def minutes_between(earlier: datetime, later: datetime) -> float:
    return (as_utc(later) - as_utc(earlier)).total_seconds() / 60
