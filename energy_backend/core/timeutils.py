from __future__ import annotations

import calendar
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

PERIODS = ("daily", "weekly", "monthly")


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def period_bounds(moment: datetime, period: str, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return the UTC ``[start, end)`` of the local ``period`` containing ``moment``.

    Weeks start on Monday.
    """
    local = as_utc(moment).astimezone(tz)
    day = local.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "daily":
        start, end = day, day + timedelta(days=1)
    elif period == "weekly":
        start = day - timedelta(days=day.weekday())
        end = start + timedelta(days=7)
    elif period == "monthly":
        start = day.replace(day=1)
        days_in_month = calendar.monthrange(start.year, start.month)[1]
        end = start + timedelta(days=days_in_month)
    else:
        raise ValueError(f"Unknown period {period!r}")
    return start.astimezone(UTC), end.astimezone(UTC)


def seconds_until_next_midnight(now: datetime, tz: ZoneInfo) -> float:
    local = as_utc(now).astimezone(tz)
    tomorrow = (local + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max((tomorrow.astimezone(UTC) - as_utc(now)).total_seconds(), 0.0)
