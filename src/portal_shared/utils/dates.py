"""Date helpers for membership validity windows."""

import calendar
import datetime as dt


def utc_now() -> dt.datetime:
    """Current time as an aware UTC datetime."""
    return dt.datetime.now(dt.UTC)


def add_months(start: dt.datetime, months: int) -> dt.datetime:
    """Add months while keeping the day in a valid range.

    Jan 31 + 1 month => Feb 28 (or 29 in a leap year).
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return start.replace(year=year, month=month, day=min(start.day, last_day))


def parse_timestamp(value: str | dt.datetime | None) -> dt.datetime | None:
    """Parse a stored ISO-8601 timestamp, tolerating a trailing Z."""
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = dt.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed
