"""Shared date helpers used by services and blueprints.

parse_date:     lenient input parsing for request payloads
add_months:     calendar month arithmetic with end-of-month clamping
start_of_day:   UTC midnight for a date or datetime
"""
import calendar
from datetime import date, datetime, time, timezone


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def add_months(value: date, months: int) -> date:
    """Shift ``value`` by whole calendar months.

    The day is clamped to the last day of the target month, so
    2025-01-31 + 1 month is 2025-02-28.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def start_of_day(value) -> datetime:
    """UTC midnight of the given date, or of the UTC day a datetime falls on."""
    if isinstance(value, datetime):
        value = utc_today(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def utc_today(now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).date() if now.tzinfo else now.date()
