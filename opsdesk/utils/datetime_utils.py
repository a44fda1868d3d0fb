"""
Centralized datetime and timezone utilities.

Task due dates, instance dates and timestamps are stored as naive local
time (PostgreSQL TIMESTAMP WITHOUT TIME ZONE), so all "now" and "today"
values come from here.
"""

from datetime import date, datetime, time
from typing import Optional, Union
import pytz

from config import settings


def get_local_tz() -> pytz.BaseTzInfo:
    """Get the configured local timezone."""
    return pytz.timezone(settings.timezone)


def get_local_now() -> datetime:
    """Get current time in local timezone (naive)."""
    local_tz = get_local_tz()
    return datetime.now(local_tz).replace(tzinfo=None)


def get_local_today() -> date:
    """Calendar date in the local timezone; daily instances are keyed by it."""
    return get_local_now().date()


def to_naive_local(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert any datetime to naive local time for database storage.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive datetime in local timezone, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt.astimezone(get_local_tz()).replace(tzinfo=None)

    # Already naive, assume it's in local time
    return dt


def parse_date(value: Union[date, datetime, str, None]) -> Optional[date]:
    """Accept a date, datetime or ISO string (YYYY-MM-DD[...])."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def parse_time_of_day(value: Union[time, str, None]) -> Optional[time]:
    """Parse "HH:MM" or "HH:MM:SS"."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    parts = str(value).strip().split(":")
    hour = int(parts[0])
    minute = int(parts[1]) if len(parts) > 1 else 0
    second = int(parts[2]) if len(parts) > 2 else 0
    return time(hour, minute, second)


def combine_due_datetime(
    due_date: Union[date, datetime, str, None],
    due_time: Union[time, str, None] = None,
    default_time: Optional[str] = None,
) -> Optional[datetime]:
    """
    Build the due moment of a task.

    A missing due_time falls back to ``default_time`` (settings.default_due_time,
    23:59) literally.

    Returns:
        Naive local datetime, or None when the task has no due date
    """
    parsed_date = parse_date(due_date)
    if parsed_date is None:
        return None
    parsed_time = parse_time_of_day(due_time) or parse_time_of_day(default_time or settings.default_due_time)
    return datetime.combine(parsed_date, parsed_time)


def hours_late(due_at: datetime, now: Optional[datetime] = None) -> float:
    """
    Hours elapsed since the due moment.

    Negative when ``now`` is before the due moment.
    """
    if now is None:
        now = get_local_now()
    return (now - due_at).total_seconds() / 3600
