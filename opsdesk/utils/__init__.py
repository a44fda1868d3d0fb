"""Utility modules for the opsdesk task service."""

from .datetime_utils import (
    get_local_tz,
    get_local_now,
    get_local_today,
    to_naive_local,
    parse_date,
    parse_time_of_day,
    combine_due_datetime,
    hours_late,
)

from .background_tasks import create_safe_task, safe_background_task
from .retry import retry_with_backoff, RetryExhausted
from .notifications import Notifier, Notification, NotificationLevel

__all__ = [
    # Datetime utilities
    "get_local_tz",
    "get_local_now",
    "get_local_today",
    "to_naive_local",
    "parse_date",
    "parse_time_of_day",
    "combine_due_datetime",
    "hours_late",
    # Background execution
    "create_safe_task",
    "safe_background_task",
    "retry_with_backoff",
    "RetryExhausted",
    # Notifications
    "Notifier",
    "Notification",
    "NotificationLevel",
]
