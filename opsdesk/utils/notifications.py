"""
Transient user notifications.

User-initiated operations report their outcome here (success, warning,
error) instead of raising. Notifications are kept in a bounded buffer per
notifier; routes read the last error back into the HTTP response.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, List, Optional

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    """Notification severity levels."""
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    title: str
    message: str
    level: NotificationLevel
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

_LOG_LEVELS = {
    NotificationLevel.SUCCESS: logging.INFO,
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
}


class Notifier:
    """Collects notifications for the current user session."""

    def __init__(self, max_items: int = 100):
        self._items: Deque[Notification] = deque(maxlen=max_items)

    def notify(
        self,
        title: str,
        message: str,
        level: NotificationLevel = NotificationLevel.INFO,
        user_id: Optional[str] = None,
    ) -> Notification:
        notification = Notification(title=title, message=message, level=level, user_id=user_id)
        self._items.append(notification)
        logger.log(_LOG_LEVELS[level], f"[{level.value}] {title}: {message}")
        return notification

    def success(self, title: str, message: str = "", user_id: Optional[str] = None) -> Notification:
        return self.notify(title, message, NotificationLevel.SUCCESS, user_id)

    def warning(self, title: str, message: str = "", user_id: Optional[str] = None) -> Notification:
        return self.notify(title, message, NotificationLevel.WARNING, user_id)

    def error(self, title: str, message: str = "", user_id: Optional[str] = None) -> Notification:
        return self.notify(title, message, NotificationLevel.ERROR, user_id)

    @property
    def items(self) -> List[Notification]:
        return list(self._items)
