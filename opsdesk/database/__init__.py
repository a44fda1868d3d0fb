"""
PostgreSQL database module for the task lifecycle core.

Handles:
- Task templates and dated daily instances
- Submissions and reviews
- Auto-approval settings
- Attendance check-ins
"""

from .connection import (
    get_database,
    Database,
    init_database,
    close_database,
)
from .models import (
    Base,
    TaskTemplateDB,
    TaskDB,
    TaskSubmissionDB,
    TaskReviewDB,
    TaskSettingsDB,
    AttendanceRecordDB,
)

__all__ = [
    "get_database",
    "Database",
    "init_database",
    "close_database",
    "Base",
    "TaskTemplateDB",
    "TaskDB",
    "TaskSubmissionDB",
    "TaskReviewDB",
    "TaskSettingsDB",
    "AttendanceRecordDB",
]
