"""
Repository classes for database operations.

Each repository handles CRUD and queries for its table. Repositories
that own realtime tables take an optional change feed and publish row
changes after commit.
"""

from .tasks import TaskRepository, serialize_task
from .templates import TaskTemplateRepository
from .instances import TaskInstanceRepository
from .submissions import SubmissionRepository
from .reviews import ReviewRepository
from .comments import CommentRepository
from .settings import TaskSettingsRepository
from .attendance import AttendanceRepository

__all__ = [
    "TaskRepository",
    "serialize_task",
    "TaskTemplateRepository",
    "TaskInstanceRepository",
    "SubmissionRepository",
    "ReviewRepository",
    "CommentRepository",
    "TaskSettingsRepository",
    "AttendanceRepository",
]
