"""
Services for business logic.
"""

from .daily_tasks import DailyTaskManager, DailyTaskTrigger
from .submissions import TaskSubmissionService, decide_task_status
from .evidence import validate_task_file, upload_task_file, upload_evidence_batch
from .task_board import TaskBoard, TaskStateReducer, TaskEvent, matches_filters
from .reviews import TaskReviewService
from .attendance import AttendanceService

__all__ = [
    "DailyTaskManager",
    "DailyTaskTrigger",
    "TaskSubmissionService",
    "decide_task_status",
    "validate_task_file",
    "upload_task_file",
    "upload_evidence_batch",
    "TaskBoard",
    "TaskStateReducer",
    "TaskEvent",
    "matches_filters",
    "TaskReviewService",
    "AttendanceService",
]
