"""
Application context.

Holds the change feed, repositories, storage and long-lived services for
one running application. The feed and everything subscribed to it are torn
down with the context.
"""

import logging
from typing import List, Optional

from config import settings
from .database.repositories.attendance import AttendanceRepository
from .database.repositories.comments import CommentRepository
from .database.repositories.instances import TaskInstanceRepository
from .database.repositories.reviews import ReviewRepository
from .database.repositories.settings import TaskSettingsRepository
from .database.repositories.submissions import SubmissionRepository
from .database.repositories.tasks import TaskRepository
from .database.repositories.templates import TaskTemplateRepository
from .realtime.change_feed import ChangeFeed, RedisChangeRelay
from .services.attendance import AttendanceService
from .services.comments import CommentCounts, TaskCommentService
from .services.daily_tasks import DailyTaskManager, DailyTaskTrigger
from .services.reviews import TaskReviewService
from .services.submissions import TaskSubmissionService
from .services.task_board import TaskBoard
from .storage.local_storage import get_evidence_storage
from .storage.protocol import EvidenceStorage
from .utils.background_tasks import cancel_background_tasks
from .utils.notifications import Notifier
from .models.task import TaskFilters, TaskSort

logger = logging.getLogger(__name__)


class AppContext:
    """Wires repositories and services around a single change feed."""

    def __init__(
        self,
        change_feed: Optional[ChangeFeed] = None,
        storage: Optional[EvidenceStorage] = None,
    ):
        self.change_feed = change_feed or ChangeFeed()
        self.storage = storage if storage is not None else get_evidence_storage()

        self.task_repo = TaskRepository(change_feed=self.change_feed)
        self.instance_repo = TaskInstanceRepository(change_feed=self.change_feed)
        self.submission_repo = SubmissionRepository(change_feed=self.change_feed)
        self.review_repo = ReviewRepository(change_feed=self.change_feed)
        self.comment_repo = CommentRepository(change_feed=self.change_feed)
        self.template_repo = TaskTemplateRepository()
        self.settings_repo = TaskSettingsRepository()
        self.attendance_repo = AttendanceRepository()

        self.daily_tasks = DailyTaskManager(self.template_repo, self.instance_repo)
        self.daily_task_trigger = DailyTaskTrigger(self.daily_tasks)
        self.attendance = AttendanceService(self.attendance_repo, self.daily_task_trigger)

    # Services that report to the caller get a notifier per use

    def submission_service(self, notifier: Optional[Notifier] = None) -> TaskSubmissionService:
        return TaskSubmissionService(
            self.submission_repo,
            self.task_repo,
            self.settings_repo,
            self.storage,
            notifier=notifier,
        )

    def review_service(self, notifier: Optional[Notifier] = None) -> TaskReviewService:
        return TaskReviewService(self.review_repo, self.task_repo, notifier=notifier)

    def comment_service(self, notifier: Optional[Notifier] = None) -> TaskCommentService:
        return TaskCommentService(self.comment_repo, notifier=notifier)

    def comment_counts(self, task_ids: List[str]) -> CommentCounts:
        return CommentCounts(self.comment_repo, task_ids, change_feed=self.change_feed)

    def task_board(
        self,
        filters: Optional[TaskFilters] = None,
        sort: Optional[TaskSort] = None,
        page_size: Optional[int] = None,
        notifier: Optional[Notifier] = None,
    ) -> TaskBoard:
        return TaskBoard(
            self.task_repo,
            change_feed=self.change_feed,
            notifier=notifier,
            filters=filters,
            sort=sort,
            page_size=page_size,
        )

    async def start(self) -> None:
        """Attach the Redis relay when Redis is configured."""
        if settings.redis_url:
            relay = RedisChangeRelay(settings.redis_url)
            if await relay.connect():
                self.change_feed.add_relay(relay)

    async def close(self) -> None:
        cancelled = await cancel_background_tasks()
        if cancelled:
            logger.info(f"Cancelled {cancelled} background tasks")
        await self.change_feed.close()
