"""Reviewer decisions on submitted tasks, and assignees asking for one."""

import logging
from datetime import timedelta
from typing import Any, List, Mapping, Optional

from config import settings
from ..database.models import TaskReviewDB
from ..database.repositories.reviews import ReviewRepository
from ..database.repositories.tasks import TaskRepository
from ..exceptions import NotAuthenticatedError, NotAuthorizedError, OpsDeskError
from ..models.task import ReviewStats, ReviewStatus, TaskStatus, TaskType
from ..utils.datetime_utils import get_local_now
from ..utils.notifications import Notifier

logger = logging.getLogger(__name__)

REVIEW_TO_TASK_STATUS = {
    ReviewStatus.APPROVED.value: TaskStatus.APPROVED.value,
    ReviewStatus.REJECTED.value: TaskStatus.REJECTED.value,
}


def _review_status(status: Any) -> str:
    status = getattr(status, "value", status)
    if status not in REVIEW_TO_TASK_STATUS:
        raise OpsDeskError(f"Invalid review status: {status}")
    return status


class TaskReviewService:
    """Records reviews and applies them to task status."""

    def __init__(
        self,
        review_repo: ReviewRepository,
        task_repo: TaskRepository,
        notifier: Optional[Notifier] = None,
    ):
        self.review_repo = review_repo
        self.task_repo = task_repo
        self.notifier = notifier or Notifier()

    async def submit_review(
        self,
        task: Mapping[str, Any],
        status: str,
        notes: Optional[str],
        user_id: Optional[str],
    ) -> Optional[TaskReviewDB]:
        """
        Approve or reject a task.

        Only the task's reviewer (when one is set) may review it. A failed
        status update after the review row is written is logged only.
        """
        try:
            if not user_id:
                raise NotAuthenticatedError()

            reviewer_id = task.get("reviewer_id")
            if reviewer_id and reviewer_id != user_id:
                raise NotAuthorizedError("You are not authorized to review this task")

            status = _review_status(status)
            review = await self.review_repo.create(task["id"], user_id, status, notes or None)

            try:
                await self.task_repo.update_status(task["id"], REVIEW_TO_TASK_STATUS[status])
            except Exception as e:
                logger.error(f"Error updating task {task['id']} after review: {e}")

            self.notifier.success("Success", f"Task {status} successfully", user_id)
            return review

        except Exception as e:
            logger.error(f"Error submitting review: {e}")
            self.notifier.error("Error", str(e) or "Failed to submit review", user_id)
            return None

    async def bulk_review(
        self,
        task_ids: List[str],
        status: str,
        notes: Optional[str],
        user_id: Optional[str],
    ) -> bool:
        """
        Record the same decision on many tasks.

        Nothing is written when any task has a different assigned reviewer.
        Review rows go in one transaction, then every task status is updated
        in one statement; a failed status update is logged only.
        """
        try:
            if not user_id:
                raise NotAuthenticatedError()

            status = _review_status(status)
            task_ids = list(dict.fromkeys(task_ids))
            if not task_ids:
                raise OpsDeskError("No tasks selected for review")

            conflicts = await self.task_repo.find_reviewer_conflicts(task_ids, user_id)
            if conflicts:
                raise NotAuthorizedError(f"You are not authorized to review {len(conflicts)} of the selected tasks")

            await self.review_repo.create_many(task_ids, user_id, status, notes or None)

            try:
                await self.task_repo.bulk_update(task_ids, {"status": REVIEW_TO_TASK_STATUS[status]})
            except Exception as e:
                logger.error(f"Error updating task statuses after bulk review: {e}")

            self.notifier.success("Success", f"{len(task_ids)} tasks {status} successfully", user_id)
            return True

        except Exception as e:
            logger.error(f"Error submitting bulk review: {e}")
            self.notifier.error("Error", str(e) or "Failed to submit reviews", user_id)
            return False

    async def request_review(self, task_id: str, user_id: Optional[str]) -> bool:
        """Assignee marks a task as ready for its reviewer."""
        try:
            if not user_id:
                raise NotAuthenticatedError()

            task = await self.task_repo.request_review(task_id, user_id)
            if task is None:
                raise OpsDeskError("Task not found or not assigned to you")

            self.notifier.success("Success", "Task submitted for review", user_id)
            return True

        except Exception as e:
            logger.error(f"Error requesting review for task {task_id}: {e}")
            self.notifier.error("Error", str(e) or "Failed to submit for review", user_id)
            return False

    async def get_review_stats(self, reviewer_id: Optional[str], days: Optional[int] = None) -> Optional[ReviewStats]:
        """Counts and approval rate for a reviewer's recent reviews. None on failure."""
        if not reviewer_id:
            return None

        since = get_local_now() - timedelta(days=days or settings.review_stats_days)
        try:
            rows = await self.review_repo.get_recent_by_reviewer(reviewer_id, since)
        except Exception as e:
            logger.error(f"Error getting review stats for {reviewer_id}: {e}")
            return None

        total = len(rows)
        approved = sum(1 for status, _ in rows if status == ReviewStatus.APPROVED.value)
        return ReviewStats(
            total=total,
            approved=approved,
            rejected=sum(1 for status, _ in rows if status == ReviewStatus.REJECTED.value),
            approval_rate=(approved / total) * 100 if total else 0.0,
            daily_tasks=sum(1 for _, task_type in rows if task_type == TaskType.DAILY.value),
            one_off_tasks=sum(1 for _, task_type in rows if task_type == TaskType.ONE_OFF.value),
        )
