"""
Task comments: threaded reading, writing, and live per-task counts.

A thread is the list of top-level comments, oldest first, each carrying
its direct replies under ``replies``. CommentCounts follows the change
feed and refreshes whenever a comment on one of its tracked tasks is
inserted, edited or deleted.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..database.models import TaskCommentDB
from ..database.repositories.comments import CommentRepository
from ..exceptions import NotAuthenticatedError, OpsDeskError
from ..realtime.change_feed import ChangeEvent, ChangeFeed, Subscription
from ..utils.notifications import Notifier

logger = logging.getLogger(__name__)

TABLE = "task_comments"


def thread_comments(comments: Iterable[TaskCommentDB]) -> List[Dict[str, Any]]:
    """Group replies under their parent. Replies to missing parents are dropped."""
    rows = [comment.to_dict() for comment in comments]
    parents = [row for row in rows if not row.get("parent_comment_id")]
    for parent in parents:
        parent["replies"] = [row for row in rows if row.get("parent_comment_id") == parent["id"]]
    return parents


class TaskCommentService:
    """Reads and writes comments, reporting outcomes through the notifier."""

    def __init__(self, repo: CommentRepository, notifier: Optional[Notifier] = None):
        self.repo = repo
        self.notifier = notifier or Notifier()

    async def get_thread(self, task_id: str) -> List[Dict[str, Any]]:
        return thread_comments(await self.repo.get_by_task(task_id))

    async def add_comment(
        self,
        task_id: str,
        content: str,
        user_id: Optional[str],
        parent_comment_id: Optional[str] = None,
    ) -> Optional[TaskCommentDB]:
        kind = "reply" if parent_comment_id else "comment"
        try:
            if not user_id:
                raise NotAuthenticatedError()
            content = (content or "").strip()
            if not content:
                raise OpsDeskError("Comment cannot be empty")

            comment = await self.repo.create(task_id, user_id, content, parent_comment_id)
            self.notifier.success(f"{kind.capitalize()} added", f"Your {kind} has been added successfully", user_id)
            return comment

        except Exception as e:
            logger.error(f"Error submitting {kind} on task {task_id}: {e}")
            self.notifier.error(f"Error submitting {kind}", str(e) or f"Failed to submit {kind}", user_id)
            return None

    async def edit_comment(self, comment_id: str, content: str, user_id: Optional[str]) -> Optional[TaskCommentDB]:
        try:
            if not user_id:
                raise NotAuthenticatedError()
            content = (content or "").strip()
            if not content:
                raise OpsDeskError("Comment cannot be empty")

            comment = await self.repo.update_content(comment_id, user_id, content)
            if comment is None:
                raise OpsDeskError("Comment not found or not yours to edit")

            self.notifier.success("Comment updated", "Your comment has been updated successfully", user_id)
            return comment

        except Exception as e:
            logger.error(f"Error editing comment {comment_id}: {e}")
            self.notifier.error("Error editing comment", str(e) or "Failed to edit comment", user_id)
            return None

    async def delete_comment(self, comment_id: str, user_id: Optional[str]) -> bool:
        try:
            if not user_id:
                raise NotAuthenticatedError()
            if await self.repo.delete(comment_id, user_id) == 0:
                raise OpsDeskError("Comment not found or not yours to delete")

            self.notifier.success("Comment deleted", "Your comment has been deleted", user_id)
            return True

        except Exception as e:
            logger.error(f"Error deleting comment {comment_id}: {e}")
            self.notifier.error("Error deleting comment", str(e) or "Failed to delete comment", user_id)
            return False


class CommentCounts:
    """Live comment counts for a fixed set of tasks."""

    def __init__(self, repo: CommentRepository, task_ids: List[str], change_feed: Optional[ChangeFeed] = None):
        self.repo = repo
        self.task_ids = list(task_ids)
        self.change_feed = change_feed
        self.counts: Dict[str, int] = {}
        self.error: Optional[str] = None
        self._subscription: Optional[Subscription] = None

    def get(self, task_id: str) -> int:
        return self.counts.get(task_id, 0)

    async def refresh(self) -> Dict[str, int]:
        if not self.task_ids:
            return self.counts
        self.error = None
        try:
            self.counts = await self.repo.count_by_tasks(self.task_ids)
        except Exception as e:
            self.error = str(e) or "Failed to fetch comment counts"
            logger.error(f"Error fetching comment counts: {e}")
        return self.counts

    def start(self) -> None:
        if self.change_feed is None or self._subscription is not None or not self.task_ids:
            return
        self._subscription = self.change_feed.subscribe(TABLE, self.handle_change)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def handle_change(self, event: ChangeEvent) -> None:
        if event.record.get("task_id") in self.task_ids or event.old_record.get("task_id") in self.task_ids:
            await self.refresh()
