"""
Task comment repository.

Comments are flat rows; a reply carries its parent's id. Edits and deletes
only match rows written by the same author.
"""

import logging
from typing import Optional, List, Dict

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError

from ..connection import get_database
from ..models import TaskCommentDB
from ..exceptions import DatabaseConstraintError, DatabaseOperationError
from ...realtime.change_feed import ChangeFeed, ChangeType, publish_change
from ...utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)

TABLE = "task_comments"


class CommentRepository:
    """Repository for task comments."""

    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        self.db = get_database()
        self.change_feed = change_feed

    async def create(
        self,
        task_id: str,
        author_id: str,
        content: str,
        parent_comment_id: Optional[str] = None,
    ) -> TaskCommentDB:
        now = get_local_now()
        async with self.db.session() as session:
            try:
                comment = TaskCommentDB(
                    task_id=task_id,
                    author_id=author_id,
                    content=content,
                    parent_comment_id=parent_comment_id,
                    is_edited=False,
                    created_at=now,
                    updated_at=now,
                )
                session.add(comment)
                await session.flush()
                record = comment.to_dict()

            except IntegrityError as e:
                logger.error(f"Constraint violation creating comment on task {task_id}: {e}")
                raise DatabaseConstraintError(f"Cannot comment on task {task_id}: task or parent comment missing")

            except Exception as e:
                logger.error(f"Comment insert failed for task {task_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to add comment to task {task_id}: {e}")

        await publish_change(self.change_feed, TABLE, ChangeType.INSERT, record)
        return comment

    async def get_by_task(self, task_id: str) -> List[TaskCommentDB]:
        """Comments on a task, oldest first."""
        async with self.db.session() as session:
            try:
                result = await session.execute(
                    select(TaskCommentDB)
                    .where(TaskCommentDB.task_id == task_id)
                    .order_by(TaskCommentDB.created_at.asc())
                )
                return list(result.scalars().all())
            except Exception as e:
                logger.error(f"Comment query failed for task {task_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to load comments for task {task_id}: {e}")

    async def count_by_tasks(self, task_ids: List[str]) -> Dict[str, int]:
        """Comment count per task id; tasks without comments map to 0."""
        counts = {task_id: 0 for task_id in task_ids}
        if not task_ids:
            return counts

        async with self.db.session() as session:
            try:
                result = await session.execute(
                    select(TaskCommentDB.task_id, func.count(TaskCommentDB.id))
                    .where(TaskCommentDB.task_id.in_(task_ids))
                    .group_by(TaskCommentDB.task_id)
                )
                rows = result.all()
            except Exception as e:
                logger.error(f"Comment count query failed: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to count comments: {e}")

        for task_id, count in rows:
            counts[task_id] = count
        return counts

    async def update_content(self, comment_id: str, author_id: str, content: str) -> Optional[TaskCommentDB]:
        """Replace a comment's text and mark it edited. None unless author_id wrote it."""
        async with self.db.session() as session:
            try:
                result = await session.execute(
                    update(TaskCommentDB)
                    .where(TaskCommentDB.id == comment_id, TaskCommentDB.author_id == author_id)
                    .values(content=content, is_edited=True, updated_at=get_local_now())
                    .returning(TaskCommentDB)
                    .execution_options(synchronize_session=False)
                )
                comment = result.scalar_one_or_none()
                record = comment.to_dict() if comment else None
            except Exception as e:
                logger.error(f"Comment update failed for {comment_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to update comment {comment_id}: {e}")

        if comment is not None:
            await publish_change(self.change_feed, TABLE, ChangeType.UPDATE, record)
        return comment

    async def delete(self, comment_id: str, author_id: str) -> int:
        """Delete an author's comment (replies cascade). Returns rows removed."""
        async with self.db.session() as session:
            try:
                result = await session.execute(
                    delete(TaskCommentDB)
                    .where(TaskCommentDB.id == comment_id, TaskCommentDB.author_id == author_id)
                    .returning(TaskCommentDB.id, TaskCommentDB.task_id)
                )
                rows = result.all()
            except Exception as e:
                logger.error(f"Comment delete failed for {comment_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to delete comment {comment_id}: {e}")

        for row in rows:
            await publish_change(
                self.change_feed, TABLE, ChangeType.DELETE,
                old_record={"id": row[0], "task_id": row[1]},
            )
        return len(rows)
