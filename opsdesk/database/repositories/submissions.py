"""
Task submission repository.

Submissions are evidence, completions and notes recorded against a task.
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError

from ..connection import get_database
from ..models import TaskSubmissionDB
from ..exceptions import DatabaseConstraintError, DatabaseOperationError
from ...realtime.change_feed import ChangeFeed, ChangeType, publish_change
from ...utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)

TABLE = "task_submissions"


class SubmissionRepository:
    """Repository for task submissions."""

    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        self.db = get_database()
        self.change_feed = change_feed

    async def create(self, submission_data: Dict[str, Any]) -> TaskSubmissionDB:
        """Insert a submission row."""
        async with self.db.session() as session:
            try:
                submission = TaskSubmissionDB(
                    task_id=submission_data["task_id"],
                    submission_type=submission_data["submission_type"],
                    evidence_type=submission_data.get("evidence_type"),
                    file_url=submission_data.get("file_url"),
                    file_path=submission_data.get("file_path"),
                    file_name=submission_data.get("file_name"),
                    file_size=submission_data.get("file_size"),
                    link_url=submission_data.get("link_url"),
                    notes=submission_data.get("notes"),
                    checklist_data=submission_data.get("checklist_data"),
                    submitted_by=submission_data["submitted_by"],
                    submitted_at=get_local_now(),
                )
                session.add(submission)
                await session.flush()
                record = submission.to_dict()

            except IntegrityError as e:
                logger.error(f"Constraint violation creating submission: {e}")
                raise DatabaseConstraintError(
                    f"Cannot create submission for task {submission_data.get('task_id')}: constraint violation"
                )

            except Exception as e:
                logger.error(f"Submission insert failed: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to create submission: {e}")

        logger.info(
            f"Created {submission.submission_type} submission {submission.id} on task {submission.task_id}"
        )
        await publish_change(self.change_feed, TABLE, ChangeType.INSERT, record)
        return submission

    async def get_by_id(self, submission_id: str) -> Optional[TaskSubmissionDB]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskSubmissionDB).where(TaskSubmissionDB.id == submission_id)
            )
            return result.scalar_one_or_none()

    async def delete(self, submission_id: str) -> int:
        """Delete a submission row. Returns the number of rows removed (0 or 1)."""
        async with self.db.session() as session:
            try:
                result = await session.execute(
                    delete(TaskSubmissionDB)
                    .where(TaskSubmissionDB.id == submission_id)
                    .returning(TaskSubmissionDB.id, TaskSubmissionDB.task_id)
                )
                rows = result.all()

            except Exception as e:
                logger.error(f"Submission delete failed for {submission_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to delete submission {submission_id}: {e}")

        for row in rows:
            await publish_change(
                self.change_feed, TABLE, ChangeType.DELETE,
                old_record={"id": row[0], "task_id": row[1]},
            )
        return len(rows)

