"""Task review repository (approve/reject decisions)."""

import logging
from datetime import datetime
from typing import Optional, List, Tuple

from sqlalchemy import select

from ..connection import get_database
from ..models import TaskDB, TaskReviewDB
from ..exceptions import DatabaseOperationError
from ...realtime.change_feed import ChangeFeed, ChangeType, publish_change
from ...utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)

TABLE = "task_reviews"


class ReviewRepository:
    """Repository for task reviews."""

    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        self.db = get_database()
        self.change_feed = change_feed

    async def create(
        self,
        task_id: str,
        reviewer_id: str,
        status: str,
        review_notes: Optional[str] = None,
    ) -> TaskReviewDB:
        async with self.db.session() as session:
            try:
                review = TaskReviewDB(
                    task_id=task_id,
                    reviewer_id=reviewer_id,
                    status=status,
                    review_notes=review_notes,
                    reviewed_at=get_local_now(),
                )
                session.add(review)
                await session.flush()
                record = review.to_dict()
            except Exception as e:
                logger.error(f"Review insert failed for task {task_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to record review for task {task_id}: {e}")

        logger.info(f"Review {status} recorded on task {task_id} by {reviewer_id}")
        await publish_change(self.change_feed, TABLE, ChangeType.INSERT, record)
        return review

    async def create_many(
        self,
        task_ids: List[str],
        reviewer_id: str,
        status: str,
        review_notes: Optional[str] = None,
    ) -> List[TaskReviewDB]:
        """Insert one review per task in a single transaction."""
        if not task_ids:
            return []

        reviewed_at = get_local_now()
        async with self.db.session() as session:
            try:
                reviews = [
                    TaskReviewDB(
                        task_id=task_id,
                        reviewer_id=reviewer_id,
                        status=status,
                        review_notes=review_notes,
                        reviewed_at=reviewed_at,
                    )
                    for task_id in task_ids
                ]
                session.add_all(reviews)
                await session.flush()
                records = [review.to_dict() for review in reviews]
            except Exception as e:
                logger.error(f"Bulk review insert failed for {len(task_ids)} tasks: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to record reviews: {e}")

        logger.info(f"Recorded {len(records)} {status} reviews by {reviewer_id}")
        for record in records:
            await publish_change(self.change_feed, TABLE, ChangeType.INSERT, record)
        return reviews

    async def get_recent_by_reviewer(self, reviewer_id: str, since: datetime) -> List[Tuple[str, Optional[str]]]:
        """(review status, task type) for each review by a reviewer since a moment."""
        async with self.db.session() as session:
            try:
                result = await session.execute(
                    select(TaskReviewDB.status, TaskDB.task_type)
                    .join(TaskDB, TaskDB.id == TaskReviewDB.task_id, isouter=True)
                    .where(
                        TaskReviewDB.reviewer_id == reviewer_id,
                        TaskReviewDB.reviewed_at >= since,
                    )
                )
                return [(row[0], row[1]) for row in result.all()]
            except Exception as e:
                logger.error(f"Review stats query failed for {reviewer_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to load reviews for {reviewer_id}: {e}")
