"""
Daily task instance repository.

create_daily_task_instances_for_user() is the only place daily instances
are written. It is a single INSERT ... ON CONFLICT DO NOTHING against the
(assigned_to, template_id, instance_date) unique constraint, so repeated or
concurrent calls for the same user and date never produce duplicates.
"""

import logging
from datetime import date
from typing import Optional, Dict, Any, List

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert

from ..connection import get_database
from ..models import TaskDB, TaskTemplateDB, TaskTypeEnum, TaskStatusEnum, new_id
from ..exceptions import DatabaseOperationError
from ...realtime.change_feed import ChangeFeed, ChangeType, publish_change
from ...utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)

DAILY_INSTANCE_CONSTRAINT = "uq_tasks_daily_instance"


def build_instance_row(template: TaskTemplateDB, user_id: str, target_date: date) -> Dict[str, Any]:
    """Column values for the instance of a template on a date."""
    now = get_local_now()
    return {
        "id": new_id(),
        "template_id": template.id,
        "title": template.title,
        "description": template.description,
        "task_type": TaskTypeEnum.DAILY.value,
        "status": TaskStatusEnum.NOT_STARTED.value,
        "priority": template.priority,
        "evidence_required": template.evidence_required,
        "assigned_to": user_id,
        "assigned_by": template.created_by,
        "reviewer_id": template.reviewer_id,
        "due_date": target_date,
        "due_time": template.due_time,
        "instance_date": target_date,
        "is_recurring_instance": True,
        "is_late": False,
        "tags": template.tags,
        "created_at": now,
        "updated_at": now,
    }


class TaskInstanceRepository:
    """Repository for dated daily task instances."""

    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        self.db = get_database()
        self.change_feed = change_feed

    async def count_daily_instances(self, user_id: str, instance_date: date) -> int:
        """Count a user's daily instances for one date."""
        async with self.db.session() as session:
            try:
                result = await session.execute(
                    select(func.count())
                    .select_from(TaskDB)
                    .where(
                        TaskDB.assigned_to == user_id,
                        TaskDB.task_type == TaskTypeEnum.DAILY.value,
                        TaskDB.is_recurring_instance.is_(True),
                        TaskDB.instance_date == instance_date,
                    )
                )
                return result.scalar() or 0
            except Exception as e:
                logger.error(f"Error counting instances for {user_id} on {instance_date}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to count daily instances for {user_id}: {e}")

    async def create_daily_task_instances_for_user(
        self, user_id: str, target_date: date
    ) -> Dict[str, int]:
        """
        Create one instance per active daily template for (user, date).

        Idempotent: rows that already exist are skipped by the unique
        constraint, not by a pre-check.

        Returns:
            {"instances_created": n, "templates_found": m}
        """
        async with self.db.session() as session:
            try:
                result = await session.execute(
                    select(TaskTemplateDB).where(
                        TaskTemplateDB.assignee_id == user_id,
                        TaskTemplateDB.task_type == TaskTypeEnum.DAILY.value,
                        TaskTemplateDB.is_active.is_(True),
                    )
                )
                templates: List[TaskTemplateDB] = list(result.scalars().all())

                if not templates:
                    return {"instances_created": 0, "templates_found": 0}

                rows = [build_instance_row(t, user_id, target_date) for t in templates]
                inserted = await session.execute(
                    pg_insert(TaskDB)
                    .values(rows)
                    .on_conflict_do_nothing(constraint=DAILY_INSTANCE_CONSTRAINT)
                    .returning(*TaskDB.__table__.c)
                )
                created = [dict(row) for row in inserted.mappings().all()]

            except Exception as e:
                logger.error(
                    f"Daily instance creation failed for {user_id} on {target_date}: {e}",
                    exc_info=True
                )
                raise DatabaseOperationError(f"Failed to create daily instances for {user_id}: {e}")

        logger.info(
            f"Daily instances for {user_id} on {target_date}: "
            f"{len(created)} created from {len(templates)} templates"
        )
        for record in created:
            await publish_change(self.change_feed, "tasks", ChangeType.INSERT, record)

        return {"instances_created": len(created), "templates_found": len(templates)}

