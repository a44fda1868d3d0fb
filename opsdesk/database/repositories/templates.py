"""
Repository for task templates.

Templates are the recurring definitions daily instances are created from.
They are soft-deactivated (is_active=False), never hard-deleted while
instances reference them.
"""

import logging
from typing import List, Dict, Any

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from ..connection import get_database
from ..models import TaskTemplateDB, TaskTypeEnum
from ..exceptions import (
    DatabaseConstraintError,
    DatabaseOperationError,
    EntityNotFoundError,
    ValidationError,
)
from ...utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)

VALID_TASK_TYPES = {t.value for t in TaskTypeEnum}


class TaskTemplateRepository:
    """Repository for task templates."""

    def __init__(self):
        self.db = get_database()

    async def create(self, template_data: Dict[str, Any]) -> TaskTemplateDB:
        """
        Create a task template.

        Raises:
            ValidationError: Missing title/assignee or unknown task_type
            DatabaseConstraintError: On constraint violation
        """
        if not template_data.get("title") or not template_data.get("assignee_id"):
            raise ValidationError("Template requires a title and an assignee")

        task_type = template_data.get("task_type", TaskTypeEnum.DAILY.value)
        if task_type not in VALID_TASK_TYPES:
            raise ValidationError(f"Invalid task_type: {task_type}")

        async with self.db.session() as session:
            try:
                template = TaskTemplateDB(
                    title=template_data["title"],
                    description=template_data.get("description"),
                    assignee_id=template_data["assignee_id"],
                    task_type=task_type,
                    priority=template_data.get("priority", "medium"),
                    evidence_required=template_data.get("evidence_required", "none"),
                    due_time=template_data.get("due_time"),
                    tags=template_data.get("tags"),
                    is_active=template_data.get("is_active", True),
                    reviewer_id=template_data.get("reviewer_id"),
                    created_by=template_data.get("created_by"),
                )
                session.add(template)
                await session.flush()

                logger.info(f"Created {task_type} template {template.id} for {template.assignee_id}")
                return template

            except IntegrityError as e:
                logger.error(f"Constraint violation creating template: {e}")
                raise DatabaseConstraintError(f"Cannot create template '{template_data['title']}'")

            except Exception as e:
                logger.error(f"Template creation failed: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to create template: {e}")

    async def get_active_daily_templates(self, user_id: str) -> List[TaskTemplateDB]:
        """Active daily templates assigned to a user."""
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskTemplateDB)
                .where(
                    TaskTemplateDB.assignee_id == user_id,
                    TaskTemplateDB.task_type == TaskTypeEnum.DAILY.value,
                    TaskTemplateDB.is_active.is_(True),
                )
                .order_by(TaskTemplateDB.created_at)
            )
            return list(result.scalars().all())

    async def count_active_daily_templates(self, user_id: str) -> int:
        async with self.db.session() as session:
            try:
                result = await session.execute(
                    select(func.count())
                    .select_from(TaskTemplateDB)
                    .where(
                        TaskTemplateDB.assignee_id == user_id,
                        TaskTemplateDB.task_type == TaskTypeEnum.DAILY.value,
                        TaskTemplateDB.is_active.is_(True),
                    )
                )
                return result.scalar() or 0
            except Exception as e:
                logger.error(f"Error counting templates for {user_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to count templates for {user_id}: {e}")

    async def deactivate(self, template_id: str) -> TaskTemplateDB:
        """Soft-deactivate a template; existing instances keep their reference."""
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskTemplateDB).where(TaskTemplateDB.id == template_id)
            )
            template = result.scalar_one_or_none()
            if not template:
                raise EntityNotFoundError(f"Template {template_id} not found", "task_template", template_id)

            template.is_active = False
            template.updated_at = get_local_now()
            await session.flush()
            logger.info(f"Deactivated template {template_id}")
            return template

