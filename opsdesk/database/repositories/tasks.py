"""
Task repository with submission and review relationships.

Handles:
- Filtered, sorted, paginated task listing
- Task CRUD operations
- Start and request-review transitions scoped to the assignee
- Bulk updates and deletes (one statement per call)

Every successful write is published on the change feed after commit.
"""

import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import select, update, delete, or_, cast
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..connection import get_database
from ..models import TaskDB, TaskStatusEnum
from ..exceptions import (
    DatabaseConstraintError,
    DatabaseOperationError,
    EntityNotFoundError,
    ValidationError,
)
from ...models.task import TaskFilters, TaskSort
from ...realtime.change_feed import ChangeFeed, ChangeType, publish_change
from ...utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)

TABLE = "tasks"

# Legacy rows written before the status rename
STATUS_ALIASES = {"pending": TaskStatusEnum.NOT_STARTED.value}

SORT_COLUMNS = {
    "due_date": TaskDB.due_date,
    "priority": TaskDB.priority,
    "status": TaskDB.status,
    "title": TaskDB.title,
    "created_at": TaskDB.created_at,
    "updated_at": TaskDB.updated_at,
}


def _criterion(value: Optional[str]) -> Optional[str]:
    """Filter values of None, "" or "all" disable the criterion."""
    if value is None or value == "" or value == "all":
        return None
    return value


def status_values(status: str) -> List[str]:
    """A status plus every legacy value that reads as it."""
    return [status, *[legacy for legacy, current in STATUS_ALIASES.items() if current == status]]


def serialize_task(task: TaskDB) -> Dict[str, Any]:
    """Task row with its submissions and reviews as plain dicts."""
    data = task.to_dict()
    data["status"] = STATUS_ALIASES.get(data.get("status"), data.get("status"))
    data["submissions"] = [s.to_dict() for s in (task.submissions or [])]
    data["reviews"] = [r.to_dict() for r in (task.reviews or [])]
    data["template_title"] = task.template.title if task.template is not None else None
    return data


class TaskRepository:
    """Repository for task operations."""

    def __init__(self, change_feed: Optional[ChangeFeed] = None):
        self.db = get_database()
        self.change_feed = change_feed

    def _select_with_relations(self):
        return select(TaskDB).options(
            selectinload(TaskDB.submissions),
            selectinload(TaskDB.reviews),
            selectinload(TaskDB.template),
        )

    # ==================== QUERY ====================

    def build_list_query(self, filters: Optional[TaskFilters] = None, sort: Optional[TaskSort] = None):
        """Build the SELECT for a filtered, sorted task list (conjunction of criteria)."""
        filters = filters or TaskFilters()
        sort = sort or TaskSort()
        query = self._select_with_relations()

        search = _criterion(filters.search)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(TaskDB.title.ilike(pattern), TaskDB.description.ilike(pattern)))

        if _criterion(filters.type):
            query = query.where(TaskDB.task_type == filters.type)
        if _criterion(filters.status):
            query = query.where(TaskDB.status.in_(status_values(filters.status)))
        if _criterion(filters.priority):
            query = query.where(TaskDB.priority == filters.priority)
        if _criterion(filters.assignee):
            query = query.where(TaskDB.assigned_to == filters.assignee)
        if _criterion(filters.reviewer):
            query = query.where(TaskDB.reviewer_id == filters.reviewer)

        if filters.date_range is not None:
            query = query.where(
                TaskDB.due_date >= filters.date_range.start,
                TaskDB.due_date <= filters.date_range.end,
            )

        if filters.is_late:
            query = query.where(TaskDB.is_late.is_(True))

        if filters.needs_review:
            query = query.where(TaskDB.status == TaskStatusEnum.SUBMITTED_FOR_REVIEW.value)

        if filters.tags:
            # JSON array overlap: any requested tag contained in the row's tags
            tags_column = cast(TaskDB.tags, JSONB)
            query = query.where(or_(*[tags_column.contains([tag]) for tag in filters.tags]))

        column = SORT_COLUMNS.get(sort.field)
        if column is None:
            raise ValidationError(f"Unsupported sort field: {sort.field}")
        ordering = column.asc() if sort.direction == "asc" else column.desc()
        return query.order_by(ordering.nullslast(), TaskDB.created_at.desc())

    async def list_tasks(
        self,
        filters: Optional[TaskFilters] = None,
        sort: Optional[TaskSort] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[TaskDB]:
        """Get tasks matching every supplied filter."""
        query = self.build_list_query(filters, sort).limit(limit).offset(offset)
        async with self.db.session() as session:
            try:
                result = await session.execute(query)
                return list(result.scalars().all())
            except Exception as e:
                logger.error(f"Task list query failed: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to list tasks: {e}")

    async def get_by_id(self, task_id: str) -> Optional[TaskDB]:
        async with self.db.session() as session:
            result = await session.execute(
                self._select_with_relations().where(TaskDB.id == task_id)
            )
            return result.scalar_one_or_none()

    async def find_reviewer_conflicts(self, task_ids: List[str], reviewer_id: str) -> List[str]:
        """Ids among task_ids whose assigned reviewer is someone other than reviewer_id."""
        if not task_ids:
            return []
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskDB.id).where(
                    TaskDB.id.in_(task_ids),
                    TaskDB.reviewer_id.is_not(None),
                    TaskDB.reviewer_id != reviewer_id,
                )
            )
            return [row[0] for row in result.all()]

    # ==================== TASK CRUD ====================

    async def create(self, task_data: Dict[str, Any]) -> TaskDB:
        """Create a new task (one-off unless task_type says otherwise)."""
        async with self.db.session() as session:
            try:
                task = TaskDB(
                    title=task_data.get("title"),
                    description=task_data.get("description"),
                    task_type=task_data.get("task_type", "one_off"),
                    status=task_data.get("status", TaskStatusEnum.NOT_STARTED.value),
                    priority=task_data.get("priority", "medium"),
                    evidence_required=task_data.get("evidence_required", "none"),
                    assigned_to=task_data.get("assigned_to"),
                    assigned_by=task_data.get("assigned_by"),
                    reviewer_id=task_data.get("reviewer_id"),
                    due_date=task_data.get("due_date"),
                    due_time=task_data.get("due_time"),
                    template_id=task_data.get("template_id"),
                    instance_date=task_data.get("instance_date"),
                    is_recurring_instance=task_data.get("is_recurring_instance", False),
                    tags=task_data.get("tags"),
                    created_at=get_local_now(),
                    updated_at=get_local_now(),
                )
                session.add(task)
                await session.flush()
                record = task.to_dict()
                logger.info(f"Created task {task.id} ({task.task_type}) for {task.assigned_to}")

            except IntegrityError as e:
                logger.error(f"Constraint violation creating task: {e}")
                raise DatabaseConstraintError(f"Cannot create task '{task_data.get('title')}': constraint violation")

            except Exception as e:
                logger.error(f"CRITICAL: Task creation failed: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to create task: {e}")

        await publish_change(self.change_feed, TABLE, ChangeType.INSERT, record)
        return task

    async def update(self, task_id: str, updates: Dict[str, Any]) -> TaskDB:
        """Update a task."""
        async with self.db.session() as session:
            try:
                result = await session.execute(select(TaskDB).where(TaskDB.id == task_id))
                task = result.scalar_one_or_none()
                if not task:
                    raise EntityNotFoundError(f"Task {task_id} not found for update", "task", task_id)

                old_record = task.to_dict()
                for key, value in updates.items():
                    setattr(task, key, value)
                task.updated_at = get_local_now()
                await session.flush()
                record = task.to_dict()

            except EntityNotFoundError:
                raise

            except IntegrityError as e:
                logger.error(f"Constraint violation updating task {task_id}: {e}")
                raise DatabaseConstraintError(f"Cannot update task {task_id}: constraint violation")

            except Exception as e:
                logger.error(f"CRITICAL: Task update failed for {task_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to update task {task_id}: {e}")

        await publish_change(self.change_feed, TABLE, ChangeType.UPDATE, record, old_record)
        return task

    async def update_status(self, task_id: str, status: str) -> TaskDB:
        """Set a task's status (and updated_at)."""
        task = await self.update(task_id, {"status": status})
        logger.info(f"Task {task_id} status -> {status}")
        return task

    async def delete(self, task_id: str) -> bool:
        async with self.db.session() as session:
            try:
                result = await session.execute(select(TaskDB).where(TaskDB.id == task_id))
                task = result.scalar_one_or_none()
                if not task:
                    raise EntityNotFoundError(f"Task {task_id} not found for deletion", "task", task_id)

                old_record = task.to_dict()
                await session.delete(task)

            except EntityNotFoundError:
                raise

            except Exception as e:
                logger.error(f"CRITICAL: Task deletion failed for {task_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to delete task {task_id}: {e}")

        await publish_change(self.change_feed, TABLE, ChangeType.DELETE, old_record=old_record)
        return True

    # ==================== TRANSITIONS ====================

    async def _assignee_update(self, task_id: str, user_id: str, values: Dict[str, Any], action: str) -> Optional[TaskDB]:
        """UPDATE one task only where user_id is the assignee. None when nothing matched."""
        async with self.db.session() as session:
            try:
                result = await session.execute(
                    update(TaskDB)
                    .where(TaskDB.id == task_id, TaskDB.assigned_to == user_id)
                    .values(**values)
                    .returning(TaskDB)
                    .execution_options(synchronize_session=False)
                )
                task = result.scalar_one_or_none()
                record = task.to_dict() if task else None

            except Exception as e:
                logger.error(f"Failed to {action} task {task_id}: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to {action} task {task_id}: {e}")

        if task is None:
            logger.warning(f"{action.capitalize()} refused: task {task_id} not assigned to {user_id}")
            return None

        await publish_change(self.change_feed, TABLE, ChangeType.UPDATE, record)
        return task

    async def start_task(self, task_id: str, user_id: str) -> Optional[TaskDB]:
        """
        Move a task to in_progress and stamp started_at.

        The update only matches rows where the user is the assignee; returns
        None when nothing matched.
        """
        now = get_local_now()
        return await self._assignee_update(
            task_id,
            user_id,
            {"status": TaskStatusEnum.IN_PROGRESS.value, "started_at": now, "updated_at": now},
            "start",
        )

    async def request_review(self, task_id: str, user_id: str) -> Optional[TaskDB]:
        """Assignee hands a task to its reviewer (submitted_for_review)."""
        return await self._assignee_update(
            task_id,
            user_id,
            {"status": TaskStatusEnum.SUBMITTED_FOR_REVIEW.value, "updated_at": get_local_now()},
            "request review for",
        )

    # ==================== BULK ====================

    async def bulk_update(
        self,
        task_ids: List[str],
        values: Dict[str, Any],
        task_type: Optional[str] = None,
    ) -> int:
        """
        Apply the same values to many tasks in one UPDATE.

        Args:
            task_ids: Target task ids
            values: Column values to set
            task_type: When given, only rows of this type are touched

        Returns:
            Number of rows updated
        """
        if not task_ids:
            return 0

        values = dict(values)
        values["updated_at"] = get_local_now()

        statement = update(TaskDB).where(TaskDB.id.in_(task_ids))
        if task_type is not None:
            statement = statement.where(TaskDB.task_type == task_type)

        async with self.db.session() as session:
            try:
                result = await session.execute(
                    statement.values(**values)
                    .returning(TaskDB)
                    .execution_options(synchronize_session=False)
                )
                records = [task.to_dict() for task in result.scalars().all()]

            except IntegrityError as e:
                logger.error(f"Constraint violation in bulk update: {e}")
                raise DatabaseConstraintError("Bulk update violates a constraint")

            except Exception as e:
                logger.error(f"Bulk update failed for {len(task_ids)} tasks: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to bulk update tasks: {e}")

        logger.info(f"Bulk updated {len(records)}/{len(task_ids)} tasks: {sorted(values)}")
        for record in records:
            await publish_change(self.change_feed, TABLE, ChangeType.UPDATE, record)
        return len(records)

    async def bulk_delete(self, task_ids: List[str]) -> int:
        """Delete many tasks in one DELETE. Returns rows removed."""
        if not task_ids:
            return 0

        async with self.db.session() as session:
            try:
                result = await session.execute(
                    delete(TaskDB)
                    .where(TaskDB.id.in_(task_ids))
                    .returning(TaskDB.id)
                    .execution_options(synchronize_session=False)
                )
                deleted_ids = [row[0] for row in result.all()]

            except Exception as e:
                logger.error(f"Bulk delete failed for {len(task_ids)} tasks: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to bulk delete tasks: {e}")

        logger.info(f"Bulk deleted {len(deleted_ids)}/{len(task_ids)} tasks")
        for task_id in deleted_ids:
            await publish_change(self.change_feed, TABLE, ChangeType.DELETE, old_record={"id": task_id})
        return len(deleted_ids)

