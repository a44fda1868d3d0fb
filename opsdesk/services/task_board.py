"""
Task query/filter layer.

TaskBoard materializes a filtered, sorted page of tasks with their latest
submission and review, exposes CRUD and bulk mutations, and follows the
change feed for tasks, submissions and reviews. Bursts of changes share
one pending refetch.

All local state goes through TaskStateReducer. Both paths that touch it,
a caller's own mutation and a remote change, are tagged events; a row is
only replaced by a version whose updated_at is not older than the one held.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from config import settings
from ..database.repositories.tasks import TaskRepository, serialize_task, STATUS_ALIASES
from ..exceptions import BulkActionValidationError, InvalidBulkActionError, TaskCreationError
from ..models.task import BulkTaskAction, TaskFilters, TaskSort, TaskStatus, TaskType
from ..realtime.change_feed import ChangeEvent, ChangeFeed, ChangeType, Subscription
from ..utils.background_tasks import create_safe_task
from ..utils.datetime_utils import get_local_now, parse_date
from ..utils.notifications import Notifier

logger = logging.getLogger(__name__)

LOCAL_MUTATION = "local-mutation"
REMOTE_CHANGE = "remote-change"

WATCHED_TABLES = ("tasks", "task_submissions", "task_reviews")


# ==================== FILTERING ====================

def _criterion(value: Optional[str]) -> Optional[str]:
    if value is None or value == "" or value == "all":
        return None
    return value


def _as_date(value: Any) -> Optional[date]:
    try:
        return parse_date(value)
    except ValueError:
        return None


def matches_filters(task: Mapping[str, Any], filters: Optional[TaskFilters]) -> bool:
    """In-memory equivalent of the list query's WHERE clause."""
    if filters is None:
        return True

    search = _criterion(filters.search)
    if search:
        needle = search.strip().lower()
        haystack = f"{task.get('title') or ''}\n{task.get('description') or ''}".lower()
        if needle not in haystack:
            return False

    status = STATUS_ALIASES.get(task.get("status"), task.get("status"))
    exact = (
        (filters.type, task.get("task_type")),
        (filters.status, status),
        (filters.priority, task.get("priority")),
        (filters.assignee, task.get("assigned_to")),
        (filters.reviewer, task.get("reviewer_id")),
    )
    for wanted, actual in exact:
        if _criterion(wanted) is not None and actual != wanted:
            return False

    if filters.date_range is not None:
        due = _as_date(task.get("due_date"))
        if due is None or not (filters.date_range.start <= due <= filters.date_range.end):
            return False

    if filters.is_late and not task.get("is_late"):
        return False

    if filters.needs_review and status != TaskStatus.SUBMITTED_FOR_REVIEW.value:
        return False

    if filters.tags:
        if not set(filters.tags) & set(task.get("tags") or []):
            return False

    return True


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def _latest(items: List[Dict[str, Any]], key: str) -> Optional[Dict[str, Any]]:
    dated = [item for item in items or [] if _timestamp(item.get(key)) is not None]
    if not dated:
        return None
    return max(dated, key=lambda item: _timestamp(item.get(key)))


def with_latest(task: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of a task row with latest_submission and latest_review derived."""
    data = dict(task)
    data["latest_submission"] = _latest(data.get("submissions") or [], "submitted_at")
    data["latest_review"] = _latest(data.get("reviews") or [], "reviewed_at")
    return data


# ==================== STATE ====================

@dataclass
class TaskEvent:
    """A tagged change to apply to local task state."""
    type: str  # local-mutation, remote-change
    row: Dict[str, Any] = field(default_factory=dict)
    deleted: bool = False


class TaskStateReducer:
    """Holds task rows by id, in list order."""

    def __init__(self):
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._order: List[str] = []

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return [self._rows[row_id] for row_id in self._order]

    def get(self, row_id: str) -> Optional[Dict[str, Any]]:
        return self._rows.get(row_id)

    def reset(self, rows: List[Dict[str, Any]]) -> None:
        """Replace all state with a fresh result set."""
        self._rows = {row["id"]: dict(row) for row in rows}
        self._order = [row["id"] for row in rows]

    def dispatch(self, event: TaskEvent) -> bool:
        """
        Apply an event. Returns False when the event was ignored.

        An incoming row older than the held row (by updated_at) is dropped.
        """
        row_id = event.row.get("id")
        if not row_id:
            return False

        if event.deleted:
            if row_id not in self._rows:
                return False
            del self._rows[row_id]
            self._order.remove(row_id)
            return True

        held = self._rows.get(row_id)
        if held is not None:
            incoming_at = _timestamp(event.row.get("updated_at"))
            held_at = _timestamp(held.get("updated_at"))
            if incoming_at is not None and held_at is not None and incoming_at < held_at:
                logger.debug(f"Dropped stale {event.type} for task {row_id}")
                return False
            self._rows[row_id] = {**held, **event.row}
            return True

        self._rows[row_id] = {"submissions": [], "reviews": [], **event.row}
        self._order.append(row_id)
        return True


# ==================== BULK ACTIONS ====================

class BulkActionResult:
    """Result of a bulk action."""

    def __init__(self, action_type: str, task_ids: List[str]):
        self.action_type = action_type
        self.task_ids = list(task_ids)
        self.affected = 0
        self.error: Optional[str] = None
        self.error_code: Optional[str] = None
        self.start_time = get_local_now()
        self.end_time: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def fail(self, error: Exception) -> None:
        self.error = str(error)
        self.error_code = type(error).__name__

    def finalize(self) -> None:
        self.end_time = get_local_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.action_type,
            "requested": len(self.task_ids),
            "affected": self.affected,
            "success": self.success,
            "error": self.error,
            "error_code": self.error_code,
            "duration_seconds": (self.end_time - self.start_time).total_seconds() if self.end_time else 0,
        }


def _data_value(value: Any) -> Any:
    return getattr(value, "value", value)


def plan_bulk_update(action: BulkTaskAction) -> Dict[str, Any]:
    """
    Validate a bulk action and describe the single repository call it needs.

    Returns:
        {"op": "update", "values": {...}, "task_type": Optional[str]} or {"op": "delete"}

    Raises:
        InvalidBulkActionError: Unknown action type
        BulkActionValidationError: Required data missing for the type
    """
    data = action.data

    if action.type == "assign":
        if not data.assignee_id:
            raise BulkActionValidationError("Assignee ID is required for assignment")
        return {"op": "update", "values": {"assigned_to": data.assignee_id}, "task_type": None}

    if action.type == "approve":
        return {
            "op": "update",
            "values": {"status": TaskStatus.APPROVED.value},
            "task_type": TaskType.DAILY.value,
        }

    if action.type == "reject":
        if not data.notes or not data.notes.strip():
            raise BulkActionValidationError("Notes are required for rejection")
        return {"op": "update", "values": {"status": TaskStatus.REJECTED.value}, "task_type": None}

    if action.type == "change_status":
        if not data.status:
            raise BulkActionValidationError("Status is required")
        return {"op": "update", "values": {"status": _data_value(data.status)}, "task_type": None}

    if action.type == "change_priority":
        if not data.priority:
            raise BulkActionValidationError("Priority is required")
        return {"op": "update", "values": {"priority": _data_value(data.priority)}, "task_type": None}

    if action.type == "delete":
        return {"op": "delete"}

    raise InvalidBulkActionError(action.type)


# ==================== BOARD ====================

class TaskBoard:
    """A filtered, sorted, realtime-updated view over tasks."""

    def __init__(
        self,
        task_repo: TaskRepository,
        change_feed: Optional[ChangeFeed] = None,
        notifier: Optional[Notifier] = None,
        filters: Optional[TaskFilters] = None,
        sort: Optional[TaskSort] = None,
        page_size: Optional[int] = None,
    ):
        self.task_repo = task_repo
        self.change_feed = change_feed
        self.notifier = notifier or Notifier()
        self.filters = filters or TaskFilters()
        self.sort = sort or TaskSort()
        self.page_size = page_size or settings.task_page_size
        self.state = TaskStateReducer()
        self.loading = False
        self.error: Optional[str] = None
        self._subscriptions: List[Subscription] = []
        self._listeners: List[Callable[[List[Dict[str, Any]]], None]] = []
        self._refetch_requested = False
        self._refetch_task: Optional[asyncio.Task] = None

    @property
    def tasks(self) -> List[Dict[str, Any]]:
        return [with_latest(row) for row in self.state.rows]

    def add_listener(self, listener: Callable[[List[Dict[str, Any]]], None]) -> None:
        """Called with the current task list after every state change."""
        self._listeners.append(listener)

    def _changed(self) -> None:
        if not self._listeners:
            return
        tasks = self.tasks
        for listener in self._listeners:
            try:
                listener(tasks)
            except Exception as e:
                logger.error(f"Task board listener failed: {e}")

    # ---------- fetching ----------

    async def refetch(self) -> List[Dict[str, Any]]:
        """Reload the current page from the database, replacing local state."""
        self.loading = True
        self.error = None
        try:
            rows = await self.task_repo.list_tasks(self.filters, self.sort, limit=self.page_size)
            self.state.reset([serialize_task(row) for row in rows])
            self._changed()
        except Exception as e:
            self.error = str(e) or "Failed to fetch tasks"
            logger.error(f"Error fetching tasks: {e}")
        finally:
            self.loading = False
        return self.tasks

    def schedule_refetch(self) -> None:
        """Request a background refetch. Requests made before it runs share it."""
        self._refetch_requested = True
        if self._refetch_task is None or self._refetch_task.done():
            self._refetch_task = create_safe_task(self._run_requested_refetches(), "task-board-refetch")

    async def _run_requested_refetches(self) -> None:
        # A request arriving mid-fetch gets one more pass
        while self._refetch_requested:
            self._refetch_requested = False
            await self.refetch()

    async def wait_for_refetch(self) -> None:
        """Wait until no scheduled refetch is pending."""
        task = self._refetch_task
        if task is not None and not task.done():
            await task

    async def set_filters(self, filters: Union[TaskFilters, Mapping[str, Any], None] = None, **changes) -> None:
        """Merge filter changes into the current filters and refetch."""
        if isinstance(filters, TaskFilters):
            self.filters = filters
        else:
            updates = dict(filters or {})
            updates.update(changes)
            self.filters = TaskFilters.model_validate({**self.filters.model_dump(), **updates})
        await self.refetch()

    async def set_sort(self, sort: TaskSort) -> None:
        self.sort = sort
        await self.refetch()

    # ---------- single-task mutations ----------

    async def create_task(
        self,
        task_data: Dict[str, Any],
        assigned_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Create one task per assignee in task_data["assigned_to"].

        ``assigned_to`` may be a single user id or a list. Creation stops at
        the first failure and nothing is returned; rows already written stay
        and show up on the next refetch.
        """
        assignees = task_data.get("assigned_to")
        if isinstance(assignees, str):
            assignees = [assignees]
        assignees = [user_id for user_id in (assignees or []) if user_id]
        if not assignees:
            self.notifier.error("Error", "At least one assignee is required")
            return []

        created: List[Dict[str, Any]] = []
        try:
            for user_id in assignees:
                values = {**task_data, "assigned_to": user_id}
                if assigned_by:
                    values["assigned_by"] = assigned_by
                try:
                    task = await self.task_repo.create(values)
                except Exception as e:
                    raise TaskCreationError(user_id, str(e)) from e

                row = task.to_dict()
                created.append(row)
                if matches_filters(row, self.filters):
                    self.state.dispatch(TaskEvent(LOCAL_MUTATION, row))
            self._changed()
            self.notifier.success("Success", f"{len(created)} task(s) created successfully")
            await self.refetch()
            return created
        except Exception as e:
            logger.error(f"Error creating tasks: {e}")
            self.notifier.error("Error", str(e) or "Failed to create task")
            await self.refetch()
            return []

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            task = await self.task_repo.update(task_id, updates)
            row = task.to_dict()
            self.state.dispatch(TaskEvent(LOCAL_MUTATION, row))
            self._changed()
            self.notifier.success("Success", "Task updated successfully")
            await self.refetch()
            return row
        except Exception as e:
            logger.error(f"Error updating task {task_id}: {e}")
            self.notifier.error("Error", str(e) or "Failed to update task")
            return None

    async def delete_task(self, task_id: str) -> bool:
        try:
            await self.task_repo.delete(task_id)
            self.state.dispatch(TaskEvent(LOCAL_MUTATION, {"id": task_id}, deleted=True))
            self._changed()
            self.notifier.success("Success", "Task deleted successfully")
            return True
        except Exception as e:
            logger.error(f"Error deleting task {task_id}: {e}")
            self.notifier.error("Error", str(e) or "Failed to delete task")
            return False

    # ---------- bulk ----------

    async def bulk_action(self, action: Union[BulkTaskAction, Mapping[str, Any]]) -> BulkActionResult:
        """
        Run a bulk action with one repository call, then refetch.

        Validation happens before any write; failures are reported through
        the notifier and carried on the result.
        """
        if not isinstance(action, BulkTaskAction):
            action = BulkTaskAction.model_validate(action)

        result = BulkActionResult(action.type, action.task_ids)
        try:
            plan = plan_bulk_update(action)

            if plan["op"] == "delete":
                result.affected = await self.task_repo.bulk_delete(action.task_ids)
            else:
                result.affected = await self.task_repo.bulk_update(
                    action.task_ids, plan["values"], task_type=plan["task_type"]
                )

            self.notifier.success("Success", f"Bulk {action.type} completed successfully")
            await self.refetch()

        except Exception as e:
            result.fail(e)
            logger.error(f"Bulk {action.type} failed: {e}")
            self.notifier.error("Error", str(e) or "Failed to perform bulk action")

        result.finalize()
        return result

    # ---------- realtime ----------

    def start(self) -> None:
        """Subscribe to task, submission and review changes."""
        if self.change_feed is None or self._subscriptions:
            return
        for table in WATCHED_TABLES:
            self._subscriptions.append(self.change_feed.subscribe(table, self.handle_change))
        logger.debug("Task board subscribed to changes")

    def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        self._refetch_requested = False
        if self._refetch_task is not None and not self._refetch_task.done():
            self._refetch_task.cancel()

    async def handle_change(self, event: ChangeEvent) -> None:
        """Apply a task row change locally, then schedule a refetch for the authoritative view."""
        if event.table == "tasks":
            if event.event_type == ChangeType.DELETE:
                self.state.dispatch(TaskEvent(REMOTE_CHANGE, {"id": event.row_id}, deleted=True))
            elif matches_filters(event.record, self.filters):
                self.state.dispatch(TaskEvent(REMOTE_CHANGE, dict(event.record)))
            else:
                # Row no longer belongs to this view
                self.state.dispatch(TaskEvent(REMOTE_CHANGE, {"id": event.row_id}, deleted=True))
            self._changed()

        self.schedule_refetch()
