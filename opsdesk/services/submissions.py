"""
Task submission engine.

Records evidence against a task and moves the task to its next status:

- note submissions never change status
- completions on one-off tasks always go to review
- completions on daily tasks are auto-approved when auto-approval is
  enabled and the task is at most ``cutoff`` hours past due
  (due_date + due_time, due_time defaulting to 23:59)

A file is uploaded before the submission row is written; a failed or
cancelled upload leaves no row behind.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from ..database.models import TaskSubmissionDB
from ..database.repositories.settings import TaskSettingsRepository
from ..database.repositories.submissions import SubmissionRepository
from ..database.repositories.tasks import TaskRepository
from ..exceptions import NotAuthenticatedError, UploadCancelledError, OpsDeskError
from ..models.task import (
    AutoApprovalSettings,
    SubmissionData,
    SubmissionType,
    TaskStatus,
    TaskType,
)
from ..storage.protocol import EvidenceStorage
from ..utils.datetime_utils import combine_due_datetime, get_local_now, hours_late
from ..utils.notifications import Notifier
from .evidence import upload_task_file, validate_task_file

logger = logging.getLogger(__name__)


def _value(value: Any) -> Any:
    return getattr(value, "value", value)


def decide_task_status(
    task: Mapping[str, Any],
    submission_type: str,
    approval: Optional[AutoApprovalSettings],
    now: Optional[datetime] = None,
) -> str:
    """Status a task should have after a submission of the given type."""
    current = _value(task.get("status"))

    if _value(submission_type) != SubmissionType.COMPLETION.value:
        return current

    if _value(task.get("task_type")) != TaskType.DAILY.value:
        return TaskStatus.SUBMITTED_FOR_REVIEW.value

    approval = approval or AutoApprovalSettings()
    due_at = combine_due_datetime(task.get("due_date"), task.get("due_time"))
    if due_at is None:
        # Lateness cannot be measured without a due date
        return TaskStatus.SUBMITTED_FOR_REVIEW.value

    late = hours_late(due_at, now)
    if approval.auto_approve_daily and late <= approval.auto_approve_cutoff_hours:
        return TaskStatus.DONE_AUTO_APPROVED.value
    return TaskStatus.SUBMITTED_FOR_REVIEW.value


class TaskSubmissionService:
    """Submit evidence, start tasks, add notes and delete submissions."""

    def __init__(
        self,
        submission_repo: SubmissionRepository,
        task_repo: TaskRepository,
        settings_repo: TaskSettingsRepository,
        storage: EvidenceStorage,
        notifier: Optional[Notifier] = None,
    ):
        self.submission_repo = submission_repo
        self.task_repo = task_repo
        self.settings_repo = settings_repo
        self.storage = storage
        self.notifier = notifier or Notifier()

    async def _discard_upload(self, path: str) -> None:
        try:
            await self.storage.remove([path])
        except Exception as e:
            logger.error(f"Could not remove uploaded file {path}: {e}")

    async def submit_task_evidence(
        self,
        task: Mapping[str, Any],
        submission: SubmissionData,
        user_id: Optional[str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[TaskSubmissionDB]:
        """
        Record a submission and update the task status.

        Args:
            task: Task row (id, task_type, status, due_date, due_time)
            submission: Evidence and submission type
            user_id: Submitting user
            cancel_event: Set to abort an in-flight upload

        Returns:
            The created submission, or None when the attempt failed (the
            reason is reported through the notifier)
        """
        uploaded_path: Optional[str] = None
        try:
            if not user_id:
                raise NotAuthenticatedError()

            evidence_type = _value(submission.evidence_type)
            file_fields = {}

            if submission.file is not None:
                validate_task_file(submission.file, evidence_type)
                upload = await upload_task_file(
                    self.storage, submission.file, task["id"], evidence_type, cancel_event
                )
                uploaded_path = upload.path
                if cancel_event is not None and cancel_event.is_set():
                    raise UploadCancelledError(upload.path)
                file_fields = {
                    "file_url": upload.url,
                    "file_path": upload.path,
                    "file_name": upload.name,
                    "file_size": upload.size,
                }

            try:
                created = await self.submission_repo.create({
                    "task_id": task["id"],
                    "submission_type": _value(submission.type),
                    "evidence_type": evidence_type,
                    "link_url": submission.url or None,
                    "notes": submission.notes or None,
                    "checklist_data": (
                        [item.model_dump() for item in submission.checklist]
                        if submission.checklist else None
                    ),
                    "submitted_by": user_id,
                    **file_fields,
                })
            except Exception:
                if uploaded_path:
                    await self._discard_upload(uploaded_path)
                raise

            new_status = _value(task.get("status"))
            if _value(submission.type) == SubmissionType.COMPLETION.value:
                approval = None
                if _value(task.get("task_type")) == TaskType.DAILY.value:
                    approval = await self.settings_repo.get_effective_settings(user_id)
                new_status = decide_task_status(task, submission.type, approval, get_local_now())

            if new_status != _value(task.get("status")):
                try:
                    await self.task_repo.update_status(task["id"], new_status)
                except Exception as e:
                    # The submission stands; only the status change is lost
                    logger.error(f"Error updating status of task {task['id']} to {new_status}: {e}")
                    self.notifier.warning(
                        "Status not updated",
                        "Evidence was saved but the task status could not be updated",
                        user_id,
                    )

            if new_status == TaskStatus.DONE_AUTO_APPROVED.value:
                self.notifier.success("Success", "Task completed and auto-approved!", user_id)
            else:
                self.notifier.success("Success", "Evidence submitted successfully", user_id)
            return created

        except Exception as e:
            if isinstance(e, UploadCancelledError) and uploaded_path:
                await self._discard_upload(uploaded_path)
            logger.error(f"Error submitting task evidence: {e}", exc_info=not isinstance(e, OpsDeskError))
            self.notifier.error("Error", str(e) or "Failed to submit evidence", user_id)
            return None

    async def start_task(self, task_id: str, user_id: Optional[str]) -> bool:
        """Move a task to in_progress; only its assignee can."""
        if not user_id:
            self.notifier.error("Error", "User not authenticated")
            return False

        try:
            task = await self.task_repo.start_task(task_id, user_id)
            if task is None:
                self.notifier.error("Error", "Task not found or not assigned to you", user_id)
                return False

            self.notifier.success("Success", "Task started successfully", user_id)
            return True
        except Exception as e:
            logger.error(f"Error starting task {task_id}: {e}")
            self.notifier.error("Error", str(e) or "Failed to start task", user_id)
            return False

    async def add_task_note(self, task_id: str, notes: Optional[str], user_id: Optional[str]) -> bool:
        """Add a note submission. Blank notes are ignored."""
        if not user_id or not notes or not notes.strip():
            return False

        try:
            await self.submission_repo.create({
                "task_id": task_id,
                "submission_type": SubmissionType.NOTE.value,
                "notes": notes.strip(),
                "submitted_by": user_id,
            })
            self.notifier.success("Success", "Note added successfully", user_id)
            return True
        except Exception as e:
            logger.error(f"Error adding note to task {task_id}: {e}")
            self.notifier.error("Error", str(e) or "Failed to add note", user_id)
            return False

    async def delete_task_submission(
        self,
        submission_id: str,
        file_path: Optional[str],
        user_id: Optional[str],
    ) -> bool:
        """
        Delete a submission and, best-effort, its stored file.

        File removal failures are logged only; the call fails when no
        submission row was deleted.
        """
        if not user_id:
            self.notifier.error("Error", "User not authenticated")
            return False

        try:
            if file_path:
                try:
                    await self.storage.remove([file_path])
                except Exception as e:
                    logger.error(f"Error deleting evidence file {file_path}: {e}")

            deleted = await self.submission_repo.delete(submission_id)
            if deleted == 0:
                raise OpsDeskError("Failed to delete submission - no records affected")

            self.notifier.success("Success", "Evidence deleted successfully", user_id)
            return True
        except Exception as e:
            logger.error(f"Error deleting submission {submission_id}: {e}")
            self.notifier.error("Error", str(e) or "Failed to delete evidence", user_id)
            return False
