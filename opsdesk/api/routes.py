"""
HTTP routes for the task lifecycle.

The acting user comes from the X-User-Id header. Services report failures
through a per-request Notifier; routes turn the last error into an HTTP
error response.
"""

import base64
import binascii
import logging
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..context import AppContext
from ..database.connection import get_database
from ..database.repositories.tasks import serialize_task
from ..exceptions import NotAuthenticatedError
from ..models.task import (
    BulkTaskAction,
    ChecklistItem,
    DateRange,
    EvidenceFile,
    EvidenceType,
    ReviewStatus,
    SortField,
    SubmissionData,
    SubmissionType,
    TaskFilters,
    TaskPriority,
    TaskSort,
    TaskType,
)
from ..utils.notifications import Notifier, NotificationLevel

logger = logging.getLogger(__name__)

router = APIRouter()


class SubmissionRequest(BaseModel):
    """Evidence submission. File content travels base64-encoded."""
    type: SubmissionType = SubmissionType.COMPLETION
    evidence_type: Optional[EvidenceType] = None
    url: Optional[str] = None
    notes: Optional[str] = None
    checklist: Optional[List[ChecklistItem]] = None
    file_name: Optional[str] = None
    file_content_type: Optional[str] = None
    file_base64: Optional[str] = None


class NoteRequest(BaseModel):
    notes: str


class ReviewRequest(BaseModel):
    status: ReviewStatus
    notes: Optional[str] = None


class BulkReviewRequest(BaseModel):
    task_ids: List[str]
    status: ReviewStatus
    notes: Optional[str] = None


class TaskCreateRequest(BaseModel):
    """One task is created per entry in assigned_to."""
    title: str
    description: Optional[str] = None
    task_type: TaskType = TaskType.ONE_OFF
    priority: TaskPriority = TaskPriority.MEDIUM
    evidence_required: EvidenceType = EvidenceType.NONE
    assigned_to: List[str] = Field(default_factory=list)
    reviewer_id: Optional[str] = None
    due_date: Optional[date] = None
    due_time: Optional[str] = None
    tags: Optional[List[str]] = None


class TemplateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    evidence_required: EvidenceType = EvidenceType.NONE
    due_time: Optional[str] = None
    reviewer_id: Optional[str] = None
    tags: Optional[List[str]] = None


class CommentRequest(BaseModel):
    content: str
    parent_comment_id: Optional[str] = None


class CommentEditRequest(BaseModel):
    content: str


# ============================================================================
# Dependencies
# ============================================================================

def get_context(request: Request) -> AppContext:
    return request.app.state.context


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise NotAuthenticatedError()
    return x_user_id


def _last_error(notifier: Notifier, default: str) -> str:
    errors = [n for n in notifier.items if n.level == NotificationLevel.ERROR]
    return errors[-1].message if errors else default


def _review_failure(notifier: Notifier, default: str) -> HTTPException:
    detail = _last_error(notifier, default)
    status_code = 403 if detail.startswith("You are not authorized") else 400
    return HTTPException(status_code=status_code, detail=detail)


def _evidence_file(body: SubmissionRequest) -> Optional[EvidenceFile]:
    if not body.file_base64:
        return None
    try:
        content = base64.b64decode(body.file_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="file_base64 is not valid base64")
    return EvidenceFile(
        name=body.file_name or "upload",
        content_type=body.file_content_type or "application/octet-stream",
        content=content,
    )


# ============================================================================
# Health
# ============================================================================

@router.get("/health")
async def health_check(context: AppContext = Depends(get_context)):
    db_health = await get_database().health_check()
    return {
        "status": "healthy" if db_health.get("status") == "healthy" else "degraded",
        "database": db_health,
        "change_subscribers": context.change_feed.subscriber_count,
    }


# ============================================================================
# Tasks
# ============================================================================

@router.get("/tasks")
async def list_tasks(
    search: Optional[str] = None,
    type: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assignee: Optional[str] = None,
    reviewer: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    is_late: Optional[bool] = None,
    needs_review: Optional[bool] = None,
    tags: Optional[List[str]] = Query(default=None),
    sort_field: SortField = "due_date",
    sort_direction: Literal["asc", "desc"] = "asc",
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    filters = TaskFilters(
        search=search,
        type=type,
        status=status,
        priority=priority,
        assignee=assignee,
        reviewer=reviewer,
        date_range=DateRange(start=start, end=end) if start and end else None,
        is_late=is_late,
        needs_review=needs_review,
        tags=tags,
    )
    sort = TaskSort(field=sort_field, direction=sort_direction)

    board = context.task_board(filters=filters, sort=sort, page_size=limit)
    tasks = await board.refetch()
    if board.error:
        raise HTTPException(status_code=500, detail=board.error)
    return {"tasks": tasks, "count": len(tasks)}


@router.post("/tasks")
async def create_tasks(
    body: TaskCreateRequest,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    task_data = {
        "title": body.title,
        "description": body.description,
        "task_type": body.task_type.value,
        "priority": body.priority.value,
        "evidence_required": body.evidence_required.value,
        "assigned_to": body.assigned_to,
        "reviewer_id": body.reviewer_id,
        "due_date": body.due_date,
        "due_time": body.due_time,
        "tags": body.tags,
    }
    notifier = Notifier()
    created = await context.task_board(notifier=notifier).create_task(task_data, assigned_by=user_id)
    if not created:
        raise HTTPException(status_code=400, detail=_last_error(notifier, "Failed to create task"))
    return {"tasks": created, "count": len(created)}


@router.post("/tasks/bulk")
async def bulk_action(
    action: BulkTaskAction,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    board = context.task_board(notifier=Notifier())
    result = await board.bulk_action(action)
    if not result.success:
        status_code = 400 if result.error_code in ("InvalidBulkActionError", "BulkActionValidationError") else 500
        raise HTTPException(status_code=status_code, detail=result.error)
    logger.info(f"Bulk {action.type} by {user_id}: {result.affected} tasks")
    return result.to_dict()


@router.post("/tasks/{task_id}/start")
async def start_task(
    task_id: str,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    notifier = Notifier()
    if not await context.submission_service(notifier).start_task(task_id, user_id):
        raise HTTPException(status_code=404, detail=_last_error(notifier, "Failed to start task"))
    return {"task_id": task_id, "status": "in_progress"}


@router.post("/tasks/{task_id}/submissions")
async def submit_evidence(
    task_id: str,
    body: SubmissionRequest,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    task = await context.task_repo.get_by_id(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")

    submission = SubmissionData(
        type=body.type,
        evidence_type=body.evidence_type,
        file=_evidence_file(body),
        url=body.url,
        notes=body.notes,
        checklist=body.checklist,
    )

    notifier = Notifier()
    created = await context.submission_service(notifier).submit_task_evidence(
        serialize_task(task), submission, user_id
    )
    if created is None:
        raise HTTPException(status_code=400, detail=_last_error(notifier, "Failed to submit evidence"))
    return {
        "submission": created.to_dict(),
        "notifications": [n.message for n in notifier.items],
    }


@router.post("/tasks/{task_id}/notes")
async def add_note(
    task_id: str,
    body: NoteRequest,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    if not body.notes.strip():
        raise HTTPException(status_code=400, detail="Note cannot be empty")

    notifier = Notifier()
    if not await context.submission_service(notifier).add_task_note(task_id, body.notes, user_id):
        raise HTTPException(status_code=500, detail=_last_error(notifier, "Failed to add note"))
    return {"task_id": task_id, "added": True}


@router.post("/tasks/{task_id}/reviews")
async def review_task(
    task_id: str,
    body: ReviewRequest,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    task = await context.task_repo.get_by_id(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")

    notifier = Notifier()
    review = await context.review_service(notifier).submit_review(
        serialize_task(task), body.status, body.notes, user_id
    )
    if review is None:
        raise _review_failure(notifier, "Failed to submit review")
    return {"review": review.to_dict()}


@router.post("/tasks/{task_id}/request-review")
async def request_review(
    task_id: str,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    notifier = Notifier()
    if not await context.review_service(notifier).request_review(task_id, user_id):
        raise HTTPException(status_code=404, detail=_last_error(notifier, "Failed to submit for review"))
    return {"task_id": task_id, "status": "submitted_for_review"}


@router.post("/reviews/bulk")
async def bulk_review(
    body: BulkReviewRequest,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    notifier = Notifier()
    if not await context.review_service(notifier).bulk_review(body.task_ids, body.status, body.notes, user_id):
        raise _review_failure(notifier, "Failed to submit reviews")
    return {"reviewed": len(set(body.task_ids)), "status": body.status.value}


@router.get("/reviews/stats")
async def review_stats(
    reviewer_id: Optional[str] = None,
    days: Optional[int] = Query(default=None, ge=1, le=365),
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    stats = await context.review_service().get_review_stats(reviewer_id or user_id, days)
    if stats is None:
        raise HTTPException(status_code=500, detail="Failed to load review statistics")
    return stats.model_dump()


# ============================================================================
# Comments
# ============================================================================

@router.get("/tasks/{task_id}/comments")
async def list_comments(
    task_id: str,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    comments = await context.comment_service().get_thread(task_id)
    return {"comments": comments}


@router.post("/tasks/{task_id}/comments")
async def add_comment(
    task_id: str,
    body: CommentRequest,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    notifier = Notifier()
    comment = await context.comment_service(notifier).add_comment(
        task_id, body.content, user_id, body.parent_comment_id
    )
    if comment is None:
        raise HTTPException(status_code=400, detail=_last_error(notifier, "Failed to submit comment"))
    return {"comment": comment.to_dict()}


@router.patch("/comments/{comment_id}")
async def edit_comment(
    comment_id: str,
    body: CommentEditRequest,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    notifier = Notifier()
    comment = await context.comment_service(notifier).edit_comment(comment_id, body.content, user_id)
    if comment is None:
        raise HTTPException(status_code=404, detail=_last_error(notifier, "Failed to edit comment"))
    return {"comment": comment.to_dict()}


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: str,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    notifier = Notifier()
    if not await context.comment_service(notifier).delete_comment(comment_id, user_id):
        raise HTTPException(status_code=404, detail=_last_error(notifier, "Failed to delete comment"))
    return {"comment_id": comment_id, "deleted": True}


@router.get("/comments/counts")
async def comment_counts(
    task_ids: List[str] = Query(default=[]),
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    counts = context.comment_counts(task_ids)
    await counts.refresh()
    if counts.error:
        raise HTTPException(status_code=500, detail=counts.error)
    return {"counts": {task_id: counts.get(task_id) for task_id in task_ids}}


@router.delete("/submissions/{submission_id}")
async def delete_submission(
    submission_id: str,
    file_path: Optional[str] = None,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    if file_path is None:
        existing = await context.submission_repo.get_by_id(submission_id)
        file_path = existing.file_path if existing is not None else None

    notifier = Notifier()
    if not await context.submission_service(notifier).delete_task_submission(submission_id, file_path, user_id):
        raise HTTPException(status_code=404, detail=_last_error(notifier, "Failed to delete evidence"))
    return {"submission_id": submission_id, "deleted": True}


# ============================================================================
# Daily tasks and attendance
# ============================================================================

@router.post("/daily-tasks/ensure")
async def ensure_daily_tasks(
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    created = await context.daily_tasks.ensure_daily_tasks(user_id)
    response: Dict[str, Any] = {"instances_created": created}
    if context.daily_tasks.last_errors.get(user_id):
        response["warning"] = context.daily_tasks.last_errors[user_id]
    return response


@router.get("/daily-tasks/status")
async def daily_tasks_status(
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    status = await context.daily_tasks.check_daily_tasks_status(user_id)
    return status.model_dump()


# ============================================================================
# Templates
# ============================================================================

@router.post("/templates")
async def create_template(
    body: TemplateRequest,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    template = await context.template_repo.create({
        "title": body.title,
        "description": body.description,
        "assignee_id": body.assignee_id or user_id,
        "priority": body.priority.value,
        "evidence_required": body.evidence_required.value,
        "due_time": body.due_time,
        "reviewer_id": body.reviewer_id,
        "tags": body.tags,
        "created_by": user_id,
    })
    return {"template": template.to_dict()}


@router.get("/templates")
async def list_templates(
    assignee_id: Optional[str] = None,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    templates = await context.template_repo.get_active_daily_templates(assignee_id or user_id)
    return {"templates": [t.to_dict() for t in templates]}


@router.post("/templates/{template_id}/deactivate")
async def deactivate_template(
    template_id: str,
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    template = await context.template_repo.deactivate(template_id)
    return {"template": template.to_dict()}


@router.post("/attendance/check-in")
async def check_in(
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    record = await context.attendance.check_in(user_id)
    return {"record": record.to_dict(), "daily_tasks": "scheduled"}


@router.post("/attendance/check-out")
async def check_out(
    user_id: str = Depends(current_user),
    context: AppContext = Depends(get_context),
):
    record = await context.attendance.check_out(user_id)
    return {"record": record.to_dict()}
