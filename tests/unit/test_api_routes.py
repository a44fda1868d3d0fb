"""
Tests for the HTTP routes.

The application lifespan is not run; a context built from mocked
repositories is installed on app.state instead.
"""

import base64
import pytest
from datetime import date
from unittest.mock import AsyncMock, Mock, patch

from fastapi.testclient import TestClient

from opsdesk.database.models import TaskCommentDB, TaskDB, TaskReviewDB, TaskSubmissionDB, TaskTemplateDB
from opsdesk.exceptions import DailyTaskIntegrityError
from opsdesk.main import app, status_for
from opsdesk.models.task import AutoApprovalSettings, DailyTaskStatus, UploadResult
from opsdesk.realtime.change_feed import ChangeFeed
from opsdesk.services.comments import CommentCounts, TaskCommentService
from opsdesk.services.reviews import TaskReviewService
from opsdesk.services.submissions import TaskSubmissionService
from opsdesk.services.task_board import TaskBoard


HEADERS = {"X-User-Id": "user-1"}


def make_task(**overrides):
    values = {
        "id": "task-1",
        "title": "Close the register",
        "task_type": "one_off",
        "status": "in_progress",
        "assigned_to": "user-1",
        "reviewer_id": "lead-1",
        "due_date": date(2026, 3, 10),
    }
    values.update(overrides)
    return TaskDB(**values)


@pytest.fixture
def context():
    """App context assembled from mocked repositories and real services."""
    context = Mock()
    context.change_feed = ChangeFeed()

    context.task_repo = Mock()
    context.task_repo.get_by_id = AsyncMock(return_value=make_task())
    context.task_repo.list_tasks = AsyncMock(return_value=[make_task()])
    context.task_repo.update_status = AsyncMock()
    context.task_repo.start_task = AsyncMock(return_value=make_task())
    context.task_repo.bulk_update = AsyncMock(return_value=2)
    context.task_repo.bulk_delete = AsyncMock(return_value=2)
    context.task_repo.create = AsyncMock(side_effect=lambda values: make_task(id=f"task-{values['assigned_to']}", **{
        k: v for k, v in values.items() if k in ("title", "assigned_to", "task_type")
    }))
    context.task_repo.request_review = AsyncMock(return_value=make_task(status="submitted_for_review"))
    context.task_repo.find_reviewer_conflicts = AsyncMock(return_value=[])

    context.submission_repo = Mock()
    context.submission_repo.create = AsyncMock(return_value=TaskSubmissionDB(
        id="sub-1", task_id="task-1", submission_type="completion", submitted_by="user-1",
    ))
    context.submission_repo.get_by_id = AsyncMock(return_value=TaskSubmissionDB(
        id="sub-1", task_id="task-1", submission_type="completion",
        submitted_by="user-1", file_path="evidence/task-1_x.pdf",
    ))
    context.submission_repo.delete = AsyncMock(return_value=1)

    context.review_repo = Mock()
    context.review_repo.create = AsyncMock(return_value=TaskReviewDB(
        id="review-1", task_id="task-1", reviewer_id="lead-1", status="approved",
    ))
    context.review_repo.create_many = AsyncMock(return_value=[])
    context.review_repo.get_recent_by_reviewer = AsyncMock(return_value=[
        ("approved", "daily"), ("approved", "one_off"), ("rejected", "daily"), ("approved", "daily"),
    ])

    context.comment_repo = Mock()
    context.comment_repo.get_by_task = AsyncMock(return_value=[
        TaskCommentDB(id="c-1", task_id="task-1", author_id="lead-1", content="Photo is blurry"),
        TaskCommentDB(id="c-2", task_id="task-1", author_id="user-1", content="Retaken", parent_comment_id="c-1"),
    ])
    context.comment_repo.create = AsyncMock(return_value=TaskCommentDB(
        id="c-3", task_id="task-1", author_id="user-1", content="Done",
    ))
    context.comment_repo.update_content = AsyncMock(return_value=None)
    context.comment_repo.delete = AsyncMock(return_value=1)
    context.comment_repo.count_by_tasks = AsyncMock(return_value={"task-1": 2, "task-2": 0})

    context.template_repo = Mock()
    context.template_repo.create = AsyncMock(side_effect=lambda data: TaskTemplateDB(id="tpl-1", **data))

    context.settings_repo = Mock()
    context.settings_repo.get_effective_settings = AsyncMock(return_value=AutoApprovalSettings())

    context.storage = Mock()
    context.storage.bucket = "task-evidence"
    context.storage.upload = AsyncMock(side_effect=lambda path, content, content_type, name: UploadResult(
        url=f"/storage/task-evidence/{path}", path=path, name=name, size=len(content),
    ))
    context.storage.remove = AsyncMock(return_value=1)

    context.submission_service = lambda notifier=None: TaskSubmissionService(
        context.submission_repo, context.task_repo, context.settings_repo, context.storage, notifier,
    )
    context.review_service = lambda notifier=None: TaskReviewService(
        context.review_repo, context.task_repo, notifier,
    )
    context.comment_service = lambda notifier=None: TaskCommentService(context.comment_repo, notifier)
    context.comment_counts = lambda task_ids: CommentCounts(context.comment_repo, task_ids)
    context.task_board = lambda filters=None, sort=None, page_size=None, notifier=None: TaskBoard(
        context.task_repo, context.change_feed, notifier, filters, sort, page_size,
    )

    context.daily_tasks = Mock()
    context.daily_tasks.last_errors = {}
    context.daily_tasks.ensure_daily_tasks = AsyncMock(return_value=3)
    context.daily_tasks.check_daily_tasks_status = AsyncMock()

    context.attendance = Mock()
    context.attendance.check_in = AsyncMock(return_value=Mock(to_dict=Mock(return_value={"id": 1})))
    context.attendance.check_out = AsyncMock(return_value=Mock(to_dict=Mock(return_value={"id": 1})))
    return context


@pytest.fixture
def client(context):
    app.state.context = context
    yield TestClient(app, raise_server_exceptions=False)
    del app.state.context


# ==================== AUTH ====================

class TestAuthentication:

    def test_missing_user_header(self, client):
        response = client.get("/tasks")

        assert response.status_code == 401
        assert response.json()["detail"] == "User not authenticated"


# ==================== TASK LIST / BULK ====================

class TestTaskRoutes:

    def test_list_tasks_passes_filters(self, client, context):
        response = client.get(
            "/tasks",
            params={"needs_review": "true", "status": "all", "tags": ["store"], "sort_field": "priority"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["count"] == 1
        filters, sort = context.task_repo.list_tasks.call_args.args
        assert filters.needs_review is True
        assert filters.tags == ["store"]
        assert sort.field == "priority"

    def test_list_tasks_rejects_unknown_sort(self, client):
        response = client.get("/tasks", params={"sort_field": "assignee_name"}, headers=HEADERS)
        assert response.status_code == 422

    def test_create_one_task_per_assignee(self, client, context):
        response = client.post(
            "/tasks",
            json={"title": "Count stock", "assigned_to": ["user-2", "user-3"], "priority": "high"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["count"] == 2
        first = context.task_repo.create.call_args_list[0].args[0]
        assert first["assigned_to"] == "user-2"
        assert first["assigned_by"] == "user-1"
        assert first["priority"] == "high"
        assert first["task_type"] == "one_off"

    def test_create_without_assignees(self, client, context):
        response = client.post("/tasks", json={"title": "Count stock"}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"] == "At least one assignee is required"
        context.task_repo.create.assert_not_called()

    def test_request_review(self, client, context):
        response = client.post("/tasks/task-1/request-review", headers=HEADERS)

        assert response.status_code == 200
        context.task_repo.request_review.assert_called_once_with("task-1", "user-1")

    def test_request_review_not_assigned(self, client, context):
        context.task_repo.request_review.return_value = None

        response = client.post("/tasks/task-1/request-review", headers={"X-User-Id": "user-9"})

        assert response.status_code == 404
        assert response.json()["detail"] == "Task not found or not assigned to you"

    def test_bulk_approve(self, client, context):
        response = client.post("/tasks/bulk", json={"type": "approve", "task_ids": ["a", "b"]}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["affected"] == 2
        assert context.task_repo.bulk_update.call_args.kwargs["task_type"] == "daily"

    def test_bulk_reject_without_notes(self, client, context):
        response = client.post("/tasks/bulk", json={"type": "reject", "task_ids": ["a"]}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"] == "Notes are required for rejection"
        context.task_repo.bulk_update.assert_not_called()

    def test_bulk_unknown_type(self, client):
        response = client.post("/tasks/bulk", json={"type": "archive", "task_ids": ["a"]}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid bulk action type: archive"

    def test_start_task_not_assigned(self, client, context):
        context.task_repo.start_task.return_value = None

        response = client.post("/tasks/task-1/start", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"] == "Task not found or not assigned to you"


# ==================== SUBMISSIONS ====================

class TestSubmissionRoutes:

    def test_submit_file_evidence(self, client, context):
        body = {
            "type": "completion",
            "evidence_type": "file",
            "file_name": "report.pdf",
            "file_content_type": "application/pdf",
            "file_base64": base64.b64encode(b"%PDF-1.4").decode(),
        }

        response = client.post("/tasks/task-1/submissions", json=body, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["notifications"] == ["Evidence submitted successfully"]
        context.storage.upload.assert_called_once()
        context.task_repo.update_status.assert_called_once_with("task-1", "submitted_for_review")

    def test_submit_invalid_base64(self, client):
        body = {"type": "completion", "evidence_type": "file", "file_base64": "not base64!"}

        response = client.post("/tasks/task-1/submissions", json=body, headers=HEADERS)

        assert response.status_code == 400

    def test_submit_for_missing_task(self, client, context):
        context.task_repo.get_by_id.return_value = None

        response = client.post("/tasks/nope/submissions", json={"type": "completion"}, headers=HEADERS)

        assert response.status_code == 404

    def test_upload_failure_reported(self, client, context):
        from opsdesk.storage.exceptions import StorageBucketError

        context.storage.upload.side_effect = StorageBucketError("missing")
        body = {
            "type": "completion",
            "evidence_type": "photo",
            "file_name": "shelf.jpg",
            "file_content_type": "image/jpeg",
            "file_base64": base64.b64encode(b"jpeg").decode(),
        }

        response = client.post("/tasks/task-1/submissions", json=body, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"].startswith("File upload failed: Storage bucket configuration issue")
        context.submission_repo.create.assert_not_called()

    def test_empty_note(self, client):
        response = client.post("/tasks/task-1/notes", json={"notes": "  "}, headers=HEADERS)
        assert response.status_code == 400

    def test_delete_submission_looks_up_file(self, client, context):
        response = client.delete("/submissions/sub-1", headers=HEADERS)

        assert response.status_code == 200
        context.storage.remove.assert_called_once_with(["evidence/task-1_x.pdf"])

    def test_delete_submission_no_rows(self, client, context):
        context.submission_repo.delete.return_value = 0

        response = client.delete("/submissions/sub-1", params={"file_path": ""}, headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"] == "Failed to delete submission - no records affected"


# ==================== REVIEWS ====================

class TestReviewRoutes:

    def test_reviewer_approves(self, client, context):
        response = client.post(
            "/tasks/task-1/reviews", json={"status": "approved"}, headers={"X-User-Id": "lead-1"}
        )

        assert response.status_code == 200
        context.task_repo.update_status.assert_called_once_with("task-1", "approved")

    def test_non_reviewer_is_forbidden(self, client, context):
        response = client.post("/tasks/task-1/reviews", json={"status": "approved"}, headers=HEADERS)

        assert response.status_code == 403
        context.review_repo.create.assert_not_called()

    def test_bulk_review(self, client, context):
        response = client.post(
            "/reviews/bulk",
            json={"task_ids": ["task-1", "task-2", "task-1"], "status": "approved"},
            headers={"X-User-Id": "lead-1"},
        )

        assert response.status_code == 200
        assert response.json() == {"reviewed": 2, "status": "approved"}
        context.review_repo.create_many.assert_called_once_with(["task-1", "task-2"], "lead-1", "approved", None)
        context.task_repo.bulk_update.assert_called_once_with(["task-1", "task-2"], {"status": "approved"})

    def test_bulk_review_with_foreign_task(self, client, context):
        context.task_repo.find_reviewer_conflicts.return_value = ["task-2"]

        response = client.post(
            "/reviews/bulk",
            json={"task_ids": ["task-1", "task-2"], "status": "rejected", "notes": "Redo"},
            headers={"X-User-Id": "lead-1"},
        )

        assert response.status_code == 403
        context.review_repo.create_many.assert_not_called()

    def test_bulk_review_empty_selection(self, client):
        response = client.post(
            "/reviews/bulk", json={"task_ids": [], "status": "approved"}, headers={"X-User-Id": "lead-1"}
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "No tasks selected for review"

    def test_review_stats_default_to_caller(self, client, context):
        response = client.get("/reviews/stats", headers={"X-User-Id": "lead-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 4
        assert body["approval_rate"] == 75.0
        assert body["daily_tasks"] == 3
        assert context.review_repo.get_recent_by_reviewer.call_args.args[0] == "lead-1"

    def test_review_stats_failure(self, client, context):
        context.review_repo.get_recent_by_reviewer.side_effect = Exception("timeout")

        response = client.get("/reviews/stats?reviewer_id=lead-2&days=7", headers=HEADERS)

        assert response.status_code == 500


# ==================== COMMENTS ====================

class TestCommentRoutes:

    def test_thread(self, client):
        response = client.get("/tasks/task-1/comments", headers=HEADERS)

        assert response.status_code == 200
        comments = response.json()["comments"]
        assert [c["id"] for c in comments] == ["c-1"]
        assert comments[0]["replies"][0]["content"] == "Retaken"

    def test_add_reply(self, client, context):
        response = client.post(
            "/tasks/task-1/comments", json={"content": " Done ", "parent_comment_id": "c-1"}, headers=HEADERS
        )

        assert response.status_code == 200
        context.comment_repo.create.assert_called_once_with("task-1", "user-1", "Done", "c-1")

    def test_blank_comment(self, client, context):
        response = client.post("/tasks/task-1/comments", json={"content": "  "}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"] == "Comment cannot be empty"
        context.comment_repo.create.assert_not_called()

    def test_edit_someone_elses_comment(self, client):
        response = client.patch("/comments/c-1", json={"content": "Changed"}, headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"] == "Comment not found or not yours to edit"

    def test_delete_comment(self, client, context):
        response = client.delete("/comments/c-3", headers=HEADERS)

        assert response.status_code == 200
        context.comment_repo.delete.assert_called_once_with("c-3", "user-1")

    def test_counts(self, client, context):
        response = client.get("/comments/counts?task_ids=task-1&task_ids=task-2", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"counts": {"task-1": 2, "task-2": 0}}
        context.comment_repo.count_by_tasks.assert_called_once_with(["task-1", "task-2"])

    def test_counts_failure(self, client, context):
        context.comment_repo.count_by_tasks.side_effect = Exception("connection reset")

        response = client.get("/comments/counts?task_ids=task-1", headers=HEADERS)

        assert response.status_code == 500
        assert response.json()["detail"] == "connection reset"


# ==================== DAILY TASKS ====================

class TestDailyTaskRoutes:

    def test_ensure(self, client, context):
        response = client.post("/daily-tasks/ensure", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"instances_created": 3}
        context.daily_tasks.ensure_daily_tasks.assert_called_once_with("user-1")

    def test_ensure_integrity_failure(self, client, context):
        context.daily_tasks.ensure_daily_tasks.side_effect = DailyTaskIntegrityError(
            "Daily task instances were not created successfully"
        )

        response = client.post("/daily-tasks/ensure", headers=HEADERS)

        assert response.status_code == 500
        assert response.json()["error"] == "DailyTaskIntegrityError"

    def test_status(self, client, context):
        from datetime import datetime

        context.daily_tasks.check_daily_tasks_status.return_value = DailyTaskStatus(
            has_templates=True, has_instances=False, template_count=2, instance_count=0,
            last_check=datetime(2026, 3, 10, 8, 0),
        )

        response = client.get("/daily-tasks/status", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["template_count"] == 2

    def test_check_in(self, client, context):
        response = client.post("/attendance/check-in", headers=HEADERS)

        assert response.status_code == 200
        context.attendance.check_in.assert_called_once_with("user-1")

    def test_check_out(self, client, context):
        response = client.post("/attendance/check-out", headers=HEADERS)

        assert response.status_code == 200
        context.attendance.check_out.assert_called_once_with("user-1")

    def test_create_template_defaults_to_caller(self, client, context):
        response = client.post("/templates", json={"title": "Open store", "due_time": "09:00"}, headers=HEADERS)

        assert response.status_code == 200
        data = context.template_repo.create.call_args.args[0]
        assert data["assignee_id"] == "user-1"
        assert data["created_by"] == "user-1"
        assert data["evidence_required"] == "none"

    def test_deactivate_missing_template(self, client, context):
        from opsdesk.database.exceptions import EntityNotFoundError

        context.template_repo.deactivate = AsyncMock(
            side_effect=EntityNotFoundError("Template tpl-9 not found", "task_template", "tpl-9")
        )

        response = client.post("/templates/tpl-9/deactivate", headers=HEADERS)

        assert response.status_code == 404


class TestHealth:

    def test_health(self, client):
        database = Mock()
        database.health_check = AsyncMock(return_value={"status": "healthy"})

        with patch("opsdesk.api.routes.get_database", return_value=database):
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestStatusMapping:

    def test_status_for(self):
        from opsdesk.exceptions import EvidenceUploadError, NotAuthorizedError

        assert status_for(NotAuthorizedError("no")) == 403
        assert status_for(EvidenceUploadError("File upload failed: x")) == 502
        assert status_for(RuntimeError("x")) == 500
