"""
Tests for the task repository: list query construction, the assignee
scoped start transition and bulk statements.
"""

import pytest
from datetime import date
from unittest.mock import Mock, patch

from sqlalchemy.dialects import postgresql

from opsdesk.database.exceptions import DatabaseOperationError, EntityNotFoundError, ValidationError
from opsdesk.database.models import TaskDB
from opsdesk.database.repositories.tasks import TaskRepository, serialize_task
from opsdesk.models.task import DateRange, TaskFilters, TaskSort
from opsdesk.realtime.change_feed import ChangeFeed, ChangeType


@pytest.fixture
def change_feed():
    return ChangeFeed()


@pytest.fixture
def repo(mock_database, change_feed):
    db, _ = mock_database
    with patch("opsdesk.database.repositories.tasks.get_database", return_value=db):
        yield TaskRepository(change_feed)


@pytest.fixture
def events(change_feed):
    received = []

    async def on_change(event):
        received.append(event)

    change_feed.subscribe("tasks", on_change)
    return received


def compiled(statement):
    return statement.compile(dialect=postgresql.dialect())


def scalars_result(items):
    result = Mock()
    result.scalars.return_value.all.return_value = items
    result.scalar_one_or_none.return_value = items[0] if items else None
    return result


# ==================== LIST QUERY ====================

class TestBuildListQuery:

    def test_all_values_add_no_criteria(self, repo):
        query = repo.build_list_query(TaskFilters(status="all", type="all", priority="all"))
        assert "WHERE" not in str(compiled(query))

    def test_needs_review(self, repo):
        sql = compiled(repo.build_list_query(TaskFilters(needs_review=True)))
        assert "tasks.status =" in str(sql)
        assert "submitted_for_review" in sql.params.values()

    def test_status_includes_legacy_aliases(self, repo):
        query = repo.build_list_query(TaskFilters(status="not_started"))
        sql = str(query.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))
        assert "tasks.status IN ('not_started', 'pending')" in sql

    def test_status_without_aliases(self, repo):
        query = repo.build_list_query(TaskFilters(status="approved"))
        sql = str(query.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))
        assert "tasks.status IN ('approved')" in sql

    def test_filters_are_conjunctive(self, repo):
        filters = TaskFilters(
            type="daily",
            assignee="user-1",
            date_range=DateRange(start=date(2026, 3, 1), end=date(2026, 3, 31)),
        )
        sql = compiled(repo.build_list_query(filters))
        where = str(sql).split("WHERE", 1)[1]

        assert "tasks.task_type =" in where
        assert "tasks.assigned_to =" in where
        assert "tasks.due_date >=" in where
        assert " AND " in where
        assert {"daily", "user-1", date(2026, 3, 1), date(2026, 3, 31)} <= set(sql.params.values())

    def test_search_matches_title_or_description(self, repo):
        sql = compiled(repo.build_list_query(TaskFilters(search=" register ")))
        assert "ILIKE" in str(sql).upper()
        assert "%register%" in sql.params.values()

    def test_tags_use_containment(self, repo):
        sql = str(compiled(repo.build_list_query(TaskFilters(tags=["store", "night"]))))
        assert sql.count("@>") == 2

    def test_is_late_false_is_ignored(self, repo):
        sql = str(compiled(repo.build_list_query(TaskFilters(is_late=False))))
        assert "is_late" not in sql.split("FROM", 1)[1]

    def test_sort_order(self, repo):
        sql = str(compiled(repo.build_list_query(sort=TaskSort(field="priority", direction="desc"))))
        assert "ORDER BY tasks.priority DESC NULLS LAST, tasks.created_at DESC" in sql

    def test_unknown_sort_field(self, repo):
        with pytest.raises(ValidationError):
            repo.build_list_query(sort=TaskSort.model_construct(field="assignee_name", direction="asc"))

    @pytest.mark.asyncio
    async def test_list_tasks_failure(self, repo, mock_database):
        _, session = mock_database
        session.execute.side_effect = Exception("relation does not exist")

        with pytest.raises(DatabaseOperationError):
            await repo.list_tasks(TaskFilters())


# ==================== CRUD ====================

class TestTaskCrud:

    @pytest.mark.asyncio
    async def test_create_publishes_insert(self, repo, mock_database, events):
        _, session = mock_database

        task = await repo.create({"title": "Repaint labels", "assigned_to": "user-1"})

        session.add.assert_called_once()
        assert task.task_type == "one_off"
        assert task.status == "not_started"
        assert events[0].event_type == ChangeType.INSERT

    @pytest.mark.asyncio
    async def test_update_missing_task(self, repo, mock_database):
        _, session = mock_database
        session.execute.return_value = scalars_result([])

        with pytest.raises(EntityNotFoundError):
            await repo.update("missing", {"status": "approved"})

    @pytest.mark.asyncio
    async def test_update_status_publishes_old_and_new(self, repo, mock_database, events):
        _, session = mock_database
        task = TaskDB(id="task-1", title="Close", status="in_progress")
        session.execute.return_value = scalars_result([task])

        await repo.update_status("task-1", "submitted_for_review")

        assert task.status == "submitted_for_review"
        assert events[0].record["status"] == "submitted_for_review"
        assert events[0].old_record["status"] == "in_progress"


# ==================== START ====================

class TestStartTask:

    @pytest.mark.asyncio
    async def test_update_is_scoped_to_assignee(self, repo, mock_database, events):
        _, session = mock_database
        started = TaskDB(id="task-1", title="Close", status="in_progress", assigned_to="user-1")
        session.execute.return_value = scalars_result([started])

        task = await repo.start_task("task-1", "user-1")

        assert task is started
        sql = compiled(session.execute.call_args.args[0])
        assert "tasks.assigned_to =" in str(sql)
        assert "user-1" in sql.params.values()
        assert "in_progress" in sql.params.values()
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_no_match_returns_none(self, repo, mock_database, events):
        _, session = mock_database
        session.execute.return_value = scalars_result([])

        assert await repo.start_task("task-1", "someone-else") is None
        assert events == []


class TestRequestReview:

    @pytest.mark.asyncio
    async def test_moves_to_review_for_assignee(self, repo, mock_database, events):
        _, session = mock_database
        task = TaskDB(id="task-1", title="Close", status="submitted_for_review", assigned_to="user-1")
        session.execute.return_value = scalars_result([task])

        assert await repo.request_review("task-1", "user-1") is task
        sql = compiled(session.execute.call_args.args[0])
        assert "tasks.assigned_to =" in str(sql)
        assert "submitted_for_review" in sql.params.values()
        assert events[0].record["status"] == "submitted_for_review"

    @pytest.mark.asyncio
    async def test_other_user_is_refused(self, repo, mock_database, events):
        _, session = mock_database
        session.execute.return_value = scalars_result([])

        assert await repo.request_review("task-1", "user-2") is None
        assert events == []


# ==================== BULK ====================

class TestBulk:

    @pytest.mark.asyncio
    async def test_bulk_update_with_type_scope(self, repo, mock_database, events):
        _, session = mock_database
        session.execute.return_value = scalars_result([TaskDB(id="a", title="A", status="approved")])

        affected = await repo.bulk_update(["a", "b"], {"status": "approved"}, task_type="daily")

        assert affected == 1
        sql = compiled(session.execute.call_args.args[0])
        assert "tasks.task_type =" in str(sql)
        assert "daily" in sql.params.values()
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_bulk_update_empty_ids(self, repo, mock_database):
        _, session = mock_database

        assert await repo.bulk_update([], {"status": "approved"}) == 0
        session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_bulk_delete(self, repo, mock_database, events):
        _, session = mock_database
        result = Mock()
        result.all.return_value = [("a",), ("b",)]
        session.execute.return_value = result

        assert await repo.bulk_delete(["a", "b", "c"]) == 2
        assert [e.row_id for e in events] == ["a", "b"]
        assert all(e.event_type == ChangeType.DELETE for e in events)


class TestSerializeTask:

    def test_legacy_status_and_relations(self):
        task = TaskDB(id="task-1", title="Old", status="pending")

        data = serialize_task(task)

        assert data["status"] == "not_started"
        assert data["submissions"] == []
        assert data["reviews"] == []
        assert data["template_title"] is None
