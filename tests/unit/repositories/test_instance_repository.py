"""
Tests for the daily instance repository.
"""

import pytest
from datetime import date
from unittest.mock import Mock, patch

from sqlalchemy.dialects import postgresql

from opsdesk.database.exceptions import DatabaseOperationError
from opsdesk.database.models import TaskTemplateDB
from opsdesk.database.repositories.instances import TaskInstanceRepository, build_instance_row
from opsdesk.realtime.change_feed import ChangeFeed, ChangeType


TARGET = date(2026, 3, 10)


@pytest.fixture
def template():
    return TaskTemplateDB(
        id="tpl-1",
        title="Open the store",
        description="Lights, alarm, shutters",
        assignee_id="user-1",
        task_type="daily",
        priority="high",
        evidence_required="photo",
        due_time="09:30",
        tags=["store"],
        is_active=True,
        reviewer_id="lead-1",
        created_by="admin-1",
    )


@pytest.fixture
def change_feed():
    return ChangeFeed()


@pytest.fixture
def repo(mock_database, change_feed):
    db, _ = mock_database
    with patch("opsdesk.database.repositories.instances.get_database", return_value=db):
        yield TaskInstanceRepository(change_feed)


def templates_result(templates):
    result = Mock()
    result.scalars.return_value.all.return_value = templates
    return result


def inserted_result(rows):
    result = Mock()
    result.mappings.return_value.all.return_value = rows
    return result


class TestBuildInstanceRow:

    def test_copies_template_fields(self, template):
        row = build_instance_row(template, "user-1", TARGET)

        assert row["template_id"] == "tpl-1"
        assert row["task_type"] == "daily"
        assert row["status"] == "not_started"
        assert row["due_date"] == TARGET
        assert row["instance_date"] == TARGET
        assert row["due_time"] == "09:30"
        assert row["is_recurring_instance"] is True
        assert row["reviewer_id"] == "lead-1"
        assert row["assigned_to"] == "user-1"


class TestCreateDailyTaskInstances:

    @pytest.mark.asyncio
    async def test_insert_skips_existing_rows_on_conflict(self, repo, mock_database, template):
        _, session = mock_database
        session.execute.side_effect = [
            templates_result([template]),
            inserted_result([{"id": "task-1", "template_id": "tpl-1"}]),
        ]

        result = await repo.create_daily_task_instances_for_user("user-1", TARGET)

        assert result == {"instances_created": 1, "templates_found": 1}
        insert_stmt = session.execute.call_args_list[1].args[0]
        sql = str(insert_stmt.compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT ON CONSTRAINT uq_tasks_daily_instance DO NOTHING" in sql
        assert "RETURNING" in sql

    @pytest.mark.asyncio
    async def test_repeat_call_creates_nothing(self, repo, mock_database, template):
        _, session = mock_database
        # Second run: the constraint swallows every row
        session.execute.side_effect = [
            templates_result([template]),
            inserted_result([]),
        ]

        result = await repo.create_daily_task_instances_for_user("user-1", TARGET)

        assert result == {"instances_created": 0, "templates_found": 1}

    @pytest.mark.asyncio
    async def test_no_templates(self, repo, mock_database):
        _, session = mock_database
        session.execute.return_value = templates_result([])

        result = await repo.create_daily_task_instances_for_user("user-1", TARGET)

        assert result == {"instances_created": 0, "templates_found": 0}
        assert session.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_publishes_insert_per_created_row(self, repo, mock_database, change_feed, template):
        _, session = mock_database
        session.execute.side_effect = [
            templates_result([template]),
            inserted_result([{"id": "task-1"}]),
        ]
        received = []

        async def on_change(event):
            received.append(event)

        change_feed.subscribe("tasks", on_change)

        await repo.create_daily_task_instances_for_user("user-1", TARGET)

        assert len(received) == 1
        assert received[0].event_type == ChangeType.INSERT
        assert received[0].row_id == "task-1"

    @pytest.mark.asyncio
    async def test_database_failure(self, repo, mock_database):
        _, session = mock_database
        session.execute.side_effect = Exception("connection lost")

        with pytest.raises(DatabaseOperationError):
            await repo.create_daily_task_instances_for_user("user-1", TARGET)


class TestCountDailyInstances:

    @pytest.mark.asyncio
    async def test_count(self, repo, mock_database):
        _, session = mock_database
        result = Mock()
        result.scalar.return_value = 4
        session.execute.return_value = result

        assert await repo.count_daily_instances("user-1", TARGET) == 4
