"""
Tests for task comments: threading, writes and live counts.
"""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, Mock

from opsdesk.database.models import TaskCommentDB
from opsdesk.realtime.change_feed import ChangeEvent, ChangeFeed, ChangeType
from opsdesk.services.comments import CommentCounts, TaskCommentService, thread_comments


def make_comment(comment_id, parent=None, minute=0, **overrides):
    values = {
        "id": comment_id,
        "task_id": "task-1",
        "author_id": "user-1",
        "content": f"comment {comment_id}",
        "parent_comment_id": parent,
        "is_edited": False,
        "created_at": datetime(2026, 3, 10, 9, minute),
    }
    values.update(overrides)
    return TaskCommentDB(**values)


@pytest.fixture
def comment_repo():
    repo = Mock()
    repo.get_by_task = AsyncMock(return_value=[])
    repo.create = AsyncMock(side_effect=lambda task_id, author_id, content, parent=None: make_comment(
        "c-new", parent, task_id=task_id, author_id=author_id, content=content,
    ))
    repo.update_content = AsyncMock(return_value=make_comment("c1", is_edited=True))
    repo.delete = AsyncMock(return_value=1)
    repo.count_by_tasks = AsyncMock(return_value={"task-1": 2, "task-2": 0})
    return repo


@pytest.fixture
def service(comment_repo, notifier):
    return TaskCommentService(comment_repo, notifier)


class TestThreadComments:

    def test_replies_nest_under_parents(self):
        comments = [
            make_comment("c1", minute=0),
            make_comment("c2", minute=1),
            make_comment("r1", parent="c1", minute=2),
            make_comment("r2", parent="c1", minute=3),
        ]

        thread = thread_comments(comments)

        assert [c["id"] for c in thread] == ["c1", "c2"]
        assert [r["id"] for r in thread[0]["replies"]] == ["r1", "r2"]
        assert thread[1]["replies"] == []

    def test_orphan_reply_is_dropped(self):
        assert thread_comments([make_comment("r1", parent="gone")]) == []


class TestTaskCommentService:

    @pytest.mark.asyncio
    async def test_get_thread(self, service, comment_repo):
        comment_repo.get_by_task.return_value = [make_comment("c1"), make_comment("r1", parent="c1", minute=5)]

        thread = await service.get_thread("task-1")

        comment_repo.get_by_task.assert_called_once_with("task-1")
        assert thread[0]["replies"][0]["id"] == "r1"

    @pytest.mark.asyncio
    async def test_add_comment_trims_content(self, service, comment_repo, notifier):
        comment = await service.add_comment("task-1", "  Drawer was short by 20  ", "user-1")

        assert comment.content == "Drawer was short by 20"
        comment_repo.create.assert_called_once_with("task-1", "user-1", "Drawer was short by 20", None)
        assert notifier.items[-1].message == "Your comment has been added successfully"

    @pytest.mark.asyncio
    async def test_reply(self, service, comment_repo, notifier):
        await service.add_comment("task-1", "Recounted, all fine", "lead-1", parent_comment_id="c1")

        comment_repo.create.assert_called_once_with("task-1", "lead-1", "Recounted, all fine", "c1")
        assert notifier.items[-1].title == "Reply added"

    @pytest.mark.asyncio
    async def test_blank_comment_is_refused(self, service, comment_repo, notifier):
        assert await service.add_comment("task-1", "   ", "user-1") is None

        comment_repo.create.assert_not_called()
        assert notifier.items[-1].message == "Comment cannot be empty"

    @pytest.mark.asyncio
    async def test_requires_user(self, service, comment_repo):
        assert await service.add_comment("task-1", "Hello", None) is None
        comment_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_edit_someone_elses_comment(self, service, comment_repo, notifier):
        comment_repo.update_content.return_value = None

        assert await service.edit_comment("c1", "changed", "user-2") is None
        assert notifier.items[-1].message == "Comment not found or not yours to edit"

    @pytest.mark.asyncio
    async def test_edit(self, service, comment_repo):
        comment = await service.edit_comment("c1", " fixed typo ", "user-1")

        assert comment.is_edited is True
        comment_repo.update_content.assert_called_once_with("c1", "user-1", "fixed typo")

    @pytest.mark.asyncio
    async def test_delete(self, service, comment_repo, notifier):
        assert await service.delete_comment("c1", "user-1") is True

        comment_repo.delete.return_value = 0
        assert await service.delete_comment("c1", "user-1") is False
        assert notifier.items[-1].message == "Comment not found or not yours to delete"


class TestCommentCounts:

    @pytest.mark.asyncio
    async def test_refresh_and_default(self, comment_repo):
        counts = CommentCounts(comment_repo, ["task-1", "task-2"])

        await counts.refresh()

        assert counts.get("task-1") == 2
        assert counts.get("task-2") == 0
        assert counts.get("task-untracked") == 0

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_last_counts(self, comment_repo):
        counts = CommentCounts(comment_repo, ["task-1"])
        await counts.refresh()
        comment_repo.count_by_tasks.side_effect = Exception("timeout")

        await counts.refresh()

        assert counts.error == "timeout"
        assert counts.get("task-1") == 2

    @pytest.mark.asyncio
    async def test_tracked_task_change_refreshes(self, comment_repo):
        feed = ChangeFeed()
        counts = CommentCounts(comment_repo, ["task-1"], feed)
        counts.start()

        await feed.publish(ChangeEvent(
            table="task_comments", event_type=ChangeType.INSERT, record={"id": "c9", "task_id": "task-1"},
        ))
        await feed.publish(ChangeEvent(
            table="task_comments", event_type=ChangeType.DELETE, old_record={"id": "c9", "task_id": "task-1"},
        ))

        assert comment_repo.count_by_tasks.call_count == 2

    @pytest.mark.asyncio
    async def test_untracked_task_change_is_ignored(self, comment_repo):
        feed = ChangeFeed()
        counts = CommentCounts(comment_repo, ["task-1"], feed)
        counts.start()

        await feed.publish(ChangeEvent(
            table="task_comments", event_type=ChangeType.INSERT, record={"id": "c9", "task_id": "task-7"},
        ))

        comment_repo.count_by_tasks.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, comment_repo):
        feed = ChangeFeed()
        counts = CommentCounts(comment_repo, ["task-1"], feed)
        counts.start()
        assert feed.subscriber_count == 1

        counts.stop()
        assert feed.subscriber_count == 0
