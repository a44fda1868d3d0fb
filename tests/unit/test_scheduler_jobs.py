"""
Tests for scheduled jobs.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock, patch

from opsdesk.scheduler.jobs import SchedulerManager


@pytest.fixture
def context():
    context = Mock()
    context.attendance_repo.get_open_sessions = AsyncMock(return_value=["user-1", "user-2", "user-3"])
    context.daily_task_trigger.ensure = AsyncMock(side_effect=[3, None, 0])
    return context


class TestDailyRollover:

    @pytest.mark.asyncio
    async def test_ensures_tasks_for_open_sessions(self, context):
        manager = SchedulerManager(context)

        created = await manager._daily_rollover_job()

        assert created == 3
        assert context.daily_task_trigger.ensure.call_count == 3
        context.daily_task_trigger.ensure.assert_any_call("user-2")

    @pytest.mark.asyncio
    async def test_failure_is_contained(self, context):
        context.attendance_repo.get_open_sessions.side_effect = Exception("db down")
        manager = SchedulerManager(context)

        assert await manager._daily_rollover_job() == 0
        context.daily_task_trigger.ensure.assert_not_called()

    @pytest.mark.asyncio
    async def test_users_run_concurrently_within_limit(self, context):
        active = 0
        peak = 0

        async def ensure(user_id):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return 1

        context.attendance_repo.get_open_sessions.return_value = [f"user-{i}" for i in range(7)]
        context.daily_task_trigger.ensure.side_effect = ensure
        manager = SchedulerManager(context)

        with patch("opsdesk.scheduler.jobs.settings.daily_rollover_concurrency", 3):
            created = await manager._daily_rollover_job()

        assert created == 7
        assert peak == 3

    @pytest.mark.asyncio
    async def test_one_user_failing_keeps_the_others(self, context):
        context.daily_task_trigger.ensure.side_effect = [2, Exception("pool exhausted"), 1]
        manager = SchedulerManager(context)

        assert await manager._daily_rollover_job() == 3


class TestSchedulerLifecycle:

    @pytest.mark.asyncio
    async def test_start_registers_rollover_job(self, context):
        manager = SchedulerManager(context)
        manager.start()
        try:
            status = manager.get_job_status()
            assert "daily_rollover" in status
            assert status["daily_rollover"]["name"] == "Daily Task Rollover"
            assert manager.trigger_job("daily_rollover") is True
            assert manager.trigger_job("unknown") is False
        finally:
            manager.stop()

        assert manager.get_job_status() == {}
