"""
Attendance check-ins.

A check-in is recorded and then re-runs daily task instantiation for the
user, which covers sessions that were already open when the day rolled
over.
"""

import logging
from datetime import datetime
from typing import Optional

from ..database.models import AttendanceEventTypeEnum, AttendanceRecordDB
from ..database.repositories.attendance import AttendanceRepository
from ..exceptions import NotAuthenticatedError
from ..utils.datetime_utils import get_local_now, to_naive_local
from .daily_tasks import DailyTaskTrigger

logger = logging.getLogger(__name__)


class AttendanceService:
    """Service for attendance operations."""

    def __init__(self, repo: AttendanceRepository, trigger: DailyTaskTrigger):
        self.repo = repo
        self.trigger = trigger

    async def check_in(self, user_id: Optional[str], event_time: Optional[datetime] = None) -> AttendanceRecordDB:
        if not user_id:
            raise NotAuthenticatedError()

        event_time = to_naive_local(event_time) or get_local_now()
        record = await self.repo.record_event(user_id, AttendanceEventTypeEnum.CHECK_IN.value, event_time)
        self.trigger.on_check_in(user_id)
        return record

    async def check_out(self, user_id: Optional[str], event_time: Optional[datetime] = None) -> AttendanceRecordDB:
        if not user_id:
            raise NotAuthenticatedError()

        event_time = to_naive_local(event_time) or get_local_now()
        return await self.repo.record_event(user_id, AttendanceEventTypeEnum.CHECK_OUT.value, event_time)
