"""
Attendance repository.

Only check-in/check-out events are kept; a check-in is the trigger for
re-running daily task instantiation.
"""

import logging
from typing import List
from datetime import datetime, date

from sqlalchemy import select, func

from ..connection import get_database
from ..models import AttendanceRecordDB, AttendanceEventTypeEnum
from ..exceptions import DatabaseOperationError, ValidationError

logger = logging.getLogger(__name__)

VALID_EVENT_TYPES = {e.value for e in AttendanceEventTypeEnum}


class AttendanceRepository:
    """Repository for attendance operations."""

    def __init__(self):
        self.db = get_database()

    async def record_event(
        self,
        user_id: str,
        event_type: str,
        event_time: datetime,
    ) -> AttendanceRecordDB:
        """Record a check-in or check-out."""
        if event_type not in VALID_EVENT_TYPES:
            raise ValidationError(f"Invalid attendance event type: {event_type}")

        async with self.db.session() as session:
            try:
                record = AttendanceRecordDB(
                    user_id=user_id,
                    event_type=event_type,
                    event_time=event_time,
                    event_date=event_time.date(),
                )
                session.add(record)
                await session.flush()

                logger.info(f"Recorded attendance: {user_id} {event_type} at {event_time}")
                return record

            except Exception as e:
                logger.error(f"Error recording attendance: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to record attendance for {user_id}") from e

    async def get_open_sessions(self, since: date) -> List[str]:
        """
        Users whose latest event on or after ``since`` is a check-in.

        These are the sessions still open when the day rolls over.
        """
        async with self.db.session() as session:
            latest = (
                select(
                    AttendanceRecordDB.user_id,
                    func.max(AttendanceRecordDB.event_time).label("last_time"),
                )
                .where(AttendanceRecordDB.event_date >= since)
                .group_by(AttendanceRecordDB.user_id)
                .subquery()
            )
            result = await session.execute(
                select(AttendanceRecordDB.user_id)
                .join(
                    latest,
                    (AttendanceRecordDB.user_id == latest.c.user_id)
                    & (AttendanceRecordDB.event_time == latest.c.last_time),
                )
                .where(AttendanceRecordDB.event_type == AttendanceEventTypeEnum.CHECK_IN.value)
                .distinct()
            )
            return [row[0] for row in result.all()]

