"""
Task settings repository.

Auto-approval policy is resolved in two explicit steps: the user-scoped
row if one exists, otherwise the global row, otherwise configured defaults.
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy import select

from config import get_settings
from ..connection import get_database
from ..models import TaskSettingsDB, SettingTypeEnum
from ..exceptions import DatabaseOperationError, ValidationError
from ...models.task import AutoApprovalSettings
from ...utils.datetime_utils import get_local_now

logger = logging.getLogger(__name__)

SETTING_FIELDS = (
    "auto_approve_daily",
    "auto_approve_cutoff_hours",
    "notifications_enabled",
    "due_reminder_hours",
)


class TaskSettingsRepository:
    """Repository for global and per-user task settings."""

    def __init__(self):
        self.db = get_database()

    async def _get_scope(self, setting_type: str, target_id: Optional[str]) -> Optional[TaskSettingsDB]:
        query = select(TaskSettingsDB).where(TaskSettingsDB.setting_type == setting_type)
        if target_id is None:
            query = query.where(TaskSettingsDB.target_id.is_(None))
        else:
            query = query.where(TaskSettingsDB.target_id == target_id)

        async with self.db.session() as session:
            result = await session.execute(query.limit(1))
            return result.scalar_one_or_none()

    async def get_user_settings(self, user_id: str) -> Optional[TaskSettingsDB]:
        return await self._get_scope(SettingTypeEnum.USER.value, user_id)

    async def get_global_settings(self) -> Optional[TaskSettingsDB]:
        return await self._get_scope(SettingTypeEnum.GLOBAL.value, None)

    async def get_effective_settings(self, user_id: Optional[str]) -> AutoApprovalSettings:
        """Auto-approval settings for a user: user scope, then global, then defaults."""
        try:
            if user_id:
                row = await self.get_user_settings(user_id)
                if row is not None:
                    return AutoApprovalSettings(
                        auto_approve_daily=row.auto_approve_daily,
                        auto_approve_cutoff_hours=row.auto_approve_cutoff_hours,
                        scope=f"user:{user_id}",
                    )

            row = await self.get_global_settings()
            if row is not None:
                return AutoApprovalSettings(
                    auto_approve_daily=row.auto_approve_daily,
                    auto_approve_cutoff_hours=row.auto_approve_cutoff_hours,
                    scope="global",
                )
        except Exception as e:
            logger.error(f"Failed to read task settings for {user_id}: {e}", exc_info=True)
            raise DatabaseOperationError(f"Failed to read task settings: {e}")

        config = get_settings()
        return AutoApprovalSettings(
            auto_approve_daily=config.default_auto_approve_daily,
            auto_approve_cutoff_hours=config.default_auto_approve_cutoff_hours,
            scope="default",
        )

    async def upsert(
        self,
        setting_type: str,
        values: Dict[str, Any],
        target_id: Optional[str] = None,
    ) -> TaskSettingsDB:
        """Create or update the settings row for a scope."""
        if setting_type not in {s.value for s in SettingTypeEnum}:
            raise ValidationError(f"Invalid setting_type: {setting_type}")
        if setting_type == SettingTypeEnum.USER.value and not target_id:
            raise ValidationError("User-scoped settings need a target user id")
        if setting_type == SettingTypeEnum.GLOBAL.value:
            target_id = None

        unknown = set(values) - set(SETTING_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown setting fields: {sorted(unknown)}")

        async with self.db.session() as session:
            query = select(TaskSettingsDB).where(TaskSettingsDB.setting_type == setting_type)
            if target_id is None:
                query = query.where(TaskSettingsDB.target_id.is_(None))
            else:
                query = query.where(TaskSettingsDB.target_id == target_id)
            result = await session.execute(query)
            row = result.scalar_one_or_none()

            if row is None:
                row = TaskSettingsDB(setting_type=setting_type, target_id=target_id, **values)
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = get_local_now()

            await session.flush()
            logger.info(f"Saved {setting_type} task settings for {target_id or 'all users'}: {values}")
            return row

