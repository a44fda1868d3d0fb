"""
Daily task instantiation.

DailyTaskManager guarantees that every active daily template of a user has
exactly one instance dated today. Uniqueness comes from the database
procedure, not from the pre-check here, so the manager can be invoked
redundantly from any number of call sites.

DailyTaskTrigger is the background entry point used at profile load and at
attendance check-in: it delays, retries once, and never raises.
"""

import asyncio
import inspect
import logging
from datetime import date
from typing import Any, Callable, Dict, Optional

from config import settings
from ..database.repositories.instances import TaskInstanceRepository
from ..database.repositories.templates import TaskTemplateRepository
from ..exceptions import DailyTaskIntegrityError, NotAuthenticatedError
from ..models.task import DailyTaskStatus
from ..utils.background_tasks import create_safe_task
from ..utils.datetime_utils import get_local_now, get_local_today
from ..utils.retry import retry_with_backoff, RetryExhausted

logger = logging.getLogger(__name__)

NO_TEMPLATES_MESSAGE = "No daily task templates configured for this user"

TasksCreatedCallback = Callable[[int], Any]


class DailyTaskManager:
    """Ensures today's daily task instances exist for a user."""

    def __init__(
        self,
        template_repo: TaskTemplateRepository,
        instance_repo: TaskInstanceRepository,
    ):
        self.template_repo = template_repo
        self.instance_repo = instance_repo
        # Last non-fatal condition or failure per user, for diagnostics
        self.last_errors: Dict[str, str] = {}

    async def check_daily_tasks_status(
        self, user_id: Optional[str], target_date: Optional[date] = None
    ) -> DailyTaskStatus:
        """Counts of active daily templates and of instances for the date."""
        if not user_id:
            raise NotAuthenticatedError("No user profile available")

        target_date = target_date or get_local_today()
        template_count = await self.template_repo.count_active_daily_templates(user_id)
        instance_count = await self.instance_repo.count_daily_instances(user_id, target_date)

        return DailyTaskStatus(
            has_templates=template_count > 0,
            has_instances=instance_count > 0,
            template_count=template_count,
            instance_count=instance_count,
            last_check=get_local_now(),
        )

    async def ensure_daily_tasks(
        self,
        user_id: Optional[str],
        on_tasks_created: Optional[TasksCreatedCallback] = None,
    ) -> int:
        """
        Create today's instances for a user when none exist yet.

        Args:
            user_id: Resolved user id; without one this is a no-op
            on_tasks_created: Called with the number created, only when > 0

        Returns:
            Number of instances created by this call

        Raises:
            DailyTaskIntegrityError: The procedure ran but no instance exists afterwards
        """
        if not user_id:
            return 0

        self.last_errors.pop(user_id, None)
        today = get_local_today()

        try:
            status = await self.check_daily_tasks_status(user_id, today)

            if not status.has_templates:
                self.last_errors[user_id] = NO_TEMPLATES_MESSAGE
                logger.info(f"{NO_TEMPLATES_MESSAGE}: {user_id}")
                return 0

            if status.has_instances:
                logger.debug(f"Daily tasks already present for {user_id} on {today}")
                return 0

            result = await self.instance_repo.create_daily_task_instances_for_user(user_id, today)
            created = result.get("instances_created", 0) or 0

            if created > 0:
                logger.info(f"Created {created} daily task instances for {user_id} on {today}")
                if on_tasks_created is not None:
                    outcome = on_tasks_created(created)
                    if inspect.isawaitable(outcome):
                        await outcome

            final_status = await self.check_daily_tasks_status(user_id, today)
            if not final_status.has_instances:
                raise DailyTaskIntegrityError("Daily task instances were not created successfully")

            return created

        except Exception as e:
            self.last_errors[user_id] = str(e)
            logger.error(f"Failed to ensure daily tasks for {user_id}: {e}")
            raise


class DailyTaskTrigger:
    """
    Background trigger for DailyTaskManager.ensure_daily_tasks.

    Each call runs independently as a tracked asyncio task; nothing is
    shared between invocations.
    """

    def __init__(
        self,
        manager: DailyTaskManager,
        initial_delay: Optional[float] = None,
        retry_delay: Optional[float] = None,
    ):
        self.manager = manager
        self.initial_delay = (
            settings.daily_tasks_initial_delay_seconds if initial_delay is None else initial_delay
        )
        self.retry_delay = (
            settings.daily_tasks_retry_delay_seconds if retry_delay is None else retry_delay
        )

    async def ensure(
        self,
        user_id: Optional[str],
        delay: float = 0.0,
        on_tasks_created: Optional[TasksCreatedCallback] = None,
    ) -> Optional[int]:
        """Run ensure_daily_tasks with one retry. Logs failures, returns None for them."""
        if not user_id:
            return None

        if delay > 0:
            await asyncio.sleep(delay)

        try:
            return await retry_with_backoff(
                self.manager.ensure_daily_tasks,
                user_id,
                on_tasks_created=on_tasks_created,
                max_retries=1,
                base_delay=self.retry_delay,
                jitter=False,
            )
        except RetryExhausted as e:
            logger.error(f"Daily task instantiation gave up for {user_id}: {e}", exc_info=True)
            return None
        except Exception as e:
            logger.error(f"Daily task instantiation failed for {user_id}: {e}", exc_info=True)
            return None

    def on_profile_loaded(
        self,
        user_id: Optional[str],
        on_tasks_created: Optional[TasksCreatedCallback] = None,
    ) -> Optional[asyncio.Task]:
        """Schedule instantiation shortly after a user profile becomes available."""
        if not user_id:
            return None
        return create_safe_task(
            self.ensure(user_id, delay=self.initial_delay, on_tasks_created=on_tasks_created),
            f"daily-tasks-profile-{user_id}",
        )

    def on_check_in(
        self,
        user_id: Optional[str],
        on_tasks_created: Optional[TasksCreatedCallback] = None,
    ) -> Optional[asyncio.Task]:
        """Run instantiation right away after an attendance check-in."""
        if not user_id:
            return None
        return create_safe_task(
            self.ensure(user_id, on_tasks_created=on_tasks_created),
            f"daily-tasks-check-in-{user_id}",
        )
