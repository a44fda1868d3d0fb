"""
Scheduler manager for automated jobs.

Handles:
- Daily rollover: shortly after midnight, re-run daily task instantiation
  for every user whose attendance session is still open, a bounded number
  of users at a time
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
import pytz

from config import settings
from ..utils.datetime_utils import get_local_today

if TYPE_CHECKING:
    from ..context import AppContext

logger = logging.getLogger(__name__)


class SchedulerManager:
    """Manages scheduled jobs for one application context."""

    def __init__(self, context: "AppContext"):
        self.context = context
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.timezone = pytz.timezone(settings.timezone)

    def start(self) -> None:
        """Start the scheduler with all jobs."""
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)

        self.scheduler.add_job(
            self._daily_rollover_job,
            CronTrigger(
                hour=settings.daily_rollover_hour,
                minute=settings.daily_rollover_minute,
                timezone=self.timezone
            ),
            id="daily_rollover",
            name="Daily Task Rollover",
            replace_existing=True
        )
        logger.info(
            f"Daily rollover scheduled at "
            f"{settings.daily_rollover_hour:02d}:{settings.daily_rollover_minute:02d}"
        )

        self.scheduler.start()
        logger.info("Scheduler started with all jobs")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info("Scheduler stopped")

    async def _daily_rollover_job(self) -> int:
        """Ensure today's instances for users checked in since yesterday and not checked out."""
        try:
            since = get_local_today() - timedelta(days=1)
            user_ids = await self.context.attendance_repo.get_open_sessions(since)
            logger.info(f"Daily rollover: {len(user_ids)} open attendance sessions")

            semaphore = asyncio.Semaphore(settings.daily_rollover_concurrency)

            async def _ensure(user_id: str) -> int:
                async with semaphore:
                    try:
                        return await self.context.daily_task_trigger.ensure(user_id) or 0
                    except Exception as e:
                        logger.error(f"Daily rollover failed for {user_id}: {e}")
                        return 0

            results = await asyncio.gather(*[_ensure(user_id) for user_id in user_ids])
            created = sum(results)

            logger.info(f"Daily rollover created {created} task instances")
            return created

        except Exception as e:
            logger.error(f"Error in daily rollover job: {e}", exc_info=True)
            return 0

    def trigger_job(self, job_id: str) -> bool:
        """Manually trigger a job."""
        if not self.scheduler:
            return False

        job = self.scheduler.get_job(job_id)
        if job:
            job.modify(next_run_time=datetime.now(self.timezone))
            return True

        return False

    def get_job_status(self) -> dict:
        """Get status of all scheduled jobs."""
        if not self.scheduler:
            return {}

        jobs = {}
        for job in self.scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger)
            }

        return jobs
