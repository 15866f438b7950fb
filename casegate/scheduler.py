"""
Background Jobs

Scheduled directory syncs and the idle conversation thread sweep.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from casegate.conversation.threads import ConversationSessionManager
from casegate.errors import CaseGateError
from casegate.security.directory import EntitlementDirectory
from casegate.security.synchronizer import DirectorySynchronizer

logger = structlog.get_logger(__name__)


class BackgroundJobs:
    """APScheduler jobs started and stopped with the application."""

    SYNC_JOB_ID = "directory_sync"
    SWEEP_JOB_ID = "thread_sweep"

    def __init__(
        self,
        synchronizer: DirectorySynchronizer,
        threads: ConversationSessionManager,
        sync_cron: Optional[str] = None,
        sweep_minutes: Optional[int] = None,
    ):
        settings = get_settings()
        self.synchronizer = synchronizer
        self.threads = threads
        self.sync_cron = sync_cron or settings.sync_cron
        self.sweep_minutes = sweep_minutes or max(1, settings.thread_idle_minutes // 4)
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)

    def start(self, sync_now: bool = False) -> None:
        self._scheduler.add_job(
            self.run_sync,
            trigger=CronTrigger.from_crontab(self.sync_cron, timezone=timezone.utc),
            id=self.SYNC_JOB_ID,
            name="Directory sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self.run_sweep,
            trigger=IntervalTrigger(minutes=self.sweep_minutes),
            id=self.SWEEP_JOB_ID,
            name="Idle thread sweep",
            replace_existing=True,
            max_instances=1,
        )
        if sync_now:
            self._scheduler.add_job(
                self.run_sync,
                id=f"{self.SYNC_JOB_ID}_startup",
                name="Startup directory sync",
                replace_existing=True,
            )
        self._scheduler.start()
        logger.info("background_jobs_started", sync_cron=self.sync_cron, sweep_minutes=self.sweep_minutes)

    def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("background_jobs_stopped")

    @property
    def next_sync(self) -> Optional[datetime]:
        job = self._scheduler.get_job(self.SYNC_JOB_ID)
        return getattr(job, "next_run_time", None) if job else None

    async def run_sync(self) -> None:
        try:
            await self.synchronizer.sync()
        except CaseGateError as e:
            # Previous directory generation stays in place until the next run
            logger.error("scheduled_sync_failed", error=str(e))

    async def run_sweep(self) -> None:
        await self.threads.expire_idle()


def directory_is_stale(
    directory: EntitlementDirectory,
    stale_after: timedelta,
    now: Optional[datetime] = None,
) -> bool:
    """A directory never synced, or synced longer ago than the threshold, is stale."""
    if directory.last_sync is None:
        return True
    now = now or datetime.now(timezone.utc)
    return now - directory.last_sync > stale_after
