"""Periodic sync scheduling."""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.job import Job

from ..api_clients.errors import SyncConflict
from ..core.sync_engine import SyncEngine
from ..utils.logging import get_logger


class AutoSyncScheduler:
    """Starts a sync job for one account every ``sync_interval_minutes``.

    The job only exists while the engine configuration has ``auto_sync``
    enabled; call ``reschedule()`` after changing the configuration.
    """

    JOB_ID = "auto_sync"

    def __init__(self, engine: SyncEngine, account_id: str, scheduler: Optional[AsyncIOScheduler] = None):
        self.engine = engine
        self.account_id = account_id
        self.logger = get_logger(self.__class__.__name__)

        self.scheduler = scheduler or AsyncIOScheduler(
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300
            }
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    @property
    def job(self) -> Optional[Job]:
        return self.scheduler.get_job(self.JOB_ID)

    def start(self) -> None:
        if self.scheduler.running:
            self.logger.warning("Auto-sync scheduler is already running")
            return
        self.scheduler.start()
        self.reschedule()
        self.logger.info("Auto-sync scheduler started", account_id=self.account_id)

    def stop(self, wait: bool = False) -> None:
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=wait)
        self.logger.info("Auto-sync scheduler stopped", account_id=self.account_id)

    def reschedule(self) -> Optional[Job]:
        """Apply the current engine configuration to the scheduled job."""
        config = self.engine.get_configuration()

        if self.job is not None:
            self.scheduler.remove_job(self.JOB_ID)

        if not config.auto_sync:
            self.logger.info("Auto-sync disabled", account_id=self.account_id)
            return None

        job = self.scheduler.add_job(
            func=self.run_once,
            trigger=IntervalTrigger(minutes=config.sync_interval_minutes),
            id=self.JOB_ID,
            name=f"Auto-sync: {self.account_id}",
            replace_existing=True
        )
        self.logger.info(
            "Auto-sync scheduled",
            account_id=self.account_id,
            interval_minutes=config.sync_interval_minutes,
            next_run=job.next_run_time
        )
        return job

    async def run_once(self) -> bool:
        """Start a sync job unless one is already in progress."""
        try:
            status = await self.engine.start_sync(self.account_id)
        except SyncConflict:
            self.logger.info("Skipping auto-sync, a job is already in progress", account_id=self.account_id)
            return False

        self.logger.info("Auto-sync job started", account_id=self.account_id, job_id=status.id)
        return True
