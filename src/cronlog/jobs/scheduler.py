"""
Archive Scheduler for cronlog

Drives every recurring trigger from one APScheduler BackgroundScheduler:
- daily job creation
- hourly slot processing
- retry of failed slots
- database retention sweep
- storage retention sweep

Triggers are independent. Each trigger body is wrapped so an exception is
logged and never reaches the scheduler thread. Overlapping runs of the same
trigger are allowed up to ``max_instances``; the slot compare-and-set makes
them harmless.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from cronlog.core.logging import log_exception
from cronlog.jobs.backfill import BackfillRunner
from cronlog.jobs.daily import DailyJobCreator
from cronlog.jobs.hourly import HourSlotProcessor
from cronlog.jobs.retention import RetentionSweeper
from cronlog.jobs.retry import RetryCoordinator

logger = logging.getLogger(__name__)

DAILY_JOB_ID = "daily_job_creation"
HOURLY_JOB_ID = "hourly_processing"
RETRY_JOB_ID = "retry_failed_slots"
DB_SWEEP_JOB_ID = "database_retention_sweep"
STORAGE_SWEEP_JOB_ID = "storage_retention_sweep"


class ArchiveScheduler:
    """
    Schedules and runs the archiver's triggers.

    Nothing runs until ``start()``; ``stop()`` waits for running triggers.
    """

    def __init__(
        self,
        creator: DailyJobCreator,
        processor: HourSlotProcessor,
        retry: RetryCoordinator,
        sweeper: RetentionSweeper,
        backfill: BackfillRunner | None = None,
        tz: ZoneInfo | None = None,
        daily_schedule: str = "0 0 * * *",
        hourly_schedule: str = "0 * * * *",
        retry_schedule: str = "*/30 * * * *",
        db_sweep_schedule: str | None = "0 2 * * *",
        storage_sweep_schedule: str | None = "0 2 * * *",
        max_instances: int = 2,
        backfill_on_start: bool = True,
    ):
        """
        Initialize the scheduler.

        Args:
            creator: Daily Job Creator
            processor: Hour Slot Processor
            retry: Retry Coordinator
            sweeper: Retention Sweeper
            backfill: Backfill runner used on start (optional)
            tz: Timezone the cron expressions are evaluated in
            daily_schedule: Crontab for daily job creation
            hourly_schedule: Crontab for hourly processing
            retry_schedule: Crontab for the retry scan
            db_sweep_schedule: Crontab for the database sweep (None disables)
            storage_sweep_schedule: Crontab for the storage sweep (None disables)
            max_instances: Concurrent runs allowed per trigger
            backfill_on_start: Process missed slots when the scheduler starts
        """
        self.creator = creator
        self.processor = processor
        self.retry = retry
        self.sweeper = sweeper
        self.backfill = backfill
        self.tz = tz or ZoneInfo("UTC")
        self.max_instances = max_instances
        self.backfill_on_start = backfill_on_start

        self.schedules: dict[str, str | None] = {
            DAILY_JOB_ID: daily_schedule,
            HOURLY_JOB_ID: hourly_schedule,
            RETRY_JOB_ID: retry_schedule,
            DB_SWEEP_JOB_ID: db_sweep_schedule if sweeper.db_retention_days is not None else None,
            STORAGE_SWEEP_JOB_ID: storage_sweep_schedule if sweeper.storage_retention_days is not None else None,
        }

        self.scheduler = BackgroundScheduler(timezone=self.tz)
        self._running = False

    def _triggers(self) -> dict[str, Callable[[], Any]]:
        return {
            DAILY_JOB_ID: self.creator.create_today,
            HOURLY_JOB_ID: self.processor.run_hourly,
            RETRY_JOB_ID: self.retry.run,
            DB_SWEEP_JOB_ID: self.sweeper.sweep_database,
            STORAGE_SWEEP_JOB_ID: self.sweeper.sweep_storage,
        }

    def _safe(self, job_id: str, func: Callable[[], Any]) -> Callable[[], None]:
        """Wrap a trigger body so its exceptions are logged, not raised."""

        def run() -> None:
            try:
                func()
            except Exception as e:
                log_exception(logger, f"Trigger {job_id} failed", e)

        return run

    def start(self) -> None:
        """Register all triggers and start the scheduler."""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        for job_id, func in self._triggers().items():
            schedule = self.schedules[job_id]
            if schedule is None:
                logger.info(f"Trigger {job_id} disabled")
                continue

            self.scheduler.add_job(
                self._safe(job_id, func),
                trigger=CronTrigger.from_crontab(schedule, timezone=self.tz),
                id=job_id,
                name=job_id.replace("_", " ").title(),
                max_instances=self.max_instances,
                coalesce=True,
                replace_existing=True,
            )
            logger.info(f"Scheduled {job_id}: {schedule}")

        self.scheduler.start()
        self._running = True
        logger.info("Archive scheduler started")

        # Today's job must exist before the first hourly trigger
        self._safe(DAILY_JOB_ID, self.creator.create_today)()

        if self.backfill_on_start and self.backfill is not None:
            self.scheduler.add_job(
                self._safe("backfill", self.backfill.trigger_backfill),
                id="startup_backfill",
                name="Startup Backfill",
                replace_existing=True,
            )

    def stop(self, wait: bool = True) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        self.scheduler.shutdown(wait=wait)
        self._running = False
        logger.info("Archive scheduler stopped")

    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    def get_next_run_times(self) -> dict[str, datetime | None]:
        """Next fire time per registered trigger."""
        if not self._running:
            return {}

        return {job.id: job.next_run_time for job in self.scheduler.get_jobs()}
