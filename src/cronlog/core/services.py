"""
Archive Service for cronlog

Composition root: builds every component from Settings and exposes the
operator surface used by the CLI and by embedding applications:
- Job and slot status queries, slot history
- Synchronous triggers for a single slot
- Retry, backfill and retention runs on demand
- Starting and stopping the scheduler
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from cronlog.archive.writer import ArchiveWriter
from cronlog.core.config import Settings, load_settings
from cronlog.core.errors import ConfigurationError, PermanentFailure
from cronlog.core.hours import day_hour_ranges, normalize_hour_range, parse_date
from cronlog.core.logging import log_exception
from cronlog.db.store import SlotStore
from cronlog.fetch import DataFetcher, SQLiteTableFetcher, load_fetcher
from cronlog.jobs.backfill import BackfillResult, BackfillRunner
from cronlog.jobs.daily import DailyJobCreator
from cronlog.jobs.hourly import HourSlotProcessor
from cronlog.jobs.retention import RetentionReport, RetentionSweeper
from cronlog.jobs.retry import RetryCoordinator, RetryReport
from cronlog.jobs.scheduler import ArchiveScheduler
from cronlog.models import HourSlot, Job, SlotEvent, SlotStatus
from cronlog.storage.dispatcher import UploadDispatcher
from cronlog.storage.factory import create_backend

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """State of the scheduler service."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"


@dataclass
class ServiceStatus:
    """Status information for the scheduler service."""

    state: ServiceState
    start_time: datetime | None = None
    last_error: str | None = None
    next_runs: dict[str, str | None] = field(default_factory=dict)


def build_fetcher(settings: Settings) -> DataFetcher:
    """
    Build the data fetcher named by the settings.

    Raises:
        ConfigurationError: If no data source is configured
    """
    if settings.fetcher:
        return load_fetcher(settings.fetcher)
    if settings.source_table:
        return SQLiteTableFetcher(
            db_path=settings.source_db_path,
            table=settings.source_table,
            timestamp_column=settings.source_timestamp_column,
        )
    raise ConfigurationError(
        "No data source configured: set CRONLOG_FETCHER or CRONLOG_SOURCE_DB_PATH and CRONLOG_SOURCE_TABLE"
    )


class ArchiveService:
    """
    Owns the store, storage backend and job components for one process.

    The data fetcher is resolved lazily so status and maintenance commands
    work without a configured data source.
    """

    def __init__(self, settings: Settings, fetcher: DataFetcher | None = None):
        """
        Initialize the service.

        Args:
            settings: Validated settings
            fetcher: Data fetcher (built from settings on first use if omitted)
        """
        self.settings = settings
        self.tz = settings.tz

        self.store = SlotStore(settings.db_path)
        self.backend = create_backend(settings)
        self.writer = ArchiveWriter(settings.output_directory, settings.file_format)
        self.dispatcher = UploadDispatcher(self.backend, file_format=settings.file_format)
        self.creator = DailyJobCreator(self.store, self.tz)
        self.sweeper = RetentionSweeper(
            self.store,
            self.dispatcher,
            db_retention_days=settings.db_retention_days,
            storage_retention_days=settings.storage_retention_days,
            tz=self.tz,
        )

        self._fetcher = fetcher
        self._processor: HourSlotProcessor | None = None
        self._scheduler: ArchiveScheduler | None = None
        self._status = ServiceStatus(state=ServiceState.STOPPED)
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> "ArchiveService":
        """Build a service from settings, loading them from the environment if omitted."""
        return cls(settings or load_settings(**overrides))

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def fetcher(self) -> DataFetcher:
        if self._fetcher is None:
            self._fetcher = build_fetcher(self.settings)
        return self._fetcher

    @property
    def processor(self) -> HourSlotProcessor:
        """Get or create the slot processor (lazy initialization)."""
        with self._lock:
            if self._processor is None:
                self._processor = HourSlotProcessor(
                    store=self.store,
                    fetcher=self.fetcher,
                    writer=self.writer,
                    dispatcher=self.dispatcher,
                    tz=self.tz,
                    max_attempts=self.settings.max_attempts,
                    fetch_timeout=self.settings.fetch_timeout_seconds,
                    upload_timeout=self.settings.upload_timeout_seconds,
                    keep_failed_artifacts=self.settings.keep_failed_artifacts,
                )
            return self._processor

    def retry_coordinator(self) -> RetryCoordinator:
        return RetryCoordinator(
            self.store,
            self.processor,
            concurrency=self.settings.retry_concurrency,
            stale_after=timedelta(minutes=self.settings.stale_processing_minutes),
        )

    def backfill_runner(self) -> BackfillRunner:
        return BackfillRunner(
            self.store,
            self.processor,
            max_per_run=self.settings.max_backfill_per_run,
            concurrency=self.settings.retry_concurrency,
        )

    # ------------------------------------------------------------------
    # Status surface
    # ------------------------------------------------------------------

    def get_job(self, job_date: date | str) -> Job | None:
        """Get the Job for a date with all 24 slots."""
        return self.store.get_job(parse_date(job_date))

    def get_job_status(self, job_date: date | str, hour_range: str | int | None = None) -> list[dict[str, Any]]:
        """
        Flat status rows for a Job, or for one of its slots.

        Returns:
            One dict per slot; empty if the Job does not exist
        """
        job = self.get_job(job_date)
        if job is None:
            return []

        if hour_range is None:
            return [slot.to_dict() for slot in job.hour_slots]

        slot = job.slot(normalize_hour_range(hour_range))
        return [slot.to_dict()] if slot else []

    def get_logs(
        self,
        job_date: date | str,
        hour_range: str | int | None = None,
        limit: int | None = None,
    ) -> list[SlotEvent]:
        """Slot history for a Job or one slot, newest first."""
        return self.store.get_events(
            parse_date(job_date),
            normalize_hour_range(hour_range) if hour_range is not None else None,
            limit=limit,
        )

    def trigger(
        self,
        job_date: date | str,
        hour_range: str | int,
        raise_on_permanent: bool = False,
    ) -> HourSlot | None:
        """
        Process one slot synchronously and return it in its resulting state.

        Raises:
            PermanentFailure: If ``raise_on_permanent`` and the slot ended up
                PERMANENTLY_FAILED
        """
        result = self.processor.process_slot(job_date, hour_range)
        slot = result.slot

        if raise_on_permanent and slot is not None and slot.status == SlotStatus.PERMANENTLY_FAILED:
            raise PermanentFailure(
                slot.job_date.isoformat(),
                slot.hour_range,
                slot.attempts,
                slot.last_error,
            )
        return slot

    def requeue(self, job_date: date | str, hour_range: str | int | None = None) -> list[HourSlot]:
        """
        Operator override: reset failed slots to PENDING with fresh attempts.

        Args:
            job_date: Date of the Job
            hour_range: One slot, or every failed slot of the Job if omitted

        Returns:
            The slots that were reset
        """
        job_date = parse_date(job_date)
        ranges = [normalize_hour_range(hour_range)] if hour_range is not None else day_hour_ranges()

        reset = [slot for hr in ranges if (slot := self.store.reset_slot(job_date, hr)) is not None]
        for slot in reset:
            logger.info(f"Requeued slot {slot.job_date} {slot.hour_range}")
        return reset

    def list_failed(self, include_permanent: bool = True) -> list[HourSlot]:
        slots = self.store.list_slots(status=SlotStatus.FAILED)
        if include_permanent:
            slots += self.store.list_slots(status=SlotStatus.PERMANENTLY_FAILED)
        return sorted(slots, key=lambda s: (s.job_date, s.hour_range))

    # ------------------------------------------------------------------
    # On-demand runs
    # ------------------------------------------------------------------

    def run_retry(self, now: datetime | None = None) -> RetryReport:
        return self.retry_coordinator().run(now)

    def run_backfill(
        self,
        start: date | str | None = None,
        end: date | str | None = None,
        max_slots: int | None = None,
    ) -> BackfillResult:
        runner = self.backfill_runner()
        slots = runner.find_missing_slots(start, end)
        return runner.trigger_backfill(slots, max_slots=max_slots)

    def run_sweep(self, target: str = "all", dry_run: bool = False) -> list[RetentionReport]:
        """Run the database sweep, the storage sweep, or both."""
        if target not in ("all", "database", "storage"):
            raise ValueError(f"Unknown sweep target: {target}")

        reports = []
        if target in ("all", "database"):
            reports.append(self.sweeper.sweep_database(dry_run=dry_run))
        if target in ("all", "storage"):
            reports.append(self.sweeper.sweep_storage(dry_run=dry_run))
        return reports

    def apply_storage_lifecycle(self) -> dict[str, Any] | None:
        """Install the configured S3 lifecycle rule on the bucket."""
        apply = getattr(self.backend, "apply_lifecycle", None)
        if apply is None or self.settings.s3 is None:
            raise ConfigurationError(f"Lifecycle rules are not supported by the {self.backend.name} backend")

        s3 = self.settings.s3
        return apply(
            transition_to_ia_days=s3.transition_to_ia_days,
            transition_to_glacier_days=s3.transition_to_glacier_days,
            transition_to_deep_archive_days=s3.transition_to_deep_archive_days,
            expiration_days=s3.expiration_days,
        )

    def get_stats(self) -> dict[str, Any]:
        return self.sweeper.get_stats()

    # ------------------------------------------------------------------
    # Scheduler lifecycle
    # ------------------------------------------------------------------

    def build_scheduler(self) -> ArchiveScheduler:
        s = self.settings
        sweeps_enabled = s.retention_auto_cleanup
        return ArchiveScheduler(
            creator=self.creator,
            processor=self.processor,
            retry=self.retry_coordinator(),
            sweeper=self.sweeper,
            backfill=self.backfill_runner(),
            tz=self.tz,
            daily_schedule=s.daily_trigger_schedule,
            hourly_schedule=s.hourly_trigger_schedule,
            retry_schedule=s.retry_trigger_schedule,
            db_sweep_schedule=s.retention_sweep_schedule if sweeps_enabled else None,
            storage_sweep_schedule=s.effective_storage_sweep_schedule if sweeps_enabled else None,
            max_instances=s.trigger_max_instances,
            backfill_on_start=s.backfill_on_start,
        )

    def start(self) -> ServiceStatus:
        """
        Start the scheduler.

        The data source is resolved first so a misconfiguration fails here
        with ConfigurationError rather than on the first trigger.
        """
        if self._scheduler is not None and self._scheduler.is_running():
            logger.warning("Archive service is already running")
            return self.get_status()

        self._status = ServiceStatus(state=ServiceState.STARTING)
        try:
            logger.debug(f"Using data fetcher {type(self.fetcher).__name__}")
            self._scheduler = self.build_scheduler()
            self._scheduler.start()
        except ConfigurationError as e:
            self._status = ServiceStatus(state=ServiceState.FAILED, last_error=str(e))
            raise
        except Exception as e:
            log_exception(logger, "Failed to start archive service", e)
            self._status = ServiceStatus(state=ServiceState.FAILED, last_error=str(e))
            raise

        self._status = ServiceStatus(state=ServiceState.RUNNING, start_time=datetime.now())
        logger.info("Archive service started")
        return self.get_status()

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None
        self._status = ServiceStatus(state=ServiceState.STOPPED)
        logger.info("Archive service stopped")

    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_running()

    def get_status(self) -> ServiceStatus:
        if self._scheduler is not None and self._scheduler.is_running():
            self._status.next_runs = {
                job_id: run_time.isoformat() if run_time else None
                for job_id, run_time in self._scheduler.get_next_run_times().items()
            }
        return self._status
