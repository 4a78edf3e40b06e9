"""
Backfill Detection and Execution for cronlog

Finds hour slots whose window has already ended but which were never
processed (the process was down when the hourly trigger should have fired)
and runs them through the Hour Slot Processor.

Runs on scheduler start and on demand from the CLI.
"""

import concurrent.futures
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from cronlog.core.hours import hour_window, parse_date
from cronlog.core.logging import log_exception
from cronlog.db.store import SlotStore
from cronlog.jobs.daily import DailyJobCreator
from cronlog.jobs.hourly import HourSlotProcessor, ProcessResult
from cronlog.models import SlotStatus

logger = logging.getLogger(__name__)

# Maximum slots to process in a single run
MAX_BACKFILL_PER_RUN = 24

# How far back find_missing_slots looks by default
DEFAULT_LOOKBACK_DAYS = 1


@dataclass
class BackfillResult:
    """Result of a backfill operation."""

    slots_missing: int = 0
    slots_processed: int = 0
    slots_succeeded: int = 0
    slots_failed: int = 0
    slots_deferred: int = 0
    results: list[ProcessResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "slots_missing": self.slots_missing,
            "slots_processed": self.slots_processed,
            "slots_succeeded": self.slots_succeeded,
            "slots_failed": self.slots_failed,
            "slots_deferred": self.slots_deferred,
        }


class BackfillRunner:
    """Detects and fills gaps in processed hour slots."""

    def __init__(
        self,
        store: SlotStore,
        processor: HourSlotProcessor,
        max_per_run: int = MAX_BACKFILL_PER_RUN,
        concurrency: int = 1,
    ):
        self.store = store
        self.processor = processor
        self.creator = DailyJobCreator(store, processor.tz)
        self.max_per_run = max_per_run
        self.concurrency = max(1, concurrency)

    @property
    def tz(self):
        return self.processor.tz

    def find_missing_slots(
        self,
        start: date | str | None = None,
        end: date | str | None = None,
        now: datetime | None = None,
    ) -> list[tuple[date, str]]:
        """
        Find PENDING slots whose hour window has already ended.

        Jobs in the date range are created first, so a day the process
        missed entirely is detected too.

        Args:
            start: First date to scan (defaults to yesterday)
            end: Last date to scan, inclusive (defaults to today)
            now: Reference time (defaults to the current time)

        Returns:
            (date, hour_range) pairs, oldest first
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        local_today = now.astimezone(self.tz).date()
        end_date = parse_date(end) if end is not None else local_today
        start_date = parse_date(start) if start is not None else local_today - timedelta(days=DEFAULT_LOOKBACK_DAYS)

        if start_date > end_date:
            raise ValueError(f"start {start_date} is after end {end_date}")

        missing: list[tuple[date, str]] = []
        current = start_date
        while current <= end_date:
            job = self.creator.create_daily_job(current)
            for slot in job.hour_slots:
                if slot.status != SlotStatus.PENDING:
                    continue
                _, window_end = hour_window(current, slot.hour_range, self.tz)
                if window_end <= now:
                    missing.append((current, slot.hour_range))
            current += timedelta(days=1)

        if missing:
            logger.info(f"Found {len(missing)} unprocessed slots between {start_date} and {end_date}")
        return missing

    def trigger_backfill(
        self,
        slots: list[tuple[date, str]] | None = None,
        max_slots: int | None = None,
        now: datetime | None = None,
    ) -> BackfillResult:
        """
        Process missing slots.

        Args:
            slots: Slots to process (uses find_missing_slots if not provided)
            max_slots: Maximum slots to process in this run
            now: Reference time used when detecting slots

        Returns:
            BackfillResult with statistics
        """
        if slots is None:
            slots = self.find_missing_slots(now=now)

        if not slots:
            logger.info("No slots to backfill")
            return BackfillResult()

        limit = self.max_per_run if max_slots is None else max_slots
        to_process = sorted(slots)[:limit]
        result = BackfillResult(slots_missing=len(slots), slots_deferred=len(slots) - len(to_process))

        if result.slots_deferred:
            logger.info(
                f"Backfilling {len(to_process)} slots "
                f"({result.slots_deferred} more will be processed in next run)"
            )

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="cronlog-backfill"
        ) as executor:
            # Results are collected in submission order, oldest slot first
            futures = [(d, h, executor.submit(self.processor.process_slot, d, h)) for d, h in to_process]
            for job_date, hour_range, future in futures:
                try:
                    outcome = future.result()
                except Exception as e:
                    # process_slot records its own failures; this only
                    # happens when the store itself is unavailable
                    result.slots_processed += 1
                    result.slots_failed += 1
                    log_exception(logger, f"Backfill of {job_date} {hour_range} crashed", e)
                    continue
                result.results.append(outcome)
                if not outcome.claimed:
                    continue
                result.slots_processed += 1
                if outcome.success:
                    result.slots_succeeded += 1
                else:
                    result.slots_failed += 1
                    logger.error(f"Failed to backfill {outcome.job_date} {outcome.hour_range}: {outcome.error}")

        logger.info(
            f"Backfill complete: {result.slots_succeeded} successful, {result.slots_failed} failed"
        )
        return result
