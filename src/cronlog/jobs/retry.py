"""
Retry Coordinator for cronlog

Runs on its own trigger, independent of the hourly one:
1. Reclaims slots stuck in PROCESSING longer than the staleness threshold
   (a crashed or hung attempt) by turning them into failures.
2. Re-processes every FAILED slot that still has attempts left, fanned out
   over a bounded thread pool.

The scan is fixed-interval: a failed slot is simply picked up on the next
run. COMPLETED and PERMANENTLY_FAILED slots are never touched.
"""

import concurrent.futures
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from cronlog.core.logging import OperationTimer, log_exception
from cronlog.db.store import SlotStore
from cronlog.jobs.hourly import HourSlotProcessor, ProcessResult
from cronlog.models import HourSlot, SlotStatus

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4
DEFAULT_STALE_MINUTES = 60


@dataclass
class RetryReport:
    """Result of one retry run."""

    reclaimed: list[HourSlot] = field(default_factory=list)
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    permanently_failed: int = 0
    skipped: int = 0
    results: list[ProcessResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "reclaimed": [f"{s.job_date.isoformat()} {s.hour_range}" for s in self.reclaimed],
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "permanently_failed": self.permanently_failed,
            "skipped": self.skipped,
        }


class RetryCoordinator:
    """Re-drives failed slots through the Hour Slot Processor."""

    def __init__(
        self,
        store: SlotStore,
        processor: HourSlotProcessor,
        concurrency: int = DEFAULT_CONCURRENCY,
        stale_after: timedelta = timedelta(minutes=DEFAULT_STALE_MINUTES),
    ):
        self.store = store
        self.processor = processor
        self.concurrency = max(1, concurrency)
        self.stale_after = stale_after

    @property
    def max_attempts(self) -> int:
        return self.processor.max_attempts

    def reclaim_stale(self, now: datetime | None = None) -> list[HourSlot]:
        """Fail PROCESSING slots not updated since ``now - stale_after``."""
        now = now or datetime.now(timezone.utc)
        reclaimed = self.store.reclaim_stale(now - self.stale_after, self.max_attempts)

        for slot in reclaimed:
            level = logging.CRITICAL if slot.status == SlotStatus.PERMANENTLY_FAILED else logging.WARNING
            logger.log(
                level,
                f"Reclaimed stale slot {slot.job_date} {slot.hour_range} -> {slot.status.value} "
                f"(attempts {slot.attempts}/{self.max_attempts})",
            )
        return reclaimed

    def eligible_slots(self) -> list[HourSlot]:
        return self.store.list_slots(status=SlotStatus.FAILED, attempts_below=self.max_attempts)

    def run(self, now: datetime | None = None) -> RetryReport:
        """
        Reclaim stale slots, then retry every eligible failed slot.

        Returns:
            RetryReport with per-outcome counts
        """
        report = RetryReport()

        with OperationTimer(logger, "retry_run", level=logging.INFO):
            report.reclaimed = self.reclaim_stale(now)

            slots = self.eligible_slots()
            if not slots:
                logger.debug("No failed slots eligible for retry")
                return report

            logger.info(f"Retrying {len(slots)} failed slots (concurrency {self.concurrency})")

            with concurrent.futures.ThreadPoolExecutor(
                max_workers=self.concurrency, thread_name_prefix="cronlog-retry"
            ) as executor:
                futures = {
                    executor.submit(self.processor.process_slot, slot.job_date, slot.hour_range): slot
                    for slot in slots
                }
                for future in concurrent.futures.as_completed(futures):
                    slot = futures[future]
                    try:
                        result = future.result()
                    except Exception as e:
                        # process_slot records its own failures; this only
                        # happens when the store itself is unavailable
                        report.attempted += 1
                        report.failed += 1
                        log_exception(logger, f"Retry of {slot.job_date} {slot.hour_range} crashed", e)
                        continue
                    self._tally(report, result)

        logger.info(
            f"Retry run complete: {report.succeeded} succeeded, {report.failed} failed, "
            f"{report.permanently_failed} permanently failed, {report.skipped} skipped"
        )
        return report

    def _tally(self, report: RetryReport, result: ProcessResult) -> None:
        report.results.append(result)
        if not result.claimed:
            report.skipped += 1
            return

        report.attempted += 1
        if result.success:
            report.succeeded += 1
        elif result.permanently_failed:
            report.permanently_failed += 1
        else:
            report.failed += 1
            logger.debug(f"Retry of {result.job_date} {result.hour_range} failed: {result.error}")
