"""
Hour Slot Processor for cronlog

Runs the fetch -> write -> upload pipeline for a single hour slot:
- Claims the slot with a compare-and-set (PENDING/FAILED -> PROCESSING)
- Fetches the records of the slot's half-open hour window
- Writes them to one local artifact
- Uploads the artifact and records the outcome on the slot

Losing the claim is not an error: the caller gets the slot as it currently is
and nothing else happens. Every failure inside the pipeline is caught and
recorded on the slot; nothing escapes to the scheduler.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from cronlog.archive.writer import Artifact, ArchiveWriter
from cronlog.core.errors import FetchError, UploadError, WriteError
from cronlog.core.hours import hour_window, normalize_hour_range, parse_date, previous_hour_slot
from cronlog.core.logging import LogContext, OperationTimer, log_exception
from cronlog.core.retry import run_with_timeout
from cronlog.db.store import SlotStore
from cronlog.fetch import DataFetcher
from cronlog.jobs.daily import DailyJobCreator
from cronlog.models import HourSlot, SlotStatus
from cronlog.storage.dispatcher import UploadDispatcher, UploadReceipt

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class ProcessResult:
    """Outcome of one process_slot call."""

    job_date: date
    hour_range: str
    slot: HourSlot | None
    claimed: bool
    success: bool
    error: str | None = None
    record_count: int | None = None
    remote_location: str | None = None

    @property
    def status(self) -> SlotStatus | None:
        return self.slot.status if self.slot else None

    @property
    def permanently_failed(self) -> bool:
        return self.status == SlotStatus.PERMANENTLY_FAILED


def describe_error(exc: BaseException) -> str:
    """Render an exception the way it is stored in last_error."""
    return f"{type(exc).__name__}: {exc}"


class HourSlotProcessor:
    """
    Processes hour slots end to end.

    Safe to call concurrently for the same slot from any number of threads
    or processes sharing the store; exactly one caller wins the claim.
    """

    def __init__(
        self,
        store: SlotStore,
        fetcher: DataFetcher,
        writer: ArchiveWriter,
        dispatcher: UploadDispatcher,
        tz: ZoneInfo | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        fetch_timeout: float | None = None,
        upload_timeout: float | None = None,
        keep_failed_artifacts: bool = True,
    ):
        self.store = store
        self.fetcher = fetcher
        self.writer = writer
        self.dispatcher = dispatcher
        self.tz = tz or ZoneInfo("UTC")
        self.max_attempts = max_attempts
        self.fetch_timeout = fetch_timeout
        self.upload_timeout = upload_timeout
        self.keep_failed_artifacts = keep_failed_artifacts
        self.creator = DailyJobCreator(store, self.tz)

    def process_slot(self, job_date: date | datetime | str, hour_range: str | int) -> ProcessResult:
        """
        Process one hour slot.

        Args:
            job_date: Date of the Job the slot belongs to
            hour_range: Slot key ("14-15") or starting hour (14)

        Returns:
            ProcessResult; ``claimed`` is False when the call was a no-op
        """
        job_date = parse_date(job_date)
        hour_range = normalize_hour_range(hour_range)

        with LogContext(job_date=job_date.isoformat(), hour_range=hour_range):
            # Slots of dates with no Job yet (manual triggers, backfill) are
            # created on demand
            self.creator.create_daily_job(job_date)

            slot = self.store.claim_slot(job_date, hour_range, self.max_attempts)
            if slot is None:
                current = self.store.get_slot(job_date, hour_range)
                logger.debug(
                    f"Slot {job_date} {hour_range} not claimable "
                    f"(status={current.status.value if current else 'missing'})"
                )
                return ProcessResult(
                    job_date=job_date,
                    hour_range=hour_range,
                    slot=current,
                    claimed=False,
                    success=current is not None and current.status == SlotStatus.COMPLETED,
                )

            logger.info(f"Processing slot {job_date} {hour_range} (attempt {slot.attempts}/{self.max_attempts})")
            return self._run_pipeline(slot)

    def _run_pipeline(self, slot: HourSlot) -> ProcessResult:
        job_date, hour_range = slot.job_date, slot.hour_range
        artifact: Artifact | None = None

        try:
            with OperationTimer(logger, "process_slot", level=logging.INFO):
                hour_start, hour_end = hour_window(job_date, hour_range, self.tz)

                records = run_with_timeout(
                    lambda: self.fetcher.fetch(job_date, hour_start, hour_end),
                    self.fetch_timeout,
                    FetchError,
                    "fetch",
                )
                records = list(records or [])
                logger.debug(f"Fetched {len(records)} records for [{hour_start}, {hour_end})")

                artifact = self._write(job_date, hour_range, records, slot.attempts)

                key = self.dispatcher.build_key(job_date, hour_range)
                receipt: UploadReceipt = run_with_timeout(
                    lambda: self.dispatcher.upload(artifact.path, key),
                    self.upload_timeout,
                    UploadError,
                    "upload",
                )
        except Exception as e:
            return self._record_failure(slot, e, artifact)

        completed = self.store.complete_slot(
            job_date,
            hour_range,
            record_count=artifact.record_count,
            file_path=str(artifact.path),
            storage_key=receipt.key,
            remote_location=receipt.remote_location,
            uploaded_at=receipt.uploaded_at,
        )
        current = self.store.get_slot(job_date, hour_range)

        if not completed:
            # Reclaimed, reset or deleted while uploading; the object stays in
            # storage and any later attempt overwrites it
            status = current.status.value if current else "missing"
            logger.warning(f"Uploaded {job_date} {hour_range} but slot was no longer processing (status={status})")
            return ProcessResult(
                job_date=job_date,
                hour_range=hour_range,
                slot=current,
                claimed=True,
                success=False,
                error=f"slot no longer processing (status={status})",
                record_count=artifact.record_count,
                remote_location=receipt.remote_location,
            )

        logger.info(f"Completed slot {job_date} {hour_range}: {artifact.record_count} records")
        return ProcessResult(
            job_date=job_date,
            hour_range=hour_range,
            slot=current,
            claimed=True,
            success=True,
            record_count=artifact.record_count,
            remote_location=receipt.remote_location,
        )

    def _write(self, job_date: date, hour_range: str, records: list, attempt: int) -> Artifact:
        try:
            return self.writer.write(job_date, hour_range, records, attempt=attempt)
        except WriteError:
            raise
        except Exception as e:
            raise WriteError(f"write failed: {describe_error(e)}") from e

    def _record_failure(self, slot: HourSlot, exc: Exception, artifact: Artifact | None) -> ProcessResult:
        job_date, hour_range = slot.job_date, slot.hour_range
        error = describe_error(exc)

        artifact_path: Path | None = artifact.path if artifact else None
        if artifact_path is not None and not self.keep_failed_artifacts:
            self.writer.discard(artifact_path)
            artifact_path = None

        status = self.store.fail_slot(
            job_date,
            hour_range,
            error=error,
            max_attempts=self.max_attempts,
            file_path=str(artifact_path) if artifact_path else None,
        )

        if status == SlotStatus.PERMANENTLY_FAILED:
            log_exception(
                logger,
                f"Slot {job_date} {hour_range} permanently failed after {slot.attempts} attempts",
                exc,
                level=logging.CRITICAL,
            )
        elif status == SlotStatus.FAILED:
            log_exception(logger, f"Slot {job_date} {hour_range} failed (attempt {slot.attempts})", exc)
        else:
            logger.warning(f"Slot {job_date} {hour_range} failed but was no longer processing: {error}")

        return ProcessResult(
            job_date=job_date,
            hour_range=hour_range,
            slot=self.store.get_slot(job_date, hour_range),
            claimed=True,
            success=False,
            error=error,
        )

    def run_hourly(self, now: datetime | None = None) -> ProcessResult:
        """Process the most recently completed hour in the configured timezone."""
        job_date, hour_range = previous_hour_slot(self.tz, now)
        logger.info(f"Hourly trigger for {job_date} {hour_range}")
        return self.process_slot(job_date, hour_range)
