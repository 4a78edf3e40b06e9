"""
Retention Sweeper for cronlog

Two independent sweeps with independent windows:
- Database: deletes Jobs (with their slots and events) dated more than
  ``db_retention_days`` before today. A Job exactly that old is kept.
- Storage: deletes archived objects last modified more than
  ``storage_retention_days`` ago, through the active backend.

Neither sweep touches anything belonging to a slot that is currently
PROCESSING. Both support dry runs that report candidates without deleting.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from cronlog.core.errors import UploadError
from cronlog.core.hours import today as local_today
from cronlog.core.logging import OperationTimer
from cronlog.db.store import SlotStore
from cronlog.models import SlotStatus
from cronlog.storage.base import DeleteResult
from cronlog.storage.dispatcher import UploadDispatcher

logger = logging.getLogger(__name__)


@dataclass
class RetentionReport:
    """What a sweep deleted, or would delete in a dry run."""

    target: str  # 'database' or 'storage'
    enabled: bool
    dry_run: bool
    retention_days: int | None = None
    cutoff: str | None = None
    candidates: list[str] = field(default_factory=list)
    deleted: int = 0
    bytes_deleted: int = 0
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "enabled": self.enabled,
            "dry_run": self.dry_run,
            "retention_days": self.retention_days,
            "cutoff": self.cutoff,
            "candidates": self.candidates,
            "deleted": self.deleted,
            "bytes_deleted": self.bytes_deleted,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class RetentionSweeper:
    """Deletes expired slot records and archived objects."""

    def __init__(
        self,
        store: SlotStore,
        dispatcher: UploadDispatcher,
        db_retention_days: int | None = None,
        storage_retention_days: int | None = None,
        tz: ZoneInfo | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.db_retention_days = db_retention_days
        self.storage_retention_days = storage_retention_days
        self.tz = tz or ZoneInfo("UTC")

    @property
    def backend(self):
        return self.dispatcher.backend

    def database_cutoff(self, today: date | None = None) -> date | None:
        if self.db_retention_days is None:
            return None
        return (today or local_today(self.tz)) - timedelta(days=self.db_retention_days)

    def storage_cutoff(self, now: datetime | None = None) -> datetime | None:
        if self.storage_retention_days is None:
            return None
        return _as_utc(now or datetime.now(timezone.utc)) - timedelta(days=self.storage_retention_days)

    def sweep_database(self, dry_run: bool = False, today: date | None = None) -> RetentionReport:
        """
        Delete Jobs dated strictly before ``today - db_retention_days``.

        Args:
            dry_run: Report candidates without deleting
            today: Reference date (defaults to today in the configured timezone)
        """
        cutoff = self.database_cutoff(today)
        report = RetentionReport(
            target="database",
            enabled=cutoff is not None,
            dry_run=dry_run,
            retention_days=self.db_retention_days,
        )
        if cutoff is None:
            logger.debug("Database retention not configured, skipping sweep")
            return report

        report.cutoff = cutoff.isoformat()

        with OperationTimer(logger, "database_sweep", level=logging.INFO):
            expired = self.store.list_job_dates(before=cutoff)
            deleted = self.store.delete_jobs_before(cutoff, dry_run=dry_run)

        removed = set(deleted)
        report.candidates = [d.isoformat() for d in deleted]
        report.skipped = [d.isoformat() for d in expired if d not in removed]
        if not dry_run:
            report.deleted = len(deleted)

        for job_date in report.skipped:
            logger.info(f"Kept expired job {job_date}: a slot is still processing")

        verb = "Would delete" if dry_run else "Deleted"
        logger.info(f"{verb} {len(deleted)} jobs dated before {cutoff.isoformat()}")
        return report

    def sweep_storage(self, dry_run: bool = False, now: datetime | None = None) -> RetentionReport:
        """
        Delete archived objects last modified before ``now - storage_retention_days``.

        Args:
            dry_run: Report candidates without deleting
            now: Reference time (defaults to the current time)
        """
        cutoff = self.storage_cutoff(now)
        report = RetentionReport(
            target="storage",
            enabled=cutoff is not None,
            dry_run=dry_run,
            retention_days=self.storage_retention_days,
        )
        if cutoff is None:
            logger.debug("Storage retention not configured, skipping sweep")
            return report

        report.cutoff = cutoff.isoformat()
        in_flight = self._processing_keys()

        with OperationTimer(logger, "storage_sweep", level=logging.INFO):
            for obj in self.backend.list_objects():
                if _as_utc(obj.last_modified) >= cutoff:
                    continue
                if obj.key in in_flight:
                    report.skipped.append(obj.key)
                    logger.info(f"Kept expired object {obj.key}: its slot is processing")
                    continue

                report.candidates.append(obj.key)
                if dry_run:
                    report.bytes_deleted += obj.size_bytes
                    continue

                try:
                    result = self.backend.delete(obj.key)
                except UploadError as e:
                    report.errors.append(f"{obj.key}: {e}")
                    logger.error(f"Failed to delete expired object {obj.key}: {e}")
                    continue

                if result == DeleteResult.DELETED:
                    report.deleted += 1
                    report.bytes_deleted += obj.size_bytes
                else:
                    logger.debug(f"Expired object {obj.key} already gone")

        verb = "Would delete" if dry_run else "Deleted"
        count = len(report.candidates) if dry_run else report.deleted
        logger.info(f"{verb} {count} objects ({report.bytes_deleted} bytes) older than {report.cutoff}")
        return report

    def _processing_keys(self) -> set[str]:
        return {
            self.dispatcher.build_key(slot.job_date, slot.hour_range)
            for slot in self.store.list_slots(status=SlotStatus.PROCESSING)
        }

    def get_stats(self, now: datetime | None = None) -> dict:
        """Totals and expired counts for jobs and stored objects."""
        now = _as_utc(now or datetime.now(timezone.utc))
        db_cutoff = self.database_cutoff(now.astimezone(self.tz).date())
        storage_cutoff = self.storage_cutoff(now)

        job_dates = self.store.list_job_dates()
        expired_jobs = [d for d in job_dates if db_cutoff is not None and d < db_cutoff]

        objects = list(self.backend.list_objects())
        expired_objects = [
            o for o in objects if storage_cutoff is not None and _as_utc(o.last_modified) < storage_cutoff
        ]

        return {
            "database": {
                "retention_days": self.db_retention_days,
                "cutoff": db_cutoff.isoformat() if db_cutoff else None,
                "total_jobs": len(job_dates),
                "expired_jobs": len(expired_jobs),
                "oldest_job": job_dates[0].isoformat() if job_dates else None,
                "slot_status": self.store.status_counts(),
            },
            "storage": {
                "provider": self.backend.name,
                "retention_days": self.storage_retention_days,
                "cutoff": storage_cutoff.isoformat() if storage_cutoff else None,
                "total_objects": len(objects),
                "total_bytes": sum(o.size_bytes for o in objects),
                "expired_objects": len(expired_objects),
                "expired_bytes": sum(o.size_bytes for o in expired_objects),
            },
        }
