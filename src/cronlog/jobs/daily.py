"""
Daily Job Creator for cronlog

Creates the Job for a calendar date together with its 24 PENDING hour slots.
Creation is idempotent: a second call for the same date returns the existing
Job untouched, so overlapping daily triggers and restarts never duplicate or
reset slots.
"""

import logging
from datetime import date, datetime
from zoneinfo import ZoneInfo

from cronlog.core.hours import day_hour_ranges, parse_date, today
from cronlog.db.store import SlotStore
from cronlog.models import Job

logger = logging.getLogger(__name__)


class DailyJobCreator:
    """Creates one Job per calendar date."""

    def __init__(self, store: SlotStore, tz: ZoneInfo | None = None):
        self.store = store
        self.tz = tz or ZoneInfo("UTC")

    def create_daily_job(self, job_date: date | datetime | str) -> Job:
        """
        Create the Job for a date, or return it if it already exists.

        All 24 slots are inserted in one transaction, so a Job never exists
        with a partial set of slots.

        Args:
            job_date: Calendar date (date, datetime or YYYY-MM-DD)

        Returns:
            The Job with its 24 slots
        """
        job_date = parse_date(job_date)
        job, created = self.store.create_job(job_date, day_hour_ranges())

        if created:
            logger.info(f"Created job {job_date.isoformat()} with {len(job.hour_slots)} hour slots")
        else:
            logger.debug(f"Job {job_date.isoformat()} already exists, status={job.status.value}")

        return job

    def create_today(self, now: datetime | None = None) -> Job:
        """Create the Job for today in the configured timezone."""
        return self.create_daily_job(today(self.tz, now))
