"""
Job Scheduling Module for cronlog

Contains the slot lifecycle components:
- Daily job creation and hour slot processing
- Retry of failed slots and retention sweeps
- Backfill of missed slots

Uses APScheduler for background job scheduling.
"""

from cronlog.jobs.backfill import BackfillResult, BackfillRunner
from cronlog.jobs.daily import DailyJobCreator
from cronlog.jobs.hourly import HourSlotProcessor, ProcessResult
from cronlog.jobs.retention import RetentionReport, RetentionSweeper
from cronlog.jobs.retry import RetryCoordinator, RetryReport
from cronlog.jobs.scheduler import ArchiveScheduler

__all__ = [
    "ArchiveScheduler",
    "BackfillResult",
    "BackfillRunner",
    "DailyJobCreator",
    "HourSlotProcessor",
    "ProcessResult",
    "RetentionReport",
    "RetentionSweeper",
    "RetryCoordinator",
    "RetryReport",
]
