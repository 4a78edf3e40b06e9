"""
Domain model for cronlog: daily jobs, their 24 hour slots and slot events.

These are plain dataclasses built from Slot Store rows; the store is the only
component that persists them.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class SlotStatus(str, Enum):
    """Processing state of an hour slot."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PERMANENTLY_FAILED = "permanently_failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SlotStatus.COMPLETED, SlotStatus.PERMANENTLY_FAILED)


# States a slot may be claimed from
CLAIMABLE_STATUSES: tuple[SlotStatus, ...] = (SlotStatus.PENDING, SlotStatus.FAILED)


class JobStatus(str, Enum):
    """Aggregate state of a daily job, derived from its slots."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class HourSlot:
    """One hour-of-day within a Job."""

    job_date: date
    hour_range: str
    status: SlotStatus
    attempts: int
    last_error: str | None
    record_count: int | None
    file_path: str | None
    storage_key: str | None
    remote_location: str | None
    uploaded_at: datetime | None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.job_date.isoformat(),
            "hour_range": self.hour_range,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "record_count": self.record_count,
            "file_path": self.file_path,
            "storage_key": self.storage_key,
            "remote_location": self.remote_location,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Job:
    """The per-date container of 24 hour slots."""

    job_date: date
    created_at: datetime
    updated_at: datetime
    hour_slots: list[HourSlot] = field(default_factory=list)

    @property
    def status(self) -> JobStatus:
        statuses = {slot.status for slot in self.hour_slots}
        if self.hour_slots and statuses == {SlotStatus.COMPLETED}:
            return JobStatus.COMPLETED
        if statuses & {SlotStatus.FAILED, SlotStatus.PERMANENTLY_FAILED}:
            return JobStatus.FAILED
        return JobStatus.PENDING

    def slot(self, hour_range: str) -> HourSlot | None:
        return next((s for s in self.hour_slots if s.hour_range == hour_range), None)

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in SlotStatus}
        for slot in self.hour_slots:
            counts[slot.status.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.job_date.isoformat(),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "counts": self.counts(),
            "hour_slots": [slot.to_dict() for slot in self.hour_slots],
        }


@dataclass
class SlotEvent:
    """A history entry for a slot (claim, success, failure, reclaim, reset)."""

    job_date: date
    hour_range: str
    action: str
    message: str | None
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.job_date.isoformat(),
            "hour_range": self.hour_range,
            "action": self.action,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
