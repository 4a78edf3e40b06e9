"""Shared fixtures for cronlog tests."""

import threading
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from cronlog.archive.writer import ArchiveWriter
from cronlog.db.store import SlotStore
from cronlog.jobs.hourly import HourSlotProcessor
from cronlog.storage.dispatcher import UploadDispatcher
from cronlog.storage.local import LocalBackend

UTC = ZoneInfo("UTC")


class RecordingFetcher:
    """DataFetcher returning canned records and remembering each window."""

    def __init__(self, records=None, error: Exception | None = None):
        self.records = records if records is not None else [{"timestamp": "t", "message": "hello"}]
        self.error = error
        self.calls: list[tuple[date, datetime, datetime]] = []
        self._lock = threading.Lock()

    def fetch(self, job_date, hour_start, hour_end):
        with self._lock:
            self.calls.append((job_date, hour_start, hour_end))
        if self.error is not None:
            raise self.error
        return list(self.records)


@pytest.fixture
def store(tmp_path: Path) -> SlotStore:
    return SlotStore(tmp_path / "db" / "cronlog.sqlite")


@pytest.fixture
def backend(tmp_path: Path) -> LocalBackend:
    return LocalBackend(tmp_path / "archive", key_prefix="logs")


@pytest.fixture
def fetcher() -> RecordingFetcher:
    return RecordingFetcher()


@pytest.fixture
def make_processor(tmp_path: Path, store: SlotStore, backend: LocalBackend):
    """Factory for processors sharing the test store and local backend."""

    def build(fetcher, backend_override=None, **kwargs) -> HourSlotProcessor:
        kwargs.setdefault("tz", UTC)
        kwargs.setdefault("max_attempts", 3)
        kwargs.setdefault("fetch_timeout", 5.0)
        kwargs.setdefault("upload_timeout", 5.0)
        return HourSlotProcessor(
            store=store,
            fetcher=fetcher,
            writer=ArchiveWriter(tmp_path / "staging", "json"),
            dispatcher=UploadDispatcher(backend_override or backend, file_format="json"),
            **kwargs,
        )

    return build
