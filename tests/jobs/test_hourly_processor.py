"""
Tests for the hour slot processor.

Covers the full fetch -> write -> upload pipeline, failure accounting and
the compare-and-set that makes concurrent triggers safe.
"""

import json
import logging
import threading
import time
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest import mock
from zoneinfo import ZoneInfo

from conftest import RecordingFetcher

from cronlog.core.errors import FetchError, UploadAuthError, UploadError
from cronlog.db.store import SlotStore
from cronlog.models import SlotStatus
from cronlog.storage.local import LocalBackend

D = date(2025, 8, 25)


class TestSuccessfulProcessing:
    """Test the happy path."""

    def test_slot_completes_and_object_is_stored(self, tmp_path: Path, store: SlotStore, make_processor):
        fetcher = RecordingFetcher([{"path": "/a"}, {"path": "/b"}])
        result = make_processor(fetcher).process_slot(D, "14-15")

        assert result.claimed and result.success
        slot = result.slot
        assert slot.status == SlotStatus.COMPLETED
        assert slot.attempts == 1
        assert slot.record_count == 2
        assert slot.storage_key == "logs/2025-08-25/14-15.json"
        assert slot.uploaded_at is not None
        assert slot.last_error is None

        stored = tmp_path / "archive" / "logs" / "2025-08-25" / "14-15.json"
        assert json.loads(stored.read_text()) == [{"path": "/a"}, {"path": "/b"}]

    def test_local_artifact_removed_after_success(self, tmp_path: Path, make_processor):
        make_processor(RecordingFetcher()).process_slot(D, "14-15")

        assert not (tmp_path / "staging" / "2025-08-25" / "14-15.attempt-1.json").exists()

    def test_fetch_window_is_the_slot_hour(self, make_processor):
        fetcher = RecordingFetcher()
        make_processor(fetcher, tz=ZoneInfo("America/New_York")).process_slot(D, "23-00")

        (job_date, start, end) = fetcher.calls[0]
        assert job_date == D
        assert start.astimezone(timezone.utc) == datetime(2025, 8, 26, 3, tzinfo=timezone.utc)
        assert end.astimezone(timezone.utc) == datetime(2025, 8, 26, 4, tzinfo=timezone.utc)

    def test_empty_hour_completes_with_zero_records(self, tmp_path: Path, make_processor):
        result = make_processor(RecordingFetcher([])).process_slot(D, "03-04")

        assert result.slot.status == SlotStatus.COMPLETED
        assert result.slot.record_count == 0
        stored = tmp_path / "archive" / "logs" / "2025-08-25" / "03-04.json"
        assert stored.read_text() == "[]"

    def test_job_is_created_on_demand(self, store: SlotStore, make_processor):
        make_processor(RecordingFetcher()).process_slot("2025-08-25", 14)

        job = store.get_job(D)
        assert len(job.hour_slots) == 24
        assert job.slot("14-15").status == SlotStatus.COMPLETED

    def test_completed_slot_is_a_noop(self, make_processor):
        fetcher = RecordingFetcher()
        processor = make_processor(fetcher)
        processor.process_slot(D, "14-15")

        again = processor.process_slot(D, "14-15")

        assert again.claimed is False
        assert again.success is True
        assert len(fetcher.calls) == 1


class TestFailures:
    """Test failure accounting."""

    def test_fetch_error_marks_failed(self, make_processor):
        result = make_processor(RecordingFetcher(error=FetchError("source down"))).process_slot(D, "14-15")

        assert result.claimed and not result.success
        assert result.slot.status == SlotStatus.FAILED
        assert result.slot.attempts == 1
        assert result.slot.last_error == "FetchError: source down"

    def test_unexpected_exception_is_recorded(self, make_processor):
        result = make_processor(RecordingFetcher(error=KeyError("ts"))).process_slot(D, "14-15")

        assert result.slot.status == SlotStatus.FAILED
        assert result.slot.last_error.startswith("FetchError: fetch failed: KeyError")

    def test_fetch_timeout_is_a_failure(self, make_processor):
        release = threading.Event()

        class SlowFetcher:
            def fetch(self, job_date, hour_start, hour_end):
                release.wait(5)
                return []

        try:
            result = make_processor(SlowFetcher(), fetch_timeout=0.05).process_slot(D, "14-15")
        finally:
            release.set()

        assert result.slot.status == SlotStatus.FAILED
        assert "timed out" in result.slot.last_error

    def test_exhausted_attempts_become_permanent(self, tmp_path: Path, make_processor):
        processor = make_processor(RecordingFetcher(), max_attempts=3)

        with mock.patch.object(LocalBackend, "put", side_effect=UploadError("bucket unreachable")):
            statuses = [processor.process_slot(D, "14-15").slot.status for _ in range(3)]
            fourth = processor.process_slot(D, "14-15")

        assert statuses == [SlotStatus.FAILED, SlotStatus.FAILED, SlotStatus.PERMANENTLY_FAILED]
        assert fourth.claimed is False
        assert fourth.slot.attempts == 3
        assert fourth.permanently_failed
        # Kept for diagnosis
        assert (tmp_path / "staging" / "2025-08-25" / "14-15.attempt-3.json").exists()

    def test_permanent_failure_logged_critical(self, make_processor, caplog):
        processor = make_processor(RecordingFetcher(error=FetchError("down")), max_attempts=1)

        with caplog.at_level("CRITICAL"):
            processor.process_slot(D, "14-15")

        assert any(r.levelname == "CRITICAL" and "permanently failed" in r.getMessage() for r in caplog.records)

    def test_upload_auth_failure_keeps_artifact(self, tmp_path: Path, make_processor):
        with mock.patch.object(LocalBackend, "put", side_effect=UploadAuthError("denied")):
            result = make_processor(RecordingFetcher()).process_slot(D, "14-15")

        assert result.slot.last_error == "UploadAuthError: denied"
        artifact = tmp_path / "staging" / "2025-08-25" / "14-15.attempt-1.json"
        assert artifact.exists()
        assert result.slot.file_path == str(artifact)

    def test_failed_artifact_discarded_when_configured(self, tmp_path: Path, make_processor):
        processor = make_processor(RecordingFetcher(), keep_failed_artifacts=False)

        with mock.patch.object(LocalBackend, "put", side_effect=UploadError("unreachable")):
            processor.process_slot(D, "14-15")

        assert not (tmp_path / "staging" / "2025-08-25" / "14-15.attempt-1.json").exists()

    def test_retry_refetches_and_succeeds(self, make_processor):
        fetcher = RecordingFetcher()
        processor = make_processor(fetcher)

        with mock.patch.object(LocalBackend, "put", side_effect=UploadError("unreachable")):
            processor.process_slot(D, "14-15")
        result = processor.process_slot(D, "14-15")

        assert result.slot.status == SlotStatus.COMPLETED
        assert result.slot.attempts == 2
        assert result.slot.last_error is None
        assert len(fetcher.calls) == 2


class TestConcurrency:
    """Two triggers for the same slot: one uploads, the other is a no-op."""

    def test_concurrent_process_slot_uploads_once(self, store: SlotStore, backend: LocalBackend, make_processor):
        entered = threading.Event()
        release = threading.Event()

        class BlockingFetcher:
            calls = 0

            def fetch(self, job_date, hour_start, hour_end):
                BlockingFetcher.calls += 1
                entered.set()
                release.wait(5)
                return [{"n": 1}]

        processor = make_processor(BlockingFetcher())
        results = {}

        first = threading.Thread(target=lambda: results.setdefault("first", processor.process_slot(D, "14-15")))
        first.start()
        assert entered.wait(5)

        # The first call holds the claim while its fetch is blocked
        results["second"] = processor.process_slot(D, "14-15")
        release.set()
        first.join(5)

        assert results["second"].claimed is False
        assert results["second"].slot.status == SlotStatus.PROCESSING
        assert results["first"].success is True
        assert BlockingFetcher.calls == 1
        assert len(list(backend.list_objects())) == 1
        assert store.get_slot(D, "14-15").attempts == 1


    def test_reclaim_during_upload_discards_late_success(self, tmp_path: Path, store: SlotStore, make_processor):
        class ReclaimingBackend(LocalBackend):
            def put(self, local_path, key):
                store.reclaim_stale(datetime.now(timezone.utc) + timedelta(hours=2), max_attempts=3)
                return super().put(local_path, key)

        backend = ReclaimingBackend(tmp_path / "archive", key_prefix="logs")
        result = make_processor(RecordingFetcher(), backend_override=backend).process_slot(D, "14-15")

        assert result.success is False
        assert result.slot.status == SlotStatus.FAILED
        assert "Stale processing" in result.slot.last_error

        retried = make_processor(RecordingFetcher()).process_slot(D, "14-15")
        assert retried.slot.status == SlotStatus.COMPLETED
        assert retried.slot.attempts == 2


class TestAbandonedUpload:
    """An upload that outlives its timeout must not disturb the next attempt."""

    def test_late_upload_does_not_remove_next_attempt_artifact(self, tmp_path: Path, store: SlotStore, make_processor):
        first_artifact = tmp_path / "staging" / "2025-08-25" / "14-15.attempt-1.json"

        class LateBackend(LocalBackend):
            calls = 0
            release = threading.Event()

            def put(self, local_path, key):
                LateBackend.calls += 1
                if LateBackend.calls == 1:
                    LateBackend.release.wait(5)
                    return super().put(local_path, key)

                # Let the abandoned first upload finish and clean up after itself
                LateBackend.release.set()
                deadline = time.monotonic() + 5
                while first_artifact.exists() and time.monotonic() < deadline:
                    time.sleep(0.01)
                return super().put(local_path, key)

        backend = LateBackend(tmp_path / "archive", key_prefix="logs")
        processor = make_processor(RecordingFetcher(), backend_override=backend, upload_timeout=1.0)

        try:
            first = processor.process_slot(D, "14-15")
            second = processor.process_slot(D, "14-15")
        finally:
            LateBackend.release.set()

        assert first.slot.status == SlotStatus.FAILED
        assert "timed out" in first.slot.last_error
        assert second.slot.status == SlotStatus.COMPLETED
        assert second.slot.attempts == 2
        assert not first_artifact.exists()
        assert not (tmp_path / "staging" / "2025-08-25" / "14-15.attempt-2.json").exists()
        assert (tmp_path / "archive" / "logs" / "2025-08-25" / "14-15.json").exists()


class TestSlotLogContext:
    """Records logged by the pipeline steps carry the slot fields."""

    def test_fetch_and_upload_records_carry_slot(self, make_processor, caplog):
        source_logger = logging.getLogger("cronlog.tests.source")

        class LoggingFetcher:
            def fetch(self, job_date, hour_start, hour_end):
                source_logger.info("querying source")
                return [{"n": 1}]

        with caplog.at_level(logging.INFO):
            make_processor(LoggingFetcher()).process_slot(D, "14-15")

        by_logger = {r.name: r for r in caplog.records}
        for name in ("cronlog.tests.source", "cronlog.storage.dispatcher"):
            assert by_logger[name].job_date == "2025-08-25"
            assert by_logger[name].hour_range == "14-15"


class TestRunHourly:
    """Test the hourly trigger body."""

    def test_processes_previous_hour(self, store: SlotStore, make_processor):
        now = datetime(2025, 8, 25, 15, 0, 2, tzinfo=timezone.utc)

        result = make_processor(RecordingFetcher()).run_hourly(now)

        assert (result.job_date, result.hour_range) == (D, "14-15")
        assert store.get_slot(D, "14-15").status == SlotStatus.COMPLETED
