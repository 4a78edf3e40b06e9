"""
Tests for backfill detection and execution.
"""

from datetime import date, datetime, timezone
from unittest import mock

import pytest
from conftest import RecordingFetcher

from cronlog.core.errors import FetchError
from cronlog.db.store import SlotStore
from cronlog.jobs.backfill import BackfillRunner
from cronlog.models import SlotStatus

D = date(2025, 8, 25)
NOW = datetime(2025, 8, 25, 3, 30, tzinfo=timezone.utc)


class TestFindMissingSlots:
    """Test detection of unprocessed past slots."""

    def test_only_ended_pending_slots(self, store: SlotStore, make_processor):
        runner = BackfillRunner(store, make_processor(RecordingFetcher()))

        missing = runner.find_missing_slots(start=D, end=D, now=NOW)

        # 03-04 is still in progress at 03:30
        assert missing == [(D, "00-01"), (D, "01-02"), (D, "02-03")]

    def test_creates_jobs_for_missed_days(self, store: SlotStore, make_processor):
        runner = BackfillRunner(store, make_processor(RecordingFetcher()))

        missing = runner.find_missing_slots(start="2025-08-24", end="2025-08-24", now=NOW)

        assert len(missing) == 24
        assert store.get_job(date(2025, 8, 24)) is not None

    def test_skips_slots_already_handled(self, store: SlotStore, make_processor):
        processor = make_processor(RecordingFetcher())
        processor.process_slot(D, "00-01")
        runner = BackfillRunner(store, processor)

        missing = runner.find_missing_slots(start=D, end=D, now=NOW)

        assert (D, "00-01") not in missing

    def test_defaults_to_yesterday_and_today(self, store: SlotStore, make_processor):
        runner = BackfillRunner(store, make_processor(RecordingFetcher()))

        missing = runner.find_missing_slots(now=NOW)

        assert len(missing) == 24 + 3
        assert missing[0] == (date(2025, 8, 24), "00-01")

    def test_rejects_inverted_range(self, store: SlotStore, make_processor):
        runner = BackfillRunner(store, make_processor(RecordingFetcher()))

        with pytest.raises(ValueError):
            runner.find_missing_slots(start="2025-08-26", end="2025-08-25", now=NOW)


class TestTriggerBackfill:
    """Test backfill execution."""

    def test_processes_oldest_first_up_to_limit(self, store: SlotStore, make_processor):
        fetcher = RecordingFetcher([])
        runner = BackfillRunner(store, make_processor(fetcher), max_per_run=2)
        missing = runner.find_missing_slots(start=D, end=D, now=NOW)

        result = runner.trigger_backfill(missing)

        assert result.slots_missing == 3
        assert result.slots_processed == 2
        assert result.slots_succeeded == 2
        assert result.slots_deferred == 1
        assert store.get_slot(D, "02-03").status == SlotStatus.PENDING
        assert [call[1].hour for call in fetcher.calls] == [0, 1]

    def test_failures_are_counted(self, store: SlotStore, make_processor):
        runner = BackfillRunner(store, make_processor(RecordingFetcher(error=FetchError("down"))))

        result = runner.trigger_backfill([(D, "00-01")])

        assert result.slots_failed == 1
        assert store.get_slot(D, "00-01").status == SlotStatus.FAILED

    def test_store_crash_is_counted_and_run_continues(self, store: SlotStore, make_processor):
        processor = make_processor(RecordingFetcher())
        real_process = processor.process_slot

        def process(job_date, hour_range):
            if hour_range == "00-01":
                raise RuntimeError("disk gone")
            return real_process(job_date, hour_range)

        runner = BackfillRunner(store, processor)
        with mock.patch.object(processor, "process_slot", side_effect=process):
            result = runner.trigger_backfill([(D, "00-01"), (D, "01-02")])

        assert result.slots_processed == 2
        assert result.slots_failed == 1
        assert result.slots_succeeded == 1
        assert [(r.job_date, r.hour_range) for r in result.results] == [(D, "01-02")]
        assert store.get_slot(D, "01-02").status == SlotStatus.COMPLETED

    def test_nothing_to_do(self, store: SlotStore, make_processor):
        runner = BackfillRunner(store, make_processor(RecordingFetcher()))

        assert runner.trigger_backfill([]).slots_processed == 0
