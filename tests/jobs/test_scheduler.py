"""
Tests for the archive scheduler.
"""

import logging
from unittest import mock

import pytest

from cronlog.jobs.scheduler import (
    DAILY_JOB_ID,
    DB_SWEEP_JOB_ID,
    HOURLY_JOB_ID,
    RETRY_JOB_ID,
    STORAGE_SWEEP_JOB_ID,
    ArchiveScheduler,
)


def _make(db_retention_days=7, storage_retention_days=None, **kwargs):
    sweeper = mock.Mock(db_retention_days=db_retention_days, storage_retention_days=storage_retention_days)
    return ArchiveScheduler(
        creator=mock.Mock(),
        processor=mock.Mock(),
        retry=mock.Mock(),
        sweeper=sweeper,
        backfill=mock.Mock(),
        **kwargs,
    )


@pytest.fixture
def scheduler():
    sched = _make(backfill_on_start=False)
    yield sched
    sched.stop(wait=False)


class TestArchiveScheduler:
    """Test trigger registration and lifecycle."""

    def test_nothing_scheduled_before_start(self, scheduler):
        assert scheduler.is_running() is False
        assert scheduler.get_next_run_times() == {}

    def test_start_registers_triggers(self, scheduler):
        scheduler.start()

        next_runs = scheduler.get_next_run_times()
        assert scheduler.is_running() is True
        assert set(next_runs) == {DAILY_JOB_ID, HOURLY_JOB_ID, RETRY_JOB_ID, DB_SWEEP_JOB_ID}
        assert all(run_time is not None for run_time in next_runs.values())

    def test_sweep_without_retention_is_not_scheduled(self, scheduler):
        scheduler.start()

        assert STORAGE_SWEEP_JOB_ID not in scheduler.get_next_run_times()

    def test_start_creates_todays_job(self, scheduler):
        scheduler.start()

        scheduler.creator.create_today.assert_called_once()

    def test_max_instances_applied(self, scheduler):
        scheduler.start()

        job = scheduler.scheduler.get_job(HOURLY_JOB_ID)
        assert job.max_instances == 2

    def test_stop(self, scheduler):
        scheduler.start()
        scheduler.stop()

        assert scheduler.is_running() is False

    def test_double_start_warns(self, scheduler, caplog):
        scheduler.start()
        with caplog.at_level(logging.WARNING):
            scheduler.start()

        assert "already running" in caplog.text


class TestSafeWrapper:
    """A failing trigger body is logged and never raised."""

    def test_exception_is_logged(self, caplog):
        sched = _make()
        failing = mock.Mock(side_effect=RuntimeError("store unavailable"))

        with caplog.at_level(logging.ERROR):
            sched._safe(HOURLY_JOB_ID, failing)()

        assert "Trigger hourly_processing failed" in caplog.text
        assert "store unavailable" in caplog.text
