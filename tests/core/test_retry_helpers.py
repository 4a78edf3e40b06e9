"""
Tests for backoff retries and step timeouts.
"""

import contextvars
import sqlite3
import threading
from unittest import mock

import pytest

from cronlog.core.errors import FetchError, UploadError
from cronlog.core.retry import RetryConfig, RetryError, retry_with_backoff, run_with_timeout


class TestRetryWithBackoff:
    """Test the retry decorator."""

    def test_retries_then_succeeds(self):
        calls = {"n": 0}

        @retry_with_backoff(config=RetryConfig(max_retries=3, base_delay=0, jitter_factor=0, retryable_exceptions=(sqlite3.OperationalError,)))
        def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise sqlite3.OperationalError("database is locked")
            return "ok"

        with mock.patch("cronlog.core.retry.time.sleep"):
            assert flaky() == "ok"
        assert calls["n"] == 3

    def test_gives_up_after_max_retries(self):
        @retry_with_backoff(config=RetryConfig(max_retries=2, base_delay=0, jitter_factor=0, retryable_exceptions=(sqlite3.OperationalError,)))
        def always_locked():
            raise sqlite3.OperationalError("database is locked")

        with mock.patch("cronlog.core.retry.time.sleep"), pytest.raises(RetryError):
            always_locked()

    def test_non_retryable_errors_propagate(self):
        @retry_with_backoff(config=RetryConfig(max_retries=3, base_delay=0, retryable_exceptions=(sqlite3.OperationalError,)))
        def broken():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            broken()


class TestRunWithTimeout:
    """Test step timeouts."""

    def test_returns_result(self):
        assert run_with_timeout(lambda: 42, 1.0, FetchError, "fetch") == 42

    def test_timeout_raises_step_error(self):
        release = threading.Event()
        try:
            with pytest.raises(FetchError, match="timed out"):
                run_with_timeout(lambda: release.wait(5), 0.05, FetchError, "fetch")
        finally:
            release.set()

    def test_foreign_exception_is_wrapped(self):
        def boom():
            raise ConnectionError("refused")

        with pytest.raises(UploadError, match="upload failed: ConnectionError: refused"):
            run_with_timeout(boom, 1.0, UploadError, "upload")

    def test_step_error_passes_through(self):
        def fail():
            raise FetchError("source down")

        with pytest.raises(FetchError, match="^source down$"):
            run_with_timeout(fail, 1.0, FetchError, "fetch")

    def test_step_sees_caller_context(self):
        current_slot = contextvars.ContextVar("current_slot", default=None)
        token = current_slot.set("14-15")
        try:
            seen = run_with_timeout(current_slot.get, 1.0, FetchError, "fetch")
        finally:
            current_slot.reset(token)

        assert seen == "14-15"
