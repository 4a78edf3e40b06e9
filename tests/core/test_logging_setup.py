"""Tests for structured logging and log context."""

import json
import logging

import pytest

from cronlog.core.logging import LogContext, OperationTimer, StructuredLogFormatter


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    logger = logging.getLogger("cronlog.tests.logging")
    logger.setLevel(logging.DEBUG)
    handler = _ListHandler()
    logger.addHandler(handler)
    yield logger, handler
    logger.removeHandler(handler)


class TestStructuredLogFormatter:
    def test_formats_record_as_json(self):
        record = logging.LogRecord(
            "cronlog.test", logging.INFO, __file__, 10, "hello %s", ("world",), None
        )
        data = json.loads(StructuredLogFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "cronlog.test"
        assert data["message"] == "hello world"
        assert "extra" not in data

    def test_nests_extra_fields(self):
        record = logging.LogRecord("cronlog.test", logging.INFO, __file__, 10, "msg", (), None)
        record.job_date = "2025-08-25"
        record.payload = object()
        data = json.loads(StructuredLogFormatter().format(record))

        assert data["extra"]["job_date"] == "2025-08-25"
        assert isinstance(data["extra"]["payload"], str)

    def test_extra_can_be_disabled(self):
        record = logging.LogRecord("cronlog.test", logging.INFO, __file__, 10, "msg", (), None)
        record.job_date = "2025-08-25"
        data = json.loads(StructuredLogFormatter(include_extra=False).format(record))

        assert "extra" not in data


class TestLogContext:
    def test_fields_attached_inside_block(self, captured):
        logger, handler = captured
        with LogContext(job_date="2025-08-25", hour_range="14-15"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = handler.records
        assert inside.job_date == "2025-08-25"
        assert inside.hour_range == "14-15"
        assert not hasattr(outside, "job_date")

    def test_nested_contexts_merge(self, captured):
        logger, handler = captured
        with LogContext(job_date="2025-08-25"):
            with LogContext(hour_range="03-04"):
                logger.info("nested")

        record = handler.records[0]
        assert record.job_date == "2025-08-25"
        assert record.hour_range == "03-04"

    def test_context_combines_with_extra(self, captured):
        logger, handler = captured
        with LogContext(hour_range="03-04"):
            logger.info("with extra", extra={"operation": "fetch"})

        record = handler.records[0]
        assert record.hour_range == "03-04"
        assert record.operation == "fetch"


class TestOperationTimer:
    def test_logs_start_and_completion(self, captured):
        logger, handler = captured
        with OperationTimer(logger, "fetch"):
            pass

        messages = [r.getMessage() for r in handler.records]
        assert messages[0] == "Starting fetch"
        assert messages[1].startswith("fetch completed in")
        assert handler.records[1].operation == "fetch"

    def test_logs_failure_as_warning(self, captured):
        logger, handler = captured
        with pytest.raises(RuntimeError):
            with OperationTimer(logger, "upload"):
                raise RuntimeError("boom")

        failure = handler.records[-1]
        assert failure.levelno == logging.WARNING
        assert "upload failed after" in failure.getMessage()
