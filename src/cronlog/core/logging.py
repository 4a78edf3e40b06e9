"""
Logging infrastructure for cronlog.

Provides human-readable console output, a rotating text log and a rotating
JSON-lines log for aggregation. Slot processing attaches ``job_date`` and
``hour_range`` to every record emitted inside a ``LogContext`` block.
"""

import contextvars
import json
import logging
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from cronlog.core.paths import LOG_DIR

# Log format for console (human-readable)
CONSOLE_FORMAT = "%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
CONSOLE_DATE_FORMAT = "%H:%M:%S"

# Log format for file (more detail)
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Log rotation settings
MAX_LOG_SIZE_MB = 10
MAX_LOG_FILES = 5

_STANDARD_RECORD_FIELDS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)

# Per-thread/per-task context fields merged into every record
_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "cronlog_log_context", default={}
)
_factory_installed = False


class StructuredLogFormatter(logging.Formatter):
    """
    Formatter that outputs structured JSON logs.

    Extra fields (including LogContext fields) are nested under "extra".
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extra_fields = {}
            for key, value in record.__dict__.items():
                if key in _STANDARD_RECORD_FIELDS:
                    continue
                try:
                    json.dumps(value)
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

            if extra_fields:
                log_data["extra"] = extra_fields

        return json.dumps(log_data)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that adds colors to console output.
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str | None = None, datefmt: str | None = None, use_colors: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record with optional colors."""
        if self.use_colors:
            original_levelname = record.levelname
            color = self.COLORS.get(record.levelno, "")
            record.levelname = f"{color}{record.levelname}{self.RESET}"
            try:
                return super().format(record)
            finally:
                record.levelname = original_levelname
        return super().format(record)


def _install_context_factory() -> None:
    """Install a record factory that copies LogContext fields onto records."""
    global _factory_installed
    if _factory_installed:
        return

    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return record

    logging.setLogRecordFactory(record_factory)
    _factory_installed = True


def setup_logging(
    console_level: int | str = DEFAULT_CONSOLE_LEVEL,
    file_level: int | str = DEFAULT_FILE_LEVEL,
    log_dir: Path | str | None = None,
    log_file: str | None = "cronlog.log",
    structured_file: str | None = "cronlog.jsonl",
    use_colors: bool = True,
    capture_warnings: bool = True,
) -> logging.Logger:
    """
    Set up logging for the archiver process.

    Configures:
    - Console handler with human-readable format
    - Rotating file handler with detailed format (None to disable)
    - Optional JSON log file for structured logging

    Args:
        console_level: Log level for console output
        file_level: Log level for file output
        log_dir: Directory for log files
        log_file: Name of the main log file
        structured_file: Name of the JSON log file (None to disable)
        use_colors: Use colored output in console
        capture_warnings: Capture Python warnings to log

    Returns:
        Root logger instance
    """
    if isinstance(console_level, str):
        console_level = getattr(logging, console_level.upper())
    if isinstance(file_level, str):
        file_level = getattr(logging, file_level.upper())

    log_dir = LOG_DIR if log_dir is None else Path(log_dir)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        ColoredConsoleFormatter(
            fmt=CONSOLE_FORMAT,
            datefmt=CONSOLE_DATE_FORMAT,
            use_colors=use_colors,
        )
    )
    root_logger.addHandler(console_handler)

    if log_file or structured_file:
        log_dir.mkdir(parents=True, exist_ok=True)

    if log_file:
        file_handler = RotatingFileHandler(
            log_dir / log_file,
            maxBytes=MAX_LOG_SIZE_MB * 1024 * 1024,
            backupCount=MAX_LOG_FILES,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
        root_logger.addHandler(file_handler)

    if structured_file:
        structured_handler = RotatingFileHandler(
            log_dir / structured_file,
            maxBytes=MAX_LOG_SIZE_MB * 1024 * 1024,
            backupCount=MAX_LOG_FILES,
            encoding="utf-8",
        )
        structured_handler.setLevel(file_level)
        structured_handler.setFormatter(StructuredLogFormatter())
        root_logger.addHandler(structured_handler)

    if capture_warnings:
        logging.captureWarnings(True)

    # APScheduler logs every trigger execution at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    _install_context_factory()

    root_logger.info(
        f"Logging initialized (console: {logging.getLevelName(console_level)}, "
        f"file: {logging.getLevelName(file_level)})"
    )

    return root_logger


class LogContext:
    """
    Context manager for adding context to log messages.

    Context is stored in a ContextVar, so concurrent slots processed on
    different threads never see each other's fields.

    Usage:
        with LogContext(job_date="2025-08-25", hour_range="14-15"):
            logger.info("Processing...")  # Will include extra fields
    """

    def __init__(self, **context: Any):
        self.context = context
        self._token: contextvars.Token | None = None

    def __enter__(self):
        _install_context_factory()
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def log_exception(
    logger: logging.Logger,
    message: str,
    exc: Exception,
    level: int = logging.ERROR,
    **extra: Any,
) -> None:
    """
    Log an exception with context.

    Args:
        logger: Logger to use
        message: Log message
        exc: Exception to log
        level: Log level
        **extra: Extra fields to include
    """
    logger.log(
        level,
        f"{message}: {type(exc).__name__}: {exc}",
        exc_info=True,
        extra=extra,
    )


def log_timing(
    logger: logging.Logger,
    operation: str,
    duration_seconds: float,
    level: int = logging.DEBUG,
    **extra: Any,
) -> None:
    """Log how long an operation took."""
    if duration_seconds < 1:
        duration_str = f"{duration_seconds * 1000:.1f}ms"
    else:
        duration_str = f"{duration_seconds:.2f}s"

    logger.log(
        level,
        f"{operation} completed in {duration_str}",
        extra={"operation": operation, "duration_seconds": duration_seconds, **extra},
    )


class OperationTimer:
    """
    Context manager for timing operations and logging the result.

    Usage:
        with OperationTimer(logger, "process_slot"):
            # do work
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.DEBUG,
        **extra: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.extra = extra
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.log(
            self.level,
            f"Starting {self.operation}",
            extra={"operation": self.operation, **self.extra},
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return
        duration = time.monotonic() - self.start_time
        if exc_type is None:
            log_timing(self.logger, self.operation, duration, self.level, **self.extra)
        else:
            self.logger.log(
                logging.WARNING,
                f"{self.operation} failed after {duration:.2f}s: {exc_val}",
                extra={"operation": self.operation, "duration_seconds": duration, **self.extra},
            )
