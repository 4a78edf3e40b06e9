"""
Retry and timeout helpers for cronlog.

Provides exponential backoff for transient store errors (SQLite "database is
locked" under concurrent triggers) and a per-step timeout wrapper used by the
hour slot processor.

Slot-level retries are not handled here: a failed slot is re-attempted by the
retry coordinator on its own schedule.
"""

import concurrent.futures
import contextvars
import dataclasses
import functools
import logging
import random
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import ParamSpec, TypeVar

from cronlog.core.errors import CronlogError

logger = logging.getLogger(__name__)

# Type variables for generic retry decorator
P = ParamSpec("P")
T = TypeVar("T")


# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 60.0
DEFAULT_EXPONENTIAL_BASE = 2.0
DEFAULT_JITTER_FACTOR = 0.1


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    exponential_base: float = DEFAULT_EXPONENTIAL_BASE
    jitter_factor: float = DEFAULT_JITTER_FACTOR
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,)

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for a given attempt number using exponential backoff.

        Args:
            attempt: The current attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base**attempt)

        jitter = delay * self.jitter_factor * (2 * random.random() - 1)
        delay += jitter

        return min(delay, self.max_delay)


class RetryError(CronlogError):
    """Exception raised when all retries are exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Exception | None = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


DATABASE_RETRY_CONFIG = RetryConfig(
    max_retries=5,
    base_delay=0.05,
    max_delay=2.0,
    exponential_base=2.0,
    jitter_factor=0.2,
    retryable_exceptions=(sqlite3.OperationalError,),
)


def retry_with_backoff(
    config: RetryConfig | None = None,
    max_retries: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
    on_retry: Callable[[int, Exception], None] | None = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        config: RetryConfig object (overrides individual parameters)
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries
        max_delay: Maximum delay between retries
        retryable_exceptions: Exceptions that should trigger a retry
        on_retry: Callback function called on each retry

    Returns:
        Decorated function that retries on failure

    Usage:
        @retry_with_backoff(max_retries=3)
        def claim():
            ...
    """
    if config is None:
        config = RetryConfig()
    else:
        # Copy so shared configs are never mutated
        config = dataclasses.replace(config)

    if max_retries is not None:
        config.max_retries = max_retries
    if base_delay is not None:
        config.base_delay = base_delay
    if max_delay is not None:
        config.max_delay = max_delay
    if retryable_exceptions is not None:
        config.retryable_exceptions = retryable_exceptions

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempts = 0

            while True:
                try:
                    return func(*args, **kwargs)
                except config.retryable_exceptions as e:
                    attempts += 1

                    if attempts > config.max_retries:
                        logger.error(
                            f"All {config.max_retries} retries exhausted for {func.__name__}: {e}"
                        )
                        raise RetryError(
                            f"Failed after {attempts} attempts: {e}",
                            attempts=attempts,
                            last_error=e,
                        ) from e

                    delay = config.calculate_delay(attempts - 1)
                    logger.warning(
                        f"Retry {attempts}/{config.max_retries} for {func.__name__} "
                        f"after {delay:.2f}s: {e}"
                    )

                    if on_retry:
                        on_retry(attempts, e)

                    time.sleep(delay)

        return wrapper

    return decorator


def retry_database_operation(func: Callable[P, T]) -> Callable[P, T]:
    """Decorator for retrying slot store operations on lock contention."""
    return retry_with_backoff(config=DATABASE_RETRY_CONFIG)(func)


def run_with_timeout(
    func: Callable[[], T],
    timeout: float | None,
    error_cls: type[Exception],
    step: str,
) -> T:
    """
    Run a blocking step with an upper bound on its duration.

    Exceptions already of ``error_cls`` propagate unchanged; any other
    exception is wrapped in ``error_cls``. A timeout raises ``error_cls`` too,
    so callers treat it exactly like a failed step. The worker thread is not
    interrupted; it is abandoned and finishes in the background. The step
    runs in a copy of the caller's context, so LogContext fields reach its
    log records.

    Args:
        func: Zero-argument callable performing the step
        timeout: Seconds to wait, or None for no limit
        error_cls: Exception type raised on failure or timeout
        step: Step name used in error messages

    Returns:
        Whatever ``func`` returns
    """
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix=f"cronlog-{step}"
    )
    try:
        future = executor.submit(contextvars.copy_context().run, func)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise error_cls(f"{step} timed out after {timeout}s") from e
        except error_cls:
            raise
        except Exception as e:
            raise error_cls(f"{step} failed: {type(e).__name__}: {e}") from e
    finally:
        executor.shutdown(wait=False)
