"""
Exception hierarchy for cronlog.

ConfigurationError is the only error allowed to propagate out of startup.
Everything deriving from SlotProcessingError is caught by the hour slot
processor and recorded on the slot instead of escaping to the scheduler.
"""


class CronlogError(Exception):
    """Base class for all cronlog errors."""


class ConfigurationError(CronlogError):
    """Invalid or missing settings. Fatal at startup, never retried."""


class SlotProcessingError(CronlogError):
    """A failure while processing a single hour slot. Retryable."""


class FetchError(SlotProcessingError):
    """The data source was unavailable or the window query failed."""


class WriteError(SlotProcessingError):
    """Serializing records to the local artifact failed."""


class UploadError(SlotProcessingError):
    """The storage backend was unreachable or rejected the upload."""


class UploadAuthError(UploadError):
    """The storage backend rejected our credentials or permissions.

    Fatal for the current attempt only: credentials may be fixed externally
    before the slot is retried.
    """


class PermanentFailure(CronlogError):
    """A slot exhausted its attempts and will not be retried automatically."""

    def __init__(
        self,
        job_date: str,
        hour_range: str,
        attempts: int,
        last_error: str | None = None,
    ):
        super().__init__(
            f"Slot {job_date} {hour_range} permanently failed after {attempts} attempts"
            + (f": {last_error}" if last_error else "")
        )
        self.job_date = job_date
        self.hour_range = hour_range
        self.attempts = attempts
        self.last_error = last_error
