"""
cronlog Core Module

This module provides core utilities including path management,
configuration, errors, logging and time helpers.
"""

from .errors import (
    ConfigurationError,
    CronlogError,
    FetchError,
    PermanentFailure,
    SlotProcessingError,
    UploadAuthError,
    UploadError,
    WriteError,
)
from .paths import (
    DATA_ROOT,
    DB_DIR,
    DB_PATH,
    LOCAL_ARCHIVE_DIR,
    LOG_DIR,
    STAGING_DIR,
    ensure_data_directories,
    get_artifact_path,
    get_storage_key,
)

__all__ = [
    # Directory paths
    "DATA_ROOT",
    "DB_DIR",
    "DB_PATH",
    "LOG_DIR",
    "STAGING_DIR",
    "LOCAL_ARCHIVE_DIR",
    # Functions
    "ensure_data_directories",
    "get_artifact_path",
    "get_storage_key",
    # Errors
    "CronlogError",
    "ConfigurationError",
    "SlotProcessingError",
    "FetchError",
    "WriteError",
    "UploadError",
    "UploadAuthError",
    "PermanentFailure",
]
