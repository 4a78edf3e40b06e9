"""
Data Directory Structure Management for cronlog

This module defines and manages the local directory structure used by the
archiver. All paths are relative to the DATA_ROOT (~/.cronlog by default).

Directory structure:
    .cronlog/
    ├── db/cronlog.sqlite          # SQLite slot store (source of truth)
    ├── logs/                      # Rotating text and JSON-lines logs
    ├── staging/YYYY-MM-DD/        # Local artifacts awaiting upload
    │   └── HH-HH.<format>
    └── archive/                   # Root of the "local" storage backend
"""

import logging
import os
from datetime import date, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

# Allow override via environment variable for testing
_data_root_override = os.environ.get("CRONLOG_DATA_ROOT")
DATA_ROOT: Path = Path(_data_root_override) if _data_root_override else Path.home() / ".cronlog"

# Primary directories
DB_DIR: Path = DATA_ROOT / "db"
LOG_DIR: Path = DATA_ROOT / "logs"
STAGING_DIR: Path = DATA_ROOT / "staging"
LOCAL_ARCHIVE_DIR: Path = DATA_ROOT / "archive"

# Database file path
DB_PATH: Path = DB_DIR / "cronlog.sqlite"

# All directories that should exist
_REQUIRED_DIRS: tuple[Path, ...] = (
    DB_DIR,
    LOG_DIR,
    STAGING_DIR,
    LOCAL_ARCHIVE_DIR,
)


def ensure_data_directories() -> dict[str, bool]:
    """
    Ensure all required data directories exist.

    Creates the directory structure on first run. This function is idempotent
    and safe to call multiple times.

    Returns:
        Dictionary mapping directory names to whether they were created (True)
        or already existed (False).
    """
    results: dict[str, bool] = {}

    for dir_path in _REQUIRED_DIRS:
        try:
            created = not dir_path.exists()
            dir_path.mkdir(parents=True, exist_ok=True)
            results[str(dir_path.relative_to(DATA_ROOT))] = created
            if created:
                logger.info(f"Created directory: {dir_path}")
        except OSError as e:
            logger.error(f"Failed to create directory {dir_path}: {e}")
            raise

    return results


def get_artifact_path(
    output_dir: Path | str,
    job_date: date | datetime,
    hour_range: str,
    file_format: str,
    attempt: int | None = None,
) -> Path:
    """
    Get the local staging path for an hour slot artifact.

    Each attempt gets its own file, so an upload abandoned after a timeout
    can only ever touch the artifact of its own attempt.

    Args:
        output_dir: Root of the local staging area
        job_date: Date of the job the slot belongs to
        hour_range: Slot key such as "14-15"
        file_format: Archive format, used as the file extension
        attempt: Attempt number of the slot (omitted for ad-hoc writes)

    Returns:
        Path of the form <output_dir>/YYYY-MM-DD/HH-HH[.attempt-N].<format>
    """
    if isinstance(job_date, datetime):
        job_date = job_date.date()

    name = hour_range if attempt is None else f"{hour_range}.attempt-{attempt}"
    return Path(output_dir) / job_date.isoformat() / f"{name}.{file_format}"


def get_storage_key(job_date: date | datetime, hour_range: str, file_format: str) -> str:
    """
    Get the destination key for an hour slot artifact.

    The key is relative to the backend namespace; backends prepend their own
    key prefix.

    Returns:
        Key of the form YYYY-MM-DD/HH-HH.<format>
    """
    if isinstance(job_date, datetime):
        job_date = job_date.date()

    return f"{job_date.isoformat()}/{hour_range}.{file_format}"


if __name__ == "__main__":
    import fire

    def init():
        """Initialize all data directories."""
        results = ensure_data_directories()
        created_count = sum(1 for created in results.values() if created)
        return {
            "data_root": str(DATA_ROOT),
            "directories": results,
            "created": created_count,
            "total": len(results),
        }

    fire.Fire({"init": init})
