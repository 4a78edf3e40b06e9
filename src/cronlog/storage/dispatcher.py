"""
Upload dispatcher.

Sends a finished local artifact to the configured backend. The local copy is
removed only once the backend has confirmed the upload; on failure it stays
in place so the next attempt can be diagnosed (the processor decides whether
to keep it).
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path

from cronlog.core.errors import UploadError
from cronlog.core.paths import get_storage_key
from cronlog.storage.base import DeleteResult, StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class UploadReceipt:
    """What the backend acknowledged."""

    key: str
    remote_location: str
    size_bytes: int
    uploaded_at: datetime


class UploadDispatcher:
    """Uploads artifacts through a storage backend."""

    def __init__(self, backend: StorageBackend, file_format: str = "json", remove_local: bool = True):
        self.backend = backend
        self.file_format = file_format
        self.remove_local = remove_local

    def build_key(self, job_date: date, hour_range: str) -> str:
        """Relative object key for a slot, without the backend namespace."""
        return get_storage_key(job_date, hour_range, self.file_format)

    def upload(self, local_path: Path | str, key: str) -> UploadReceipt:
        """
        Upload a local file under ``key``.

        Raises:
            UploadError: If the file is missing or the backend rejected it
            UploadAuthError: If the backend rejected our credentials
        """
        local_path = Path(local_path)
        if not local_path.is_file():
            raise UploadError(f"Artifact not found: {local_path}")

        size = local_path.stat().st_size
        remote_location = self.backend.put(local_path, key)
        receipt = UploadReceipt(
            key=self.backend.full_key(key),
            remote_location=remote_location,
            size_bytes=size,
            uploaded_at=datetime.now(timezone.utc),
        )
        logger.info(f"Uploaded {local_path.name} ({size} bytes) to {remote_location}")

        if self.remove_local:
            try:
                local_path.unlink()
            except OSError as e:
                # The upload itself succeeded; a stale staging file is harmless
                logger.warning(f"Could not remove local artifact {local_path}: {e}")

        return receipt

    def delete(self, key: str) -> DeleteResult:
        return self.backend.delete(key)
