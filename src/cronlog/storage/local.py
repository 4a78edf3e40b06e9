"""
Local filesystem backend.

Objects live under ``root/<key_prefix>/<key>``. Uploads copy to a hidden
temporary file in the destination directory and rename it into place, which
is atomic on POSIX filesystems.
"""

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from cronlog.core.errors import UploadAuthError, UploadError
from cronlog.storage.base import DeleteResult, StorageBackend, StoredObject

logger = logging.getLogger(__name__)


class LocalBackend(StorageBackend):
    """Archive storage on a local or mounted filesystem."""

    name = "local"

    def __init__(self, root: Path | str, key_prefix: str = ""):
        super().__init__(key_prefix)
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / self.full_key(key)).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise UploadError(f"Key escapes storage root: {key}")
        return path

    def put(self, local_path: Path, key: str) -> str:
        destination = self._path(key)
        tmp_name: str | None = None

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=f".{destination.name}.", suffix=".part")
            os.close(fd)
            shutil.copyfile(local_path, tmp_name)
            os.replace(tmp_name, destination)
            tmp_name = None
        except PermissionError as e:
            raise UploadAuthError(f"Permission denied writing {destination}: {e}") from e
        except OSError as e:
            raise UploadError(f"Cannot store {local_path} at {destination}: {e}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        return str(destination)

    def delete(self, key: str) -> DeleteResult:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return DeleteResult.NOT_FOUND
        except OSError as e:
            raise UploadError(f"Cannot delete {path}: {e}") from e

        self._prune_empty_dirs(path.parent)
        return DeleteResult.DELETED

    def _prune_empty_dirs(self, directory: Path) -> None:
        """Remove directories left empty by deletes, stopping at the root."""
        root = self.root.resolve()
        while directory != root and directory.is_relative_to(root):
            try:
                directory.rmdir()
            except OSError:
                return
            logger.debug(f"Removed empty directory: {directory}")
            directory = directory.parent

    def list_objects(self) -> Iterator[StoredObject]:
        base = self.root / self.key_prefix if self.key_prefix else self.root
        if not base.exists():
            return

        for path in sorted(base.rglob("*")):
            # Skip in-flight uploads
            if not path.is_file() or path.name.startswith("."):
                continue
            stat = path.stat()
            yield StoredObject(
                key=path.relative_to(base).as_posix(),
                size_bytes=stat.st_size,
                last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )

    def describe(self) -> dict:
        return {**super().describe(), "root": str(self.root)}
