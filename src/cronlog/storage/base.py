"""
Storage backend interface.

Every backend implements the same capability set and is selected by
configuration through the registry in ``cronlog.storage.factory``. Keys
passed in are relative; each backend prepends its own namespace
(``key_prefix``) so several logical streams can share one storage root.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path


class DeleteResult(str, Enum):
    """Outcome of a backend delete."""

    DELETED = "deleted"
    NOT_FOUND = "not_found"


@dataclass
class StoredObject:
    """An archived object as listed by a backend (key relative to the namespace)."""

    key: str
    size_bytes: int
    last_modified: datetime


class StorageBackend(ABC):
    """
    Interface for archive storage.

    ``put`` must be all-or-nothing from a reader's point of view: either the
    whole object becomes visible under the key or nothing changes. Putting the
    same key again overwrites it.
    """

    name: str = "abstract"

    def __init__(self, key_prefix: str = ""):
        self.key_prefix = key_prefix.strip("/")

    def full_key(self, key: str) -> str:
        """Apply the namespace to a relative key."""
        key = key.lstrip("/")
        return f"{self.key_prefix}/{key}" if self.key_prefix else key

    def relative_key(self, full_key: str) -> str:
        """Strip the namespace from a backend key."""
        if self.key_prefix and full_key.startswith(f"{self.key_prefix}/"):
            return full_key[len(self.key_prefix) + 1 :]
        return full_key

    @property
    def list_prefix(self) -> str:
        return f"{self.key_prefix}/" if self.key_prefix else ""

    @abstractmethod
    def put(self, local_path: Path, key: str) -> str:
        """Upload a local file and return its remote location."""

    @abstractmethod
    def delete(self, key: str) -> DeleteResult:
        """Delete an object by relative key."""

    @abstractmethod
    def list_objects(self) -> Iterator[StoredObject]:
        """Iterate over all objects in this backend's namespace."""

    def describe(self) -> dict:
        return {"provider": self.name, "key_prefix": self.key_prefix}
