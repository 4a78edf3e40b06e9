"""Archive storage backends and the upload dispatcher."""

from cronlog.storage.base import DeleteResult, StorageBackend, StoredObject
from cronlog.storage.dispatcher import UploadDispatcher, UploadReceipt
from cronlog.storage.factory import available_providers, create_backend, register_backend

__all__ = [
    "DeleteResult",
    "StorageBackend",
    "StoredObject",
    "UploadDispatcher",
    "UploadReceipt",
    "available_providers",
    "create_backend",
    "register_backend",
]
