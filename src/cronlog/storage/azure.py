"""
Azure Blob Storage backend (azure-storage-blob).

Authenticates with a connection string when one is configured, otherwise
with DefaultAzureCredential against ``account_url``.
"""

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from cronlog.core.errors import UploadAuthError, UploadError
from cronlog.storage.base import DeleteResult, StorageBackend, StoredObject

logger = logging.getLogger(__name__)


class AzureBlobBackend(StorageBackend):
    """Archive storage in an Azure Blob container."""

    name = "azure"

    def __init__(
        self,
        container_name: str,
        key_prefix: str = "",
        connection_string: str | None = None,
        account_url: str | None = None,
        container_client: Any = None,
    ):
        super().__init__(key_prefix)
        self.container_name = container_name
        self._connection_string = connection_string
        self.account_url = account_url
        self._container_client = container_client

    @property
    def container_client(self) -> Any:
        if self._container_client is None:
            from azure.storage.blob import BlobServiceClient

            if self._connection_string:
                service = BlobServiceClient.from_connection_string(self._connection_string)
            else:
                from azure.identity import DefaultAzureCredential

                service = BlobServiceClient(account_url=self.account_url, credential=DefaultAzureCredential())
            self._container_client = service.get_container_client(self.container_name)
        return self._container_client

    def _translate(self, e: Exception, action: str) -> UploadError:
        from azure.core.exceptions import ClientAuthenticationError

        if isinstance(e, ClientAuthenticationError):
            return UploadAuthError(f"Azure {action} rejected: {e}")
        if getattr(e, "status_code", None) == 403:
            return UploadAuthError(f"Azure {action} forbidden: {e}")
        return UploadError(f"Azure {action} failed: {type(e).__name__}: {e}")

    def put(self, local_path: Path, key: str) -> str:
        from azure.core.exceptions import AzureError

        full_key = self.full_key(key)
        try:
            blob_client = self.container_client.get_blob_client(full_key)
            with open(local_path, "rb") as f:
                blob_client.upload_blob(f, overwrite=True)
        except AzureError as e:
            raise self._translate(e, "upload") from e
        except OSError as e:
            raise UploadError(f"Cannot read {local_path}: {e}") from e

        logger.debug(f"Uploaded {local_path} to azure://{self.container_name}/{full_key}")
        return blob_client.url

    def delete(self, key: str) -> DeleteResult:
        from azure.core.exceptions import AzureError, ResourceNotFoundError

        try:
            self.container_client.delete_blob(self.full_key(key))
        except ResourceNotFoundError:
            return DeleteResult.NOT_FOUND
        except AzureError as e:
            raise self._translate(e, "delete") from e
        return DeleteResult.DELETED

    def list_objects(self) -> Iterator[StoredObject]:
        from azure.core.exceptions import AzureError

        try:
            for blob in self.container_client.list_blobs(name_starts_with=self.list_prefix or None):
                yield StoredObject(
                    key=self.relative_key(blob.name),
                    size_bytes=blob.size or 0,
                    last_modified=blob.last_modified,
                )
        except AzureError as e:
            raise self._translate(e, "list") from e

    def describe(self) -> dict:
        return {**super().describe(), "container": self.container_name, "account_url": self.account_url}
