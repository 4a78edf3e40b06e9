"""
Google Cloud Storage backend (google-cloud-storage).
"""

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from cronlog.core.errors import UploadAuthError, UploadError
from cronlog.storage.base import DeleteResult, StorageBackend, StoredObject

logger = logging.getLogger(__name__)


class GCSBackend(StorageBackend):
    """Archive storage in a GCS bucket."""

    name = "gcs"

    def __init__(
        self,
        bucket: str,
        key_prefix: str = "",
        project_id: str | None = None,
        key_filename: str | None = None,
        client: Any = None,
    ):
        super().__init__(key_prefix)
        self.bucket_name = bucket
        self.project_id = project_id
        self.key_filename = key_filename
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            from google.cloud import storage

            if self.key_filename:
                self._client = storage.Client.from_service_account_json(self.key_filename, project=self.project_id)
            else:
                self._client = storage.Client(project=self.project_id)
        return self._client

    def _translate(self, e: Exception, action: str) -> UploadError:
        from google.api_core.exceptions import Forbidden, Unauthorized

        if isinstance(e, Forbidden | Unauthorized):
            return UploadAuthError(f"GCS {action} rejected: {e}")
        return UploadError(f"GCS {action} failed: {type(e).__name__}: {e}")

    def put(self, local_path: Path, key: str) -> str:
        from google.api_core.exceptions import GoogleAPIError
        from google.auth.exceptions import DefaultCredentialsError

        full_key = self.full_key(key)
        try:
            blob = self.client.bucket(self.bucket_name).blob(full_key)
            blob.upload_from_filename(str(local_path))
        except DefaultCredentialsError as e:
            raise UploadAuthError(f"GCS credentials unavailable: {e}") from e
        except GoogleAPIError as e:
            raise self._translate(e, "upload") from e

        logger.debug(f"Uploaded {local_path} to gs://{self.bucket_name}/{full_key}")
        return f"gs://{self.bucket_name}/{full_key}"

    def delete(self, key: str) -> DeleteResult:
        from google.api_core.exceptions import GoogleAPIError, NotFound

        try:
            self.client.bucket(self.bucket_name).blob(self.full_key(key)).delete()
        except NotFound:
            return DeleteResult.NOT_FOUND
        except GoogleAPIError as e:
            raise self._translate(e, "delete") from e
        return DeleteResult.DELETED

    def list_objects(self) -> Iterator[StoredObject]:
        from google.api_core.exceptions import GoogleAPIError

        try:
            for blob in self.client.list_blobs(self.bucket_name, prefix=self.list_prefix or None):
                yield StoredObject(
                    key=self.relative_key(blob.name),
                    size_bytes=blob.size or 0,
                    last_modified=blob.updated,
                )
        except GoogleAPIError as e:
            raise self._translate(e, "list") from e

    def describe(self) -> dict:
        return {**super().describe(), "bucket": self.bucket_name, "project_id": self.project_id}
