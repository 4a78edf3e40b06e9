"""
Amazon S3 backend (boto3).

Works with any S3-compatible service through ``endpoint_url``. The client is
created lazily on first use so importing this module never needs credentials.
"""

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from cronlog.core.errors import UploadAuthError, UploadError
from cronlog.storage.base import DeleteResult, StorageBackend, StoredObject

logger = logging.getLogger(__name__)

# Error codes that mean our credentials or permissions are wrong
AUTH_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "ExpiredToken",
        "InvalidToken",
        "AllAccessDisabled",
    }
)
NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})

LIFECYCLE_RULE_ID = "cronlog-retention"


class S3Backend(StorageBackend):
    """Archive storage in an S3 bucket."""

    name = "s3"

    def __init__(
        self,
        bucket: str,
        key_prefix: str = "",
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ):
        super().__init__(key_prefix)
        self.bucket = bucket
        self.region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self.endpoint_url = endpoint_url
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            import boto3

            self._client = boto3.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                endpoint_url=self.endpoint_url,
            )
        return self._client

    def _translate(self, e: Exception, action: str) -> UploadError:
        from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError

        if isinstance(e, NoCredentialsError | PartialCredentialsError):
            return UploadAuthError(f"S3 {action} failed: {e}")
        if isinstance(e, ClientError):
            code = e.response.get("Error", {}).get("Code", "")
            if code in AUTH_ERROR_CODES:
                return UploadAuthError(f"S3 {action} rejected ({code}): {e}")
            return UploadError(f"S3 {action} failed ({code}): {e}")
        return UploadError(f"S3 {action} failed: {type(e).__name__}: {e}")

    def put(self, local_path: Path, key: str) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        full_key = self.full_key(key)
        try:
            # upload_file switches to multipart for large files; S3 only
            # exposes the object once the upload has completed
            self.client.upload_file(str(local_path), self.bucket, full_key)
        except (BotoCoreError, ClientError) as e:
            raise self._translate(e, "upload") from e

        logger.debug(f"Uploaded {local_path} to s3://{self.bucket}/{full_key}")
        return f"s3://{self.bucket}/{full_key}"

    def delete(self, key: str) -> DeleteResult:
        from botocore.exceptions import BotoCoreError, ClientError

        full_key = self.full_key(key)
        try:
            # delete_object succeeds for missing keys, so check first
            self.client.head_object(Bucket=self.bucket, Key=full_key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code", "") in NOT_FOUND_CODES:
                return DeleteResult.NOT_FOUND
            raise self._translate(e, "delete") from e
        except BotoCoreError as e:
            raise self._translate(e, "delete") from e

        try:
            self.client.delete_object(Bucket=self.bucket, Key=full_key)
        except (BotoCoreError, ClientError) as e:
            raise self._translate(e, "delete") from e
        return DeleteResult.DELETED

    def list_objects(self) -> Iterator[StoredObject]:
        from botocore.exceptions import BotoCoreError, ClientError

        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.list_prefix):
                for item in page.get("Contents", []):
                    yield StoredObject(
                        key=self.relative_key(item["Key"]),
                        size_bytes=item.get("Size", 0),
                        last_modified=item["LastModified"],
                    )
        except (BotoCoreError, ClientError) as e:
            raise self._translate(e, "list") from e

    def apply_lifecycle(
        self,
        transition_to_ia_days: int | None = None,
        transition_to_glacier_days: int | None = None,
        transition_to_deep_archive_days: int | None = None,
        expiration_days: int | None = None,
    ) -> dict[str, Any] | None:
        """
        Install a bucket lifecycle rule covering this backend's namespace.

        Replaces the bucket's lifecycle configuration. Returns the rule that
        was applied, or None if no transition or expiration was given.
        """
        from botocore.exceptions import BotoCoreError, ClientError

        transitions = [
            {"Days": days, "StorageClass": storage_class}
            for days, storage_class in (
                (transition_to_ia_days, "STANDARD_IA"),
                (transition_to_glacier_days, "GLACIER"),
                (transition_to_deep_archive_days, "DEEP_ARCHIVE"),
            )
            if days
        ]
        if not transitions and not expiration_days:
            logger.warning("No S3 lifecycle settings configured, nothing to apply")
            return None

        rule: dict[str, Any] = {
            "ID": LIFECYCLE_RULE_ID,
            "Status": "Enabled",
            "Filter": {"Prefix": self.list_prefix},
        }
        if transitions:
            rule["Transitions"] = transitions
        if expiration_days:
            rule["Expiration"] = {"Days": expiration_days}

        try:
            self.client.put_bucket_lifecycle_configuration(
                Bucket=self.bucket,
                LifecycleConfiguration={"Rules": [rule]},
            )
        except (BotoCoreError, ClientError) as e:
            raise self._translate(e, "lifecycle update") from e

        logger.info(f"Applied lifecycle rule to s3://{self.bucket}/{self.list_prefix}")
        return rule

    def describe(self) -> dict:
        return {**super().describe(), "bucket": self.bucket, "region": self.region, "endpoint_url": self.endpoint_url}
