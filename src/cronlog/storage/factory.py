"""
Backend selection.

Providers are looked up in a registry rather than switched on, so a new
backend is one ``register_backend`` call away.
"""

import logging
from collections.abc import Callable

from cronlog.core.config import Settings
from cronlog.core.errors import ConfigurationError
from cronlog.storage.azure import AzureBlobBackend
from cronlog.storage.base import StorageBackend
from cronlog.storage.gcs import GCSBackend
from cronlog.storage.local import LocalBackend
from cronlog.storage.s3 import S3Backend

logger = logging.getLogger(__name__)

BackendBuilder = Callable[[Settings], StorageBackend]


def _build_local(settings: Settings) -> StorageBackend:
    return LocalBackend(root=settings.local_storage_root, key_prefix=settings.key_prefix)


def _build_s3(settings: Settings) -> StorageBackend:
    s3 = settings.s3
    return S3Backend(
        bucket=s3.bucket,
        key_prefix=settings.key_prefix,
        region=s3.region,
        access_key_id=s3.access_key_id,
        secret_access_key=s3.secret_access_key,
        endpoint_url=s3.endpoint_url,
    )


def _build_gcs(settings: Settings) -> StorageBackend:
    gcs = settings.gcs
    return GCSBackend(
        bucket=gcs.bucket,
        key_prefix=settings.key_prefix,
        project_id=gcs.project_id,
        key_filename=gcs.key_filename,
    )


def _build_azure(settings: Settings) -> StorageBackend:
    azure = settings.azure
    return AzureBlobBackend(
        container_name=azure.container_name,
        key_prefix=settings.key_prefix,
        connection_string=azure.connection_string,
        account_url=azure.account_url,
    )


_REGISTRY: dict[str, BackendBuilder] = {
    "local": _build_local,
    "s3": _build_s3,
    "gcs": _build_gcs,
    "azure": _build_azure,
}


def register_backend(provider: str, builder: BackendBuilder) -> None:
    """Register (or replace) the builder for a provider name."""
    _REGISTRY[provider] = builder


def available_providers() -> list[str]:
    return sorted(_REGISTRY)


def create_backend(settings: Settings) -> StorageBackend:
    """Build the backend named by ``settings.upload_provider``."""
    builder = _REGISTRY.get(settings.upload_provider)
    if builder is None:
        raise ConfigurationError(
            f"Unknown upload provider '{settings.upload_provider}'. Available: {', '.join(available_providers())}"
        )
    backend = builder(settings)
    logger.info(f"Using {backend.name} storage backend")
    return backend
