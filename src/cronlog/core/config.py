"""
Configuration for cronlog.

Settings are a pydantic model. ``load_settings`` layers, lowest priority first:
defaults, a ``.env`` file, ``CRONLOG_*`` environment variables, explicit
overrides. Nested backend settings use a section prefix, e.g.
``CRONLOG_S3_BUCKET`` populates ``settings.s3.bucket``.

Any validation problem is raised as ConfigurationError so startup halts
before a single slot is touched.
"""

import logging
import os
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from cronlog.core.errors import ConfigurationError
from cronlog.core.paths import DB_PATH, LOCAL_ARCHIVE_DIR, LOG_DIR, STAGING_DIR

logger = logging.getLogger(__name__)

ENV_PREFIX = "CRONLOG_"

FILE_FORMATS = ("json", "jsonl", "csv", "txt")
UPLOAD_PROVIDERS = ("local", "s3", "gcs", "azure")

_NESTED_SECTIONS = ("s3", "gcs", "azure")


class S3Settings(BaseModel):
    """Amazon S3 (or S3-compatible) backend settings."""

    bucket: str = Field(..., min_length=1)
    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    endpoint_url: str | None = Field(None, description="For S3-compatible services")

    # Bucket lifecycle rule installed by `cronlog sweep --lifecycle`
    transition_to_ia_days: int | None = None
    transition_to_glacier_days: int | None = None
    transition_to_deep_archive_days: int | None = None
    expiration_days: int | None = None

    @field_validator(
        "transition_to_ia_days",
        "transition_to_glacier_days",
        "transition_to_deep_archive_days",
        "expiration_days",
    )
    @classmethod
    def validate_days(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("lifecycle days must be positive")
        return v


class GCSSettings(BaseModel):
    """Google Cloud Storage backend settings."""

    bucket: str = Field(..., min_length=1)
    project_id: str | None = None
    key_filename: str | None = Field(None, description="Path to a service account key file")


class AzureSettings(BaseModel):
    """Azure Blob Storage backend settings."""

    container_name: str = Field(..., min_length=1)
    connection_string: str | None = None
    account_url: str | None = Field(None, description="Used with DefaultAzureCredential")

    @model_validator(mode="after")
    def check_credentials(self) -> "AzureSettings":
        if not self.connection_string and not self.account_url:
            raise ValueError("azure requires connection_string or account_url")
        return self


class Settings(BaseModel):
    """All recognised cronlog options."""

    # Slot lifecycle
    max_attempts: int = Field(3, ge=1, description="Attempts before a slot is permanently failed")
    timezone: str = "UTC"

    # Triggers (crontab expressions)
    daily_trigger_schedule: str = "0 0 * * *"
    hourly_trigger_schedule: str = "0 * * * *"
    retry_trigger_schedule: str = "*/30 * * * *"
    retention_sweep_schedule: str = "0 2 * * *"
    storage_sweep_schedule: str | None = None
    trigger_max_instances: int = Field(2, ge=1)

    # Retention
    db_retention_days: int | None = None
    storage_retention_days: int | None = None
    retention_auto_cleanup: bool = Field(True, description="Schedule the retention sweeps")

    # Local staging and archive format
    db_path: Path = DB_PATH
    output_directory: Path = STAGING_DIR
    file_format: Literal["json", "jsonl", "csv", "txt"] = "json"
    keep_failed_artifacts: bool = True

    # Storage
    upload_provider: str = Field("local", description="Name of a registered storage backend")
    key_prefix: str = ""
    local_storage_root: Path = LOCAL_ARCHIVE_DIR
    s3: S3Settings | None = None
    gcs: GCSSettings | None = None
    azure: AzureSettings | None = None

    # Step timeouts and concurrency
    fetch_timeout_seconds: float = Field(60.0, gt=0)
    upload_timeout_seconds: float = Field(300.0, gt=0)
    retry_concurrency: int = Field(4, ge=1)
    stale_processing_minutes: int = Field(60, ge=1)

    # Backfill
    backfill_on_start: bool = True
    max_backfill_per_run: int = Field(24, ge=1)

    # Data source
    fetcher: str | None = Field(None, description="'module:attribute' of a DataFetcher or callable")
    source_db_path: Path | None = None
    source_table: str | None = None
    source_timestamp_column: str = "timestamp"

    # Logging
    log_level: str = "INFO"
    log_dir: Path = LOG_DIR

    @field_validator(
        "daily_trigger_schedule",
        "hourly_trigger_schedule",
        "retry_trigger_schedule",
        "retention_sweep_schedule",
        "storage_sweep_schedule",
    )
    @classmethod
    def validate_cron(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            CronTrigger.from_crontab(v)
        except ValueError as e:
            raise ValueError(f"invalid cron expression {v!r}: {e}") from e
        return v

    @field_validator("db_retention_days", "storage_retention_days")
    @classmethod
    def validate_retention(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError("retention days must not be negative")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {v!r}") from e
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @field_validator("upload_provider")
    @classmethod
    def validate_upload_provider(cls, v: str) -> str:
        from cronlog.storage.factory import available_providers

        provider = v.strip().lower()
        if provider not in available_providers():
            raise ValueError(f"unknown upload provider {v!r}, available: {', '.join(available_providers())}")
        return provider

    @field_validator("key_prefix")
    @classmethod
    def strip_key_prefix(cls, v: str) -> str:
        return v.strip().strip("/")

    @model_validator(mode="after")
    def check_provider_settings(self) -> "Settings":
        if self.upload_provider in _NESTED_SECTIONS and getattr(self, self.upload_provider) is None:
            raise ValueError(
                f"upload_provider '{self.upload_provider}' requires "
                f"{ENV_PREFIX}{self.upload_provider.upper()}_* settings"
            )
        if self.source_table and not self.source_db_path:
            raise ValueError("source_table requires source_db_path")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def effective_storage_sweep_schedule(self) -> str:
        return self.storage_sweep_schedule or self.retention_sweep_schedule

    def describe(self) -> dict[str, Any]:
        """Settings with secrets masked, for logging and the CLI."""
        data = self.model_dump(mode="json")
        for section in _NESTED_SECTIONS:
            values = data.get(section) or {}
            for key in ("secret_access_key", "access_key_id", "connection_string"):
                if values.get(key):
                    values[key] = "***"
        return data


def _collect_env(environ: dict[str, str]) -> dict[str, Any]:
    """Map CRONLOG_* variables onto Settings field names."""
    values: dict[str, Any] = {}
    nested: dict[str, dict[str, str]] = {}

    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX) :].lower()
        if name == "data_root":
            continue

        section = next((s for s in _NESTED_SECTIONS if name.startswith(f"{s}_")), None)
        if section:
            nested.setdefault(section, {})[name[len(section) + 1 :]] = value
        elif name in Settings.model_fields:
            values[name] = value

    values.update(nested)
    return values


def load_settings(
    env_file: Path | str | None = None,
    environ: dict[str, str] | None = None,
    **overrides: Any,
) -> Settings:
    """
    Build validated Settings.

    Args:
        env_file: Optional .env file loaded before reading the environment
        environ: Environment mapping (defaults to os.environ)
        **overrides: Explicit values that win over the environment

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If any option is missing or invalid
    """
    if env_file is not None:
        env_path = Path(env_file)
        if not env_path.exists():
            raise ConfigurationError(f"env file not found: {env_path}")
        load_dotenv(env_path, override=False)
    elif environ is None:
        load_dotenv(override=False)

    values = _collect_env(dict(os.environ if environ is None else environ))
    for key, value in overrides.items():
        if value is None:
            continue
        if key in _NESTED_SECTIONS and isinstance(value, dict):
            values[key] = {**values.get(key, {}), **value}
        else:
            values[key] = value

    try:
        settings = Settings(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Configuration validation failed: {problems}") from e

    logger.debug(f"Loaded settings: provider={settings.upload_provider}, tz={settings.timezone}")
    return settings
