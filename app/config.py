"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


_MB = 1024 * 1024


@dataclass(frozen=True)
class ExternalHTTPSettings:
    """
    Shared HTTP behavior settings for remote instance connectors.
    """

    timeout_seconds: float = 15.0
    max_retries: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    rate_limit_per_second: float = 5.0


@dataclass(frozen=True)
class CacheSettings:
    """
    Ceilings for the process-wide query and metadata caches.
    """

    query_max_entries: int = 200
    query_max_bytes: int = 50 * _MB
    metadata_max_entries: int = 500
    metadata_max_bytes: int = 100 * _MB
    max_item_bytes: int = 10 * _MB
    max_age_seconds: int = 3600
    sweep_interval_seconds: int = 300


@dataclass(frozen=True)
class RemoteQuerySettings:
    """
    Paging behaviour for SQL view execution.
    """

    page_size: int = 1000
    preview_limit: int = 100
    max_pages: int = 100


@dataclass(frozen=True)
class ProcessingSettings:
    """
    Runtime settings for dictionary processing jobs.
    """

    batch_size: int = 50
    delay_between_items_ms: int = 0
    max_recorded_errors: int = 10
    pending_sweep_interval_seconds: int = 120
    executor_workers: int = 4


@dataclass(frozen=True)
class ExportSettings:
    """
    Defaults for analytics exports.
    """

    default_period: str = "THIS_YEAR"
    default_org_unit: str = "USER_ORGUNIT"
    mock_fallback: bool = False


@dataclass(frozen=True)
class CredentialSettings:
    """
    Key material for decrypting stored instance passwords.
    """

    encryption_key: str | None = None


@lru_cache(maxsize=1)
def get_external_http_settings() -> ExternalHTTPSettings:
    """
    Return shared connector HTTP settings from environment variables.
    """

    return ExternalHTTPSettings(
        timeout_seconds=max(1.0, _get_float_env("EXTERNAL_HTTP_TIMEOUT_SECONDS", 15.0)),
        max_retries=max(0, _get_int_env("EXTERNAL_HTTP_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.1, _get_float_env("EXTERNAL_HTTP_BACKOFF_INITIAL_SECONDS", 0.5)),
        backoff_multiplier=max(1.0, _get_float_env("EXTERNAL_HTTP_BACKOFF_MULTIPLIER", 2.0)),
        rate_limit_per_second=max(0.1, _get_float_env("EXTERNAL_HTTP_RATE_LIMIT_PER_SECOND", 5.0)),
    )


@lru_cache(maxsize=1)
def get_cache_settings() -> CacheSettings:
    """
    Return cache ceilings from environment variables.
    """

    return CacheSettings(
        query_max_entries=max(1, _get_int_env("QUERY_CACHE_MAX_ENTRIES", 200)),
        query_max_bytes=max(1, _get_int_env("QUERY_CACHE_MAX_MB", 50)) * _MB,
        metadata_max_entries=max(1, _get_int_env("METADATA_CACHE_MAX_ENTRIES", 500)),
        metadata_max_bytes=max(1, _get_int_env("METADATA_CACHE_MAX_MB", 100)) * _MB,
        max_item_bytes=max(1, _get_int_env("CACHE_MAX_ITEM_MB", 10)) * _MB,
        max_age_seconds=max(1, _get_int_env("CACHE_MAX_AGE_SECONDS", 3600)),
        sweep_interval_seconds=max(1, _get_int_env("CACHE_SWEEP_INTERVAL_SECONDS", 300)),
    )


@lru_cache(maxsize=1)
def get_remote_query_settings() -> RemoteQuerySettings:
    """
    Return SQL view paging settings from environment variables.
    """

    return RemoteQuerySettings(
        page_size=max(1, _get_int_env("SQL_VIEW_PAGE_SIZE", 1000)),
        preview_limit=max(1, _get_int_env("SQL_VIEW_PREVIEW_LIMIT", 100)),
        max_pages=max(1, _get_int_env("SQL_VIEW_MAX_PAGES", 100)),
    )


@lru_cache(maxsize=1)
def get_processing_settings() -> ProcessingSettings:
    """
    Return dictionary processing settings from environment variables.
    """

    return ProcessingSettings(
        batch_size=max(1, _get_int_env("PROCESSING_BATCH_SIZE", 50)),
        delay_between_items_ms=max(0, _get_int_env("PROCESSING_DELAY_BETWEEN_ITEMS_MS", 0)),
        max_recorded_errors=max(1, _get_int_env("PROCESSING_MAX_RECORDED_ERRORS", 10)),
        pending_sweep_interval_seconds=max(10, _get_int_env("PROCESSING_PENDING_SWEEP_SECONDS", 120)),
        executor_workers=max(1, _get_int_env("PROCESSING_EXECUTOR_WORKERS", 4)),
    )


@lru_cache(maxsize=1)
def get_export_settings() -> ExportSettings:
    """
    Return analytics export settings from environment variables.
    """

    return ExportSettings(
        default_period=_get_str_env("EXPORT_DEFAULT_PERIOD", "THIS_YEAR"),
        default_org_unit=_get_str_env("EXPORT_DEFAULT_ORG_UNIT", "USER_ORGUNIT"),
        mock_fallback=_get_bool_env("EXPORT_MOCK_FALLBACK", False),
    )


@lru_cache(maxsize=1)
def get_credential_settings() -> CredentialSettings:
    """
    Return credential decryption settings from environment variables.
    """

    return CredentialSettings(
        encryption_key=_get_optional_str_env("CREDENTIALS_ENCRYPTION_KEY"),
    )
