"""Configuration objects and environment loading."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from protocache.errors import ConfigurationError
from protocache.models import FetchParams

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 30 * 60 * 1_000
DEFAULT_DATA_SIZE_BYTES = 10 * 1024 * 1024
MAX_DATA_SIZE_BYTES = 30 * 1024 * 1024

DEFAULT_API_BASE_URL = "https://protopedia.net/v2/api"
DEFAULT_USER_AGENT = "protocache/1.0"


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Snapshot store limits. Validated eagerly on construction."""

    ttl_ms: int = DEFAULT_TTL_MS
    max_data_size_bytes: int = DEFAULT_DATA_SIZE_BYTES
    fail_closed_on_size_error: bool = False

    def __post_init__(self) -> None:
        if self.ttl_ms < 0:
            raise ConfigurationError("ttl_ms must be greater than or equal to 0")
        if self.max_data_size_bytes < 0:
            raise ConfigurationError("max_data_size_bytes must be greater than or equal to 0")
        if self.max_data_size_bytes > MAX_DATA_SIZE_BYTES:
            max_mib = MAX_DATA_SIZE_BYTES // (1024 * 1024)
            raise ConfigurationError(
                f"max_data_size_bytes must be <= {MAX_DATA_SIZE_BYTES} bytes "
                f"({max_mib} MiB) to prevent oversized data"
            )


@dataclass(slots=True)
class FetcherConfig:
    """Settings for the ProtoPedia HTTP fetcher."""

    token: Optional[str] = None
    base_url: str = DEFAULT_API_BASE_URL
    timeout_ms: int = 15_000
    retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 2.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(slots=True)
class AppConfig:
    """Top-level configuration for the runner."""

    store: StoreConfig
    fetcher: FetcherConfig
    fetch_params: FetchParams = field(default_factory=FetchParams)
    enable_events: bool = False


def _optional_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip().strip('"').strip("'")
    if not stripped:
        return default
    return stripped


def _parse_int_env(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer value") from None
    if minimum is not None and value < minimum:
        raise RuntimeError(f"{name} must be greater than or equal to {minimum}")
    return value


def _parse_bool_env(name: str, default: bool) -> bool:
    raw = _optional_env(name)
    if raw is None:
        return default
    return raw.lower() not in {"0", "false", "no", "off"}


def _parse_url_env(name: str, default: str) -> str:
    value = _optional_env(name, default) or default
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise RuntimeError(f"{name} must be a valid HTTP(S) URL")
    return value.rstrip("/")


def load_config(env_file: str | None = None) -> AppConfig:
    """Load configuration from the provided .env file (or default location)."""

    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    ttl_ms = _parse_int_env("CACHE_TTL_MS", DEFAULT_TTL_MS, minimum=0)
    max_size = _parse_int_env("CACHE_MAX_DATA_SIZE_BYTES", DEFAULT_DATA_SIZE_BYTES, minimum=0)
    if max_size > MAX_DATA_SIZE_BYTES:
        raise RuntimeError(
            f"CACHE_MAX_DATA_SIZE_BYTES must be less than or equal to {MAX_DATA_SIZE_BYTES}"
        )
    store = StoreConfig(
        ttl_ms=ttl_ms,
        max_data_size_bytes=max_size,
        fail_closed_on_size_error=_parse_bool_env("CACHE_FAIL_CLOSED", False),
    )

    token = _optional_env("PROTOPEDIA_API_V2_TOKEN")
    if token is None:
        logger.warning("PROTOPEDIA_API_V2_TOKEN is not set; requests will be anonymous")

    fetcher = FetcherConfig(
        token=token,
        base_url=_parse_url_env("PROTOPEDIA_API_BASE_URL", DEFAULT_API_BASE_URL),
        timeout_ms=_parse_int_env("FETCH_TIMEOUT_MS", 15_000, minimum=1),
        retries=_parse_int_env("FETCH_RETRIES", 3, minimum=1),
    )

    fetch_params = FetchParams(
        offset=_parse_int_env("FETCH_OFFSET", 0, minimum=0),
        limit=_parse_int_env("FETCH_LIMIT", 10, minimum=1),
    )

    return AppConfig(
        store=store,
        fetcher=fetcher,
        fetch_params=fetch_params,
        enable_events=_parse_bool_env("ENABLE_REPOSITORY_EVENTS", False),
    )


__all__ = [
    "AppConfig",
    "DEFAULT_API_BASE_URL",
    "DEFAULT_DATA_SIZE_BYTES",
    "DEFAULT_TTL_MS",
    "FetcherConfig",
    "MAX_DATA_SIZE_BYTES",
    "StoreConfig",
    "load_config",
]
