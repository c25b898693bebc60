"""Client configuration for pyopendata."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from pyopendata._constants import (
    API_BASE_URL,
    CATALOG_BASE_URL,
    CKAN_BASE_URL,
    DATASET_CACHE_TTL,
    DEFAULT_DATASET_IDS,
    LISTING_CACHE_TTL,
    PORTAL_URL,
    TABULAR_FORMAT,
    USER_AGENT,
)
from pyopendata.exceptions import OpenDataConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _split_ids(value: str) -> tuple[str, ...]:
    parts = value.replace(";", ",").replace("\n", ",").split(",")
    return tuple(part.strip() for part in parts if part.strip())


@dataclasses.dataclass(frozen=True)
class OpenDataConfig:
    """Engine configuration.

    Parameters
    ----------
    api_base_url : str
        Primary metadata API (dataset-by-id and resources endpoints).
    catalog_base_url : str
        Catalog API serving category listings and dataset detail documents.
    ckan_base_url : str
        CKAN-compatible action API used as a listing fallback.
    portal_url : str
        Human-facing portal root. Used for the HTML fallback and to
        refresh the anti-bot session.
    data_dir : Path
        Directory receiving one materialized resource file per dataset.
    state_file : Path
        JSON document holding the persisted sync state.
    update_log_file : Path
        JSON document holding the bounded history of detected updates.
    discovery_file : Path
        JSON registry of dataset ids found by discovery or added by hand.
    cache_dir : Path or None
        Directory for the on-disk cache backend. ``None`` keeps the cache
        in memory for the lifetime of the process.
    request_delay : float
        Seconds to wait between two datasets of one pass.
    page_delay : float
        Seconds to wait between two category pages.
    refresh_delay : float
        Seconds to wait after a session refresh.
    sync_interval : float
        Seconds between two passes in scheduled mode. Defaults to 6 hours.
    session_refresh_every : int
        Refresh the upstream session after this many categories in
        discovery mode. ``0`` disables the periodic refresh.
    page_size : int
        Category listing page size.
    dataset_cache_ttl : float
        Time-to-live in seconds for parsed dataset payloads.
    listing_cache_ttl : float
        Time-to-live in seconds for category listing pages.
    request_timeout : float
        Total timeout for a single HTTP request.
    tabular_format : str
        Resource format tag selected for materialization.
    persist_each_dataset : bool
        Save the sync state after every successful dataset in addition to
        the end-of-pass save.
    dataset_ids : tuple[str, ...]
        Dataset ids synchronized when no explicit list is supplied.
    webhook_url : str or None
        Endpoint notified with detected updates.
    user_agent : str
        User agent sent with every request.
    """

    api_base_url: str = API_BASE_URL
    catalog_base_url: str = CATALOG_BASE_URL
    ckan_base_url: str = CKAN_BASE_URL
    portal_url: str = PORTAL_URL
    data_dir: Path = Path("data/open-data")
    state_file: Path = Path("data/sync-state.json")
    update_log_file: Path = Path("data/update-log.json")
    discovery_file: Path = Path("data/discovery-state.json")
    cache_dir: Path | None = Path("data/cache")
    request_delay: float = 0.5
    page_delay: float = 1.0
    refresh_delay: float = 10.0
    sync_interval: float = 6 * 3600
    session_refresh_every: int = 3
    page_size: int = 100
    dataset_cache_ttl: float = DATASET_CACHE_TTL
    listing_cache_ttl: float = LISTING_CACHE_TTL
    request_timeout: float = 60.0
    tabular_format: str = TABULAR_FORMAT
    persist_each_dataset: bool = False
    dataset_ids: tuple[str, ...] = DEFAULT_DATASET_IDS
    webhook_url: str | None = None
    user_agent: str = USER_AGENT

    def __post_init__(self) -> None:
        if self.page_size <= 0:
            raise OpenDataConfigError(f"page_size must be positive, got {self.page_size}")
        for name in ("request_delay", "page_delay", "refresh_delay", "dataset_cache_ttl", "listing_cache_ttl"):
            if getattr(self, name) < 0:
                raise OpenDataConfigError(f"{name} must not be negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> OpenDataConfig:
        """Create configuration from ``ODP_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "ODP_API_BASE_URL": "api_base_url",
            "ODP_CATALOG_BASE_URL": "catalog_base_url",
            "ODP_CKAN_BASE_URL": "ckan_base_url",
            "ODP_PORTAL_URL": "portal_url",
            "ODP_TABULAR_FORMAT": "tabular_format",
            "ODP_WEBHOOK_URL": "webhook_url",
            "ODP_USER_AGENT": "user_agent",
        }
        _ENV_PATH_MAP = {
            "ODP_DATA_DIR": "data_dir",
            "ODP_STATE_FILE": "state_file",
            "ODP_UPDATE_LOG_FILE": "update_log_file",
            "ODP_DISCOVERY_FILE": "discovery_file",
            "ODP_CACHE_DIR": "cache_dir",
        }
        _ENV_FLOAT_MAP = {
            "ODP_REQUEST_DELAY": "request_delay",
            "ODP_PAGE_DELAY": "page_delay",
            "ODP_REFRESH_DELAY": "refresh_delay",
            "ODP_SYNC_INTERVAL": "sync_interval",
            "ODP_DATASET_CACHE_TTL": "dataset_cache_ttl",
            "ODP_LISTING_CACHE_TTL": "listing_cache_ttl",
            "ODP_REQUEST_TIMEOUT": "request_timeout",
        }
        _ENV_INT_MAP = {
            "ODP_PAGE_SIZE": "page_size",
            "ODP_SESSION_REFRESH_EVERY": "session_refresh_every",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val
        for env_key, field_name in _ENV_PATH_MAP.items():
            val = env.get(env_key)
            if val is None:
                continue
            if val:
                config_kwargs[field_name] = Path(val)
            elif field_name == "cache_dir":
                # An empty ODP_CACHE_DIR selects the in-memory cache.
                config_kwargs[field_name] = None
        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = int(val)
        except ValueError as exc:
            raise OpenDataConfigError(f"Invalid numeric environment value: {exc}") from exc

        ids_env = env.get("ODP_DATASET_IDS")
        if ids_env is not None and "dataset_ids" not in overrides:
            config_kwargs["dataset_ids"] = _split_ids(ids_env)

        if "persist_each_dataset" not in overrides:
            config_kwargs["persist_each_dataset"] = _env_bool(env.get("ODP_PERSIST_EACH_DATASET"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
