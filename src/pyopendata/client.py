"""High-level async client for the open data portal sync engine."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import aiohttp

from pyopendata._cache import CacheBackend, CacheStats, CacheStore, FileCacheBackend, MemoryCacheBackend
from pyopendata._constants import DATASET_CACHE_PREFIX, LISTING_CACHE_PREFIX
from pyopendata._transport import HttpTransport
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import OpenDataError
from pyopendata.materializer import ResourceMaterializer
from pyopendata.models.dataset import DatasetMetadata
from pyopendata.models.listing import DatasetListing
from pyopendata.models.payload import FetchedPayload, PayloadSource
from pyopendata.orchestrator import DiscoveryReport, SyncOrchestrator, SyncReport, listing_cache_key
from pyopendata.outcomes import Failure
from pyopendata.resolver import RemoteResolver
from pyopendata.state.models import SyncState
from pyopendata.state.policy import DatasetChange
from pyopendata.state.registry import DiscoveredDataset, DiscoveryRegistry
from pyopendata.state.store import SyncStateStore
from pyopendata.state.update_log import UpdateLog
from pyopendata.webhook import post_webhook

_logger = logging.getLogger(__name__)


class OpenDataClient:
    """Async client wiring transport, resolver, materializer, caches and state.

    Usage::

        async with OpenDataClient(OpenDataConfig.from_env()) as client:
            report = await client.sync()
            payload = await client.get_dataset_data(dataset_id)
    """

    def __init__(
        self,
        config: OpenDataConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        cache_backend: CacheBackend | None = None,
    ) -> None:
        self._config = config or OpenDataConfig()
        self._external_session = session is not None
        self._http_session = session
        self._transport: HttpTransport | None = None
        self._orchestrator: SyncOrchestrator | None = None
        self._resolver: RemoteResolver | None = None
        self._materializer: ResourceMaterializer | None = None

        backend = cache_backend
        if backend is None:
            backend = FileCacheBackend(self._config.cache_dir) if self._config.cache_dir else MemoryCacheBackend()
        self._payload_cache: CacheStore[FetchedPayload] = CacheStore(
            backend,
            FetchedPayload,
            ttl=self._config.dataset_cache_ttl,
            prefix=DATASET_CACHE_PREFIX,
        )
        self._listing_cache: CacheStore[DatasetListing] = CacheStore(
            backend,
            DatasetListing,
            ttl=self._config.listing_cache_ttl,
            prefix=LISTING_CACHE_PREFIX,
        )
        self._state_store = SyncStateStore(self._config.state_file)
        self._update_log = UpdateLog(self._config.update_log_file)
        self._registry = DiscoveryRegistry(self._config.discovery_file)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> OpenDataClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._transport = HttpTransport(self._config, self._http_session)
        self._resolver = RemoteResolver(self._config, self._transport)
        self._materializer = ResourceMaterializer(
            self._transport,
            data_dir=self._config.data_dir,
            tabular_format=self._config.tabular_format,
        )
        self._orchestrator = SyncOrchestrator(
            self._config,
            self._resolver,
            self._materializer,
            self._state_store,
            payload_cache=self._payload_cache,
            listing_cache=self._listing_cache,
            update_log=self._update_log,
            registry=self._registry,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None
        self._resolver = None
        self._materializer = None
        self._orchestrator = None

    def _require_orchestrator(self) -> SyncOrchestrator:
        if self._orchestrator is None:
            raise OpenDataError("Client not initialized. Use 'async with OpenDataClient(...) as client:'")
        return self._orchestrator

    def _require_resolver(self) -> RemoteResolver:
        if self._resolver is None:
            raise OpenDataError("Client not initialized. Use 'async with OpenDataClient(...) as client:'")
        return self._resolver

    def _require_materializer(self) -> ResourceMaterializer:
        if self._materializer is None:
            raise OpenDataError("Client not initialized. Use 'async with OpenDataClient(...) as client:'")
        return self._materializer

    @property
    def config(self) -> OpenDataConfig:
        return self._config

    @property
    def orchestrator(self) -> SyncOrchestrator:
        return self._require_orchestrator()

    @property
    def state_store(self) -> SyncStateStore:
        return self._state_store

    @property
    def update_log(self) -> UpdateLog:
        return self._update_log

    @property
    def discovery_registry(self) -> DiscoveryRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Single dataset / single page reads
    # ------------------------------------------------------------------

    async def get_dataset_metadata(self, dataset_id: str) -> DatasetMetadata | Failure:
        return await self._require_resolver().resolve_metadata(dataset_id)

    async def get_dataset_data(
        self,
        dataset_id: str,
        *,
        force_refresh: bool = False,
        limit: int | None = None,
    ) -> FetchedPayload | Failure:
        """Return parsed records for *dataset_id*, from cache when fresh.

        Cached payloads come back with ``provenance == "cache"``. A fresh
        download is cached but not written to the data directory.
        """
        resolver = self._require_resolver()
        if not force_refresh:
            cached = self._payload_cache.get(dataset_id)
            if cached is not None:
                _logger.debug("Serving %s from cache", dataset_id)
                return cached.model_copy(update={"provenance": PayloadSource.CACHE}).limited(limit)

        resolution = await resolver.resolve_dataset(dataset_id)
        if isinstance(resolution, Failure):
            return resolution
        result = await self._require_materializer().materialize(dataset_id, resolution.resources, persist=False)
        if isinstance(result, Failure):
            return result
        self._payload_cache.put(dataset_id, result.payload)
        return result.payload.limited(limit)

    async def list_category(
        self,
        category: str | None = None,
        page: int = 0,
        page_size: int | None = None,
        *,
        force_refresh: bool = False,
    ) -> DatasetListing | Failure:
        size = page_size or self._config.page_size
        key = listing_cache_key(category, page, size)
        if not force_refresh:
            cached = self._listing_cache.get(key)
            if cached is not None:
                return cached
        listing = await self._require_resolver().resolve_category_page(category, page, size)
        if not isinstance(listing, Failure):
            self._listing_cache.put(key, listing)
        return listing

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    async def sync(self, ids: Sequence[str] | None = None) -> SyncReport:
        return await self._require_orchestrator().sync_all(ids)

    async def check(self, ids: Sequence[str] | None = None) -> list[DatasetChange]:
        return await self._require_orchestrator().check_only(ids)

    async def discover(
        self, categories: Sequence[str | None], *, sync: bool = False, page_size: int | None = None
    ) -> DiscoveryReport:
        return await self._require_orchestrator().discover(categories, sync=sync, page_size=page_size)

    async def register(
        self, ids: Sequence[str], *, source: str = "manual"
    ) -> tuple[list[DiscoveredDataset], list[Failure]]:
        """Verify *ids* and add the ones the portal knows to the discovery registry."""
        return await self._require_orchestrator().register(ids, source=source)

    async def refresh_session(self) -> None:
        await self._require_resolver().refresh_session()

    async def notify(self, changes: Sequence[DatasetChange], url: str | None = None) -> bool:
        """POST *changes* to *url* (default: the configured webhook)."""
        target = url or self._config.webhook_url
        if not target or not changes:
            return False
        if self._http_session is None:
            raise OpenDataError("Client not initialized. Use 'async with OpenDataClient(...) as client:'")
        return await post_webhook(self._http_session, target, changes)

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------

    def load_state(self) -> SyncState:
        return self._state_store.load()

    def discovered_ids(self) -> list[str]:
        return self._registry.ids()

    def cache_stats(self) -> CacheStats:
        return self._payload_cache.stats()

    def clear_cache(self, dataset_id: str | None = None) -> None:
        if dataset_id is None:
            self._payload_cache.clear_all()
            self._listing_cache.clear_all()
        else:
            self._payload_cache.clear(dataset_id)

    def reset(self) -> None:
        """Forget all sync state, cached payloads and update history.

        The discovery registry is kept; delete it with
        ``client.discovery_registry.reset()``.
        """
        if self._orchestrator is not None:
            self._orchestrator.reset()
            return
        self._state_store.reset()
        self._payload_cache.clear_all()
        self._listing_cache.clear_all()
        self._update_log.reset()
