"""Sync orchestrator: drive resolve, classify, materialize and persist over a batch.

One pass is strictly sequential. Each dataset id goes through
resolve -> classify -> (skip if unchanged) -> materialize -> record, with a
fixed pause between ids. A failing id is recorded in the report and the loop
moves on; nothing raised for one dataset aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pyopendata._cache import CacheStore
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import OpenDataError, OpenDataStorageError
from pyopendata.materializer import ResourceMaterializer
from pyopendata.models.dataset import DatasetMetadata
from pyopendata.models.listing import DatasetListing
from pyopendata.models.payload import FetchedPayload
from pyopendata.outcomes import Failure
from pyopendata.resolver import RemoteResolver
from pyopendata.state.models import DatasetRecordState, SyncState
from pyopendata.state.policy import ChangeKind, DatasetChange, classify_change
from pyopendata.state.registry import DiscoveredDataset, DiscoveryRegistry
from pyopendata.state.store import SyncStateStore
from pyopendata.state.update_log import UpdateLog

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def listing_cache_key(category: str | None, page: int, page_size: int) -> str:
    return f"{category or '*'}:{page}:{page_size}"


def unique_in_order(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for raw in ids:
        dataset_id = raw.strip()
        if dataset_id and dataset_id not in seen:
            seen.add(dataset_id)
            ordered.append(dataset_id)
    return ordered


@dataclass
class SyncReport:
    """Outcome of one sync pass. ``failed`` is always populated, never raised."""

    new: list[DatasetChange] = field(default_factory=list)
    updated: list[DatasetChange] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: list[Failure] = field(default_factory=list)
    total_processed: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    save_error: Failure | None = None
    """Set when the end-of-pass state save failed; the per-dataset results still stand."""

    @property
    def failed_ids(self) -> list[str]:
        return [failure.target or "" for failure in self.failed]

    @property
    def changes(self) -> list[DatasetChange]:
        return [*self.new, *self.updated]

    @property
    def succeeded(self) -> int:
        return len(self.new) + len(self.updated) + len(self.unchanged)


@dataclass
class DiscoveryReport:
    dataset_ids: list[str] = field(default_factory=list)
    """Aggregated ids across categories, de-duplicated in page-then-row order."""
    per_category: dict[str, int] = field(default_factory=dict)
    """Number of previously unseen ids each category contributed."""
    abandoned: list[Failure] = field(default_factory=list)
    """Pages that failed twice; the rest of their category was skipped."""
    pages_fetched: int = 0
    registered: int = 0
    """Ids added to the discovery registry by this run."""
    save_error: Failure | None = None
    sync: SyncReport | None = None


@dataclass
class SyncContext:
    """Mutable per-run working set. Never shared between runs."""

    state: SyncState
    report: SyncReport
    seen: set[str] = field(default_factory=set)
    started_at: datetime = field(default_factory=_utcnow)


class SyncOrchestrator:
    """Run sync, dry-run check and category discovery passes."""

    def __init__(
        self,
        config: OpenDataConfig,
        resolver: RemoteResolver,
        materializer: ResourceMaterializer,
        state_store: SyncStateStore,
        *,
        payload_cache: CacheStore[FetchedPayload] | None = None,
        listing_cache: CacheStore[DatasetListing] | None = None,
        update_log: UpdateLog | None = None,
        registry: DiscoveryRegistry | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._resolver = resolver
        self._materializer = materializer
        self._state_store = state_store
        self._payload_cache = payload_cache
        self._listing_cache = listing_cache
        self._update_log = update_log
        self._registry = registry
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Explicit id sets
    # ------------------------------------------------------------------

    async def sync_all(self, ids: Sequence[str] | None = None) -> SyncReport:
        """Synchronize *ids* (default: the configured list) and persist the state once."""
        return await self._run_pass(self._config.dataset_ids if ids is None else ids)

    async def check_only(self, ids: Sequence[str] | None = None) -> list[DatasetChange]:
        """Dry run: report new and updated datasets without downloading or saving anything."""
        ordered = unique_in_order(self._config.dataset_ids if ids is None else ids)
        state = self._state_store.load()
        changes: list[DatasetChange] = []
        failures = 0
        for index, dataset_id in enumerate(ordered):
            if index:
                await self._sleep(self._config.request_delay)
            metadata = await self._resolver.resolve_metadata(dataset_id)
            if isinstance(metadata, Failure):
                failures += 1
                _logger.warning("Check of %s failed: %s", dataset_id, metadata)
                continue
            existing = state.datasets.get(dataset_id)
            kind = classify_change(existing, metadata)
            if kind is not ChangeKind.UNCHANGED:
                changes.append(DatasetChange.from_metadata(kind, existing, self._with_id(metadata, dataset_id)))
        _logger.info("Checked %d datasets: %d changed, %d failed", len(ordered), len(changes), failures)
        return changes

    # ------------------------------------------------------------------
    # Category discovery
    # ------------------------------------------------------------------

    async def discover(
        self,
        categories: Sequence[str | None],
        *,
        sync: bool = False,
        page_size: int | None = None,
    ) -> DiscoveryReport:
        """Expand category listings into dataset ids, optionally syncing them.

        ``None`` in *categories* lists the whole catalog.
        """
        size = page_size or self._config.page_size
        report = DiscoveryReport()
        seen: set[str] = set()
        found: list[DiscoveredDataset] = []
        every = self._config.session_refresh_every

        for index, category in enumerate(categories):
            if index and every > 0 and index % every == 0:
                await self._refresh_session()
            added = await self._discover_category(category, size, report, seen, found)
            report.per_category[category or "*"] = added
            _logger.info("Category %s: %d new ids (%d total)", category or "*", added, len(report.dataset_ids))

        if self._registry is not None and found:
            try:
                report.registered = len(self._registry.add(found))
            except OpenDataStorageError as exc:
                _logger.error("Discovery registry not saved: %s", exc)
                report.save_error = Failure.from_error(exc, target=str(self._registry.path))

        if sync:
            report.sync = await self._run_pass(report.dataset_ids, stamp_discovery=True)
        else:
            state = self._state_store.load()
            state.last_discovery = self._clock()
            try:
                self._state_store.save(state)
            except OpenDataStorageError as exc:
                _logger.error("Discovery timestamp not saved: %s", exc)
                report.save_error = report.save_error or Failure.from_error(exc, target=str(self._state_store.path))
        return report

    async def _discover_category(
        self,
        category: str | None,
        page_size: int,
        report: DiscoveryReport,
        seen: set[str],
        found: list[DiscoveredDataset],
    ) -> int:
        added = 0
        page = 0
        page_count: int | None = None
        while page_count is None or page < page_count:
            if page:
                await self._sleep(self._config.page_delay)
            listing = await self._fetch_page_with_retry(category, page, page_size)
            if isinstance(listing, Failure):
                _logger.warning("Abandoning %s at page %d: %s", category or "*", page, listing)
                report.abandoned.append(listing)
                break
            if not listing.items:
                _logger.debug("Listing of %s ends at page %d", category or "*", page)
                break
            report.pages_fetched += 1
            # The first page fixes the page count; later pages may only extend it.
            page_count = max(page_count or 0, listing.page_count)
            for item in listing.items:
                if item.id not in seen:
                    seen.add(item.id)
                    report.dataset_ids.append(item.id)
                    found.append(DiscoveredDataset.from_metadata(item, source=listing.source, category=category))
                    added += 1
            page += 1
        return added

    async def register(
        self, ids: Sequence[str], *, source: str = "manual"
    ) -> tuple[list[DiscoveredDataset], list[Failure]]:
        """Verify *ids* against the portal and add the valid ones to the discovery registry.

        Ids already registered are skipped without a request. Returns the
        entries added and one :class:`Failure` per id the portal does not know.
        """
        if self._registry is None:
            raise OpenDataError("No discovery registry configured")
        known = set(self._registry.ids())
        entries: list[DiscoveredDataset] = []
        failures: list[Failure] = []
        pending = [dataset_id for dataset_id in unique_in_order(ids) if dataset_id not in known]
        for index, dataset_id in enumerate(pending):
            if index:
                await self._sleep(self._config.request_delay)
            metadata = await self._resolver.resolve_metadata(dataset_id)
            if isinstance(metadata, Failure):
                _logger.warning("Not registering %s: %s", dataset_id, metadata)
                failures.append(metadata.for_target(dataset_id))
                continue
            entries.append(DiscoveredDataset.from_metadata(self._with_id(metadata, dataset_id), source=source))
        added = self._registry.add(entries) if entries else []
        return added, failures

    async def _fetch_page_with_retry(
        self,
        category: str | None,
        page: int,
        page_size: int,
    ) -> DatasetListing | Failure:
        cache_key = listing_cache_key(category, page, page_size)
        if self._listing_cache is not None:
            cached = self._listing_cache.get(cache_key)
            if cached is not None:
                return cached

        listing = await self._resolver.resolve_category_page(category, page, page_size)
        if isinstance(listing, Failure):
            _logger.warning("Page %d of %s failed (%s); refreshing session and retrying", page, category or "*", listing)
            await self._refresh_session()
            listing = await self._resolver.resolve_category_page(category, page, page_size)

        if not isinstance(listing, Failure) and listing.items and self._listing_cache is not None:
            self._listing_cache.put(cache_key, listing)
        return listing

    async def _refresh_session(self) -> None:
        try:
            await self._resolver.refresh_session()
        except OpenDataError as exc:
            _logger.warning("Session refresh failed: %s", exc)
        await self._sleep(self._config.refresh_delay)

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Clear the sync state, caches and update history. The discovery registry is kept."""
        removed = self._state_store.reset()
        cleared = 0
        for cache in (self._payload_cache, self._listing_cache):
            if cache is not None:
                cleared += cache.clear_all()
        if self._update_log is not None:
            self._update_log.reset()
        _logger.info("Reset: state file removed=%s, %d cache entries cleared", removed, cleared)

    # ------------------------------------------------------------------
    # Pass internals
    # ------------------------------------------------------------------

    async def _run_pass(self, ids: Sequence[str], *, stamp_discovery: bool = False) -> SyncReport:
        ordered = unique_in_order(ids)
        ctx = SyncContext(
            state=self._state_store.load().model_copy(deep=True),
            report=SyncReport(started_at=self._clock()),
        )
        _logger.info("Sync pass started for %d datasets", len(ordered))

        for index, dataset_id in enumerate(ordered):
            if index:
                await self._sleep(self._config.request_delay)
            ctx.seen.add(dataset_id)
            ctx.report.total_processed += 1
            try:
                await self._sync_one(ctx, dataset_id)
            except OpenDataError as exc:
                self._record_failure(ctx, dataset_id, Failure.from_error(exc))

        now = self._clock()
        ctx.state.last_full_sync = now
        if stamp_discovery:
            ctx.state.last_discovery = now
        try:
            self._state_store.save(ctx.state)
        except OpenDataStorageError as exc:
            _logger.error("Sync state not saved: %s", exc)
            ctx.report.save_error = Failure.from_error(exc, target=str(self._state_store.path))
        ctx.report.finished_at = now

        if self._update_log is not None and ctx.report.changes:
            try:
                self._update_log.append(ctx.report.changes)
            except OpenDataStorageError as exc:
                _logger.warning("Update log not written: %s", exc)

        report = ctx.report
        _logger.info(
            "Sync pass finished: %d new, %d updated, %d unchanged, %d failed of %d",
            len(report.new),
            len(report.updated),
            len(report.unchanged),
            len(report.failed),
            report.total_processed,
        )
        return report

    async def _sync_one(self, ctx: SyncContext, dataset_id: str) -> None:
        report = ctx.report
        position = f"[{report.total_processed}]"

        metadata = await self._resolver.resolve_metadata(dataset_id)
        if isinstance(metadata, Failure):
            self._record_failure(ctx, dataset_id, metadata)
            return
        metadata = self._with_id(metadata, dataset_id)

        existing = ctx.state.datasets.get(dataset_id)
        kind = classify_change(existing, metadata)
        if kind is ChangeKind.UNCHANGED:
            _logger.debug("%s %s unchanged", position, dataset_id)
            report.unchanged.append(dataset_id)
            return

        resources = await self._resolver.resolve_resources(dataset_id, metadata)
        if isinstance(resources, Failure):
            self._record_failure(ctx, dataset_id, resources)
            return

        result = await self._materializer.materialize(dataset_id, resources)
        if isinstance(result, Failure):
            self._record_failure(ctx, dataset_id, result)
            return

        ctx.state.datasets[dataset_id] = DatasetRecordState(
            id=dataset_id,
            title_primary=metadata.title_ar,
            title_secondary=metadata.title_en,
            provider_name=metadata.provider_name,
            category=metadata.category,
            update_frequency=metadata.update_frequency,
            last_known_update=metadata.updated_at,
            last_sync_time=self._clock(),
            local_resource_ref=result.local_ref,
            format=result.resource.format,
        )
        if self._payload_cache is not None:
            self._payload_cache.put(dataset_id, result.payload)

        change = DatasetChange.from_metadata(kind, existing, metadata)
        (report.new if kind is ChangeKind.NEW else report.updated).append(change)
        _logger.info("%s %s %s: %s (%d records)", position, kind.value, dataset_id, change.title, result.payload.total_records)

        if self._config.persist_each_dataset:
            try:
                self._state_store.save(ctx.state)
            except OpenDataStorageError as exc:
                _logger.warning("Checkpoint after %s not saved: %s", dataset_id, exc)

    def _record_failure(self, ctx: SyncContext, dataset_id: str, failure: Failure) -> None:
        failure = failure.for_target(dataset_id)
        ctx.report.failed.append(failure)
        _logger.warning("[%d] %s failed: %s", ctx.report.total_processed, dataset_id, failure)
        existing = ctx.state.datasets.get(dataset_id)
        if existing is not None:
            # last_known_update stays untouched so the next pass retries.
            ctx.state.datasets[dataset_id] = existing.model_copy(
                update={"last_error": f"{failure.kind.value}: {failure.message}", "last_error_time": self._clock()}
            )

    @staticmethod
    def _with_id(metadata: DatasetMetadata, dataset_id: str) -> DatasetMetadata:
        if metadata.id == dataset_id:
            return metadata
        return metadata.model_copy(update={"id": dataset_id})
