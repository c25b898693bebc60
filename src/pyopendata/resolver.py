"""Remote resolver: dataset ids and categories to metadata, resources and listings.

Each upstream shape is wrapped in a small strategy object. The resolver walks
an ordered list of strategies and keeps the first result that carries at
least one usable item, so reordering or removing a fallback only changes the
lists passed to :class:`RemoteResolver`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from pyopendata._api import catalog as _catalog_api
from pyopendata._api import ckan as _ckan_api
from pyopendata._api import html as _html_api
from pyopendata._api import portal as _portal_api
from pyopendata._transport import Transport
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import FailureKind, OpenDataEmptyPayload, OpenDataError
from pyopendata.models.dataset import DatasetMetadata, DatasetResolution, DatasetResource
from pyopendata.models.listing import DatasetListing
from pyopendata.outcomes import Failure

_logger = logging.getLogger(__name__)


class DatasetStrategy(Protocol):
    """Resolves one dataset id against one upstream API shape."""

    name: str

    async def fetch_metadata(
        self, config: OpenDataConfig, transport: Transport, dataset_id: str
    ) -> DatasetMetadata: ...

    async def fetch_resources(
        self, config: OpenDataConfig, transport: Transport, dataset_id: str
    ) -> list[DatasetResource]: ...


class ListingStrategy(Protocol):
    """Fetches one listing page against one upstream API shape."""

    name: str

    def supports(self, category: str | None) -> bool: ...

    async def fetch_page(
        self,
        config: OpenDataConfig,
        transport: Transport,
        category: str | None,
        page: int,
        page_size: int,
    ) -> DatasetListing: ...


# ---------------------------------------------------------------------------
# Dataset strategies
# ---------------------------------------------------------------------------


class PortalApiStrategy:
    name = "portal_api"

    async def fetch_metadata(self, config: OpenDataConfig, transport: Transport, dataset_id: str) -> DatasetMetadata:
        return await _portal_api.fetch_dataset_metadata(config, transport, dataset_id)

    async def fetch_resources(
        self, config: OpenDataConfig, transport: Transport, dataset_id: str
    ) -> list[DatasetResource]:
        return await _portal_api.fetch_dataset_resources(config, transport, dataset_id)


class CatalogDetailStrategy:
    name = "catalog_detail"

    async def fetch_metadata(self, config: OpenDataConfig, transport: Transport, dataset_id: str) -> DatasetMetadata:
        return await _catalog_api.fetch_dataset_detail(config, transport, dataset_id)

    async def fetch_resources(
        self, config: OpenDataConfig, transport: Transport, dataset_id: str
    ) -> list[DatasetResource]:
        detail = await _catalog_api.fetch_dataset_detail(config, transport, dataset_id)
        return list(detail.resources)


# ---------------------------------------------------------------------------
# Listing strategies
# ---------------------------------------------------------------------------


class PortalCategoryListStrategy:
    name = "portal"

    def supports(self, category: str | None) -> bool:
        return True

    async def fetch_page(
        self,
        config: OpenDataConfig,
        transport: Transport,
        category: str | None,
        page: int,
        page_size: int,
    ) -> DatasetListing:
        return await _portal_api.fetch_category_page(config, transport, category, page, page_size)


class CkanSearchStrategy:
    name = "ckan_search"

    def supports(self, category: str | None) -> bool:
        return True

    async def fetch_page(
        self,
        config: OpenDataConfig,
        transport: Transport,
        category: str | None,
        page: int,
        page_size: int,
    ) -> DatasetListing:
        return await _ckan_api.package_search(config, transport, category, page, page_size)


class CkanPackageListStrategy:
    """Unfiltered package dump; cannot narrow by category."""

    name = "ckan_package_list"

    def supports(self, category: str | None) -> bool:
        return category is None

    async def fetch_page(
        self,
        config: OpenDataConfig,
        transport: Transport,
        category: str | None,
        page: int,
        page_size: int,
    ) -> DatasetListing:
        return await _ckan_api.current_package_list(config, transport, page, page_size)


class PortalHtmlStrategy:
    name = "html"

    def supports(self, category: str | None) -> bool:
        return True

    async def fetch_page(
        self,
        config: OpenDataConfig,
        transport: Transport,
        category: str | None,
        page: int,
        page_size: int,
    ) -> DatasetListing:
        return await _html_api.fetch_listing_page(config, transport, category, page, page_size)


DEFAULT_DATASET_STRATEGIES: tuple[DatasetStrategy, ...] = (
    PortalApiStrategy(),
    CatalogDetailStrategy(),
)

DEFAULT_LISTING_STRATEGIES: tuple[ListingStrategy, ...] = (
    PortalCategoryListStrategy(),
    CkanSearchStrategy(),
    CkanPackageListStrategy(),
    PortalHtmlStrategy(),
)


def _is_usable(metadata: DatasetMetadata) -> bool:
    return bool(metadata.updated_at or metadata.title_ar or metadata.title_en)


def _pick_failure(errors: list[OpenDataError], target: str) -> Failure:
    """Report the most informative error of a fully failed chain.

    Errors meaning "answered but empty" only win when nothing worse happened.
    """
    for exc in reversed(errors):
        if not isinstance(exc, OpenDataEmptyPayload):
            return Failure.from_error(exc, target=target)
    if errors:
        return Failure.from_error(errors[-1], target=target)
    return Failure(kind=FailureKind.EMPTY_PAYLOAD, message="No strategy returned usable data", target=target)


def _dedupe_items(listing: DatasetListing) -> DatasetListing:
    seen: set[str] = set()
    unique: list[DatasetMetadata] = []
    for item in listing.items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    if len(unique) == len(listing.items):
        return listing
    return listing.model_copy(update={"items": unique})


class RemoteResolver:
    """Resolve dataset ids and category pages through ordered strategy chains."""

    def __init__(
        self,
        config: OpenDataConfig,
        transport: Transport,
        *,
        dataset_strategies: Sequence[DatasetStrategy] | None = None,
        listing_strategies: Sequence[ListingStrategy] | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._dataset_strategies = tuple(
            DEFAULT_DATASET_STRATEGIES if dataset_strategies is None else dataset_strategies
        )
        self._listing_strategies = tuple(
            DEFAULT_LISTING_STRATEGIES if listing_strategies is None else listing_strategies
        )

    @property
    def transport(self) -> Transport:
        return self._transport

    async def refresh_session(self) -> None:
        await self._transport.refresh_session()

    async def resolve_metadata(self, dataset_id: str) -> DatasetMetadata | Failure:
        errors: list[OpenDataError] = []
        for strategy in self._dataset_strategies:
            try:
                metadata = await strategy.fetch_metadata(self._config, self._transport, dataset_id)
            except OpenDataError as exc:
                _logger.debug("Metadata strategy %s failed for %s: %s", strategy.name, dataset_id, exc)
                errors.append(exc)
                continue
            if _is_usable(metadata):
                return metadata
            _logger.debug("Metadata strategy %s returned nothing usable for %s", strategy.name, dataset_id)
        return _pick_failure(errors, dataset_id)

    async def resolve_resources(
        self,
        dataset_id: str,
        metadata: DatasetMetadata | None = None,
    ) -> list[DatasetResource] | Failure:
        """Resolve the downloadable resources of *dataset_id*.

        Resources already carried inline by *metadata* are used without a
        request. An empty list means the upstream answered but listed nothing.
        """
        if metadata is not None and metadata.resources:
            return list(metadata.resources)

        errors: list[OpenDataError] = []
        for strategy in self._dataset_strategies:
            try:
                resources = await strategy.fetch_resources(self._config, self._transport, dataset_id)
            except OpenDataError as exc:
                _logger.debug("Resource strategy %s failed for %s: %s", strategy.name, dataset_id, exc)
                errors.append(exc)
                continue
            if resources:
                return resources
        if all(isinstance(exc, OpenDataEmptyPayload) for exc in errors):
            return []
        return _pick_failure(errors, dataset_id)

    async def resolve_dataset(self, dataset_id: str) -> DatasetResolution | Failure:
        metadata = await self.resolve_metadata(dataset_id)
        if isinstance(metadata, Failure):
            return metadata
        resources = await self.resolve_resources(dataset_id, metadata)
        if isinstance(resources, Failure):
            return resources
        return DatasetResolution(metadata=metadata, resources=resources)

    async def resolve_category_page(
        self,
        category: str | None,
        page: int,
        page_size: int | None = None,
    ) -> DatasetListing | Failure:
        """Fetch one listing page; ``category=None`` lists the whole catalog.

        Page 0 always carries items or comes back as a :class:`Failure`. A later
        page may come back empty, which marks the end of the listing.
        """
        size = page_size or self._config.page_size
        target = category or "*"
        errors: list[OpenDataError] = []
        for strategy in self._listing_strategies:
            if not strategy.supports(category):
                continue
            try:
                listing = await strategy.fetch_page(self._config, self._transport, category, page, size)
            except OpenDataError as exc:
                _logger.debug("Listing strategy %s failed for %s page %d: %s", strategy.name, target, page, exc)
                errors.append(exc)
                continue
            if listing.items:
                return _dedupe_items(listing)
            if page > 0:
                # An answered but empty later page is the end of the listing.
                _logger.debug("Listing strategy %s reports the end of %s at page %d", strategy.name, target, page)
                return listing
            _logger.debug("Listing strategy %s returned no items for %s page %d", strategy.name, target, page)
        failure = _pick_failure(errors, target)
        _logger.warning("All listing strategies failed for %s page %d: %s", target, page, failure.kind)
        return failure
