"""Primary portal JSON endpoints.

Endpoints:
  - GET  {api}/datasets?version=-1&dataset={id}            (metadata)
  - GET  {api}/datasets/resources?version=-1&dataset={id}  (resources)
  - POST {catalog}/datasets/list?size={n}&page={p}         (category page)
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from pyopendata._api._common import as_dict, get_json, post_json
from pyopendata._transport import Transport
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import OpenDataEmptyPayload
from pyopendata.ingestion.normalize import safe_int
from pyopendata.models.dataset import DatasetMetadata, DatasetResource
from pyopendata.models.listing import DatasetListing

_logger = logging.getLogger(__name__)


def build_list_filter(category: str | None) -> dict[str, Any]:
    """Build the listing filter body the portal's search page sends."""
    return {
        "tags": [],
        "publishers": [],
        "formats": [],
        "categories": [category] if category else [],
        "languages": [],
        "datasetTypes": [],
        "publishDate": {"fromDate": None, "toDate": None},
    }


async def fetch_dataset_metadata(config: OpenDataConfig, transport: Transport, dataset_id: str) -> DatasetMetadata:
    url = f"{config.api_base_url}/datasets?version=-1&dataset={quote(dataset_id)}"
    decoded = as_dict(await get_json(transport, url), url)
    metadata = DatasetMetadata.model_validate(decoded)
    if not metadata.id:
        metadata = metadata.model_copy(update={"id": dataset_id})
    return metadata


async def fetch_dataset_resources(
    config: OpenDataConfig,
    transport: Transport,
    dataset_id: str,
) -> list[DatasetResource]:
    url = f"{config.api_base_url}/datasets/resources?version=-1&dataset={quote(dataset_id)}"
    decoded = await get_json(transport, url)
    # Observed both as {"resources": [...]} and as a bare list.
    items = decoded.get("resources") if isinstance(decoded, dict) else decoded
    if not isinstance(items, list) or not items:
        raise OpenDataEmptyPayload(f"No resources listed by {url}", endpoint=url)
    return [DatasetResource.model_validate(item) for item in items if isinstance(item, dict)]


async def fetch_category_page(
    config: OpenDataConfig,
    transport: Transport,
    category: str | None,
    page: int,
    page_size: int,
) -> DatasetListing:
    url = f"{config.catalog_base_url}/datasets/list?size={page_size}&page={page}&sort=updatedAt,DESC"
    decoded = as_dict(await post_json(transport, url, build_list_filter(category)), url)
    content = decoded.get("content")
    items = [DatasetMetadata.model_validate(item) for item in content or [] if isinstance(item, dict)]
    total = safe_int(decoded.get("totalElements"))
    _logger.debug("Category %s page %d: %d items, total=%s", category, page, len(items), total)
    return DatasetListing(
        items=[item for item in items if item.id],
        total_count=total if total is not None else len(items),
        page=page,
        page_size=page_size,
        source="portal",
    )
