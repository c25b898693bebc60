"""CKAN-compatible action API.

Endpoints:
  - GET {ckan}/package_search?rows={n}&start={offset}[&fq=groups:{category}]
  - GET {ckan}/current_package_list_with_resources?limit={n}&offset={offset}

Both answer ``{"success": bool, "result": ...}`` where ``result`` is either
``{"count": int, "results": [...]}`` or a bare list of packages.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from pyopendata._api._common import as_dict, get_json
from pyopendata._transport import Transport
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import OpenDataEmptyPayload, OpenDataUpstreamRejection
from pyopendata.ingestion.normalize import safe_int
from pyopendata.models.dataset import DatasetMetadata
from pyopendata.models.listing import DatasetListing


def _unwrap_result(decoded: dict[str, Any], endpoint: str) -> tuple[list[Any], int | None]:
    if decoded.get("success") is False:
        error = decoded.get("error")
        raise OpenDataUpstreamRejection(f"CKAN call failed at {endpoint}: {error}", endpoint=endpoint)
    result = decoded.get("result")
    if isinstance(result, list):
        return result, None
    if isinstance(result, dict):
        results = result.get("results")
        return (results if isinstance(results, list) else []), safe_int(result.get("count"))
    raise OpenDataEmptyPayload(f"CKAN response without result from {endpoint}", endpoint=endpoint)


def _to_listing(
    packages: list[Any],
    count: int | None,
    *,
    page: int,
    page_size: int,
    source: str,
) -> DatasetListing:
    items = [DatasetMetadata.model_validate(pkg) for pkg in packages if isinstance(pkg, dict)]
    items = [item for item in items if item.id]
    if count is None:
        # A bare list carries no total; assume one more page while pages come back full.
        count = page * page_size + len(items) + (1 if len(items) == page_size else 0)
    return DatasetListing(items=items, total_count=count, page=page, page_size=page_size, source=source)


async def package_search(
    config: OpenDataConfig,
    transport: Transport,
    category: str | None,
    page: int,
    page_size: int,
) -> DatasetListing:
    url = f"{config.ckan_base_url}/package_search?rows={page_size}&start={page * page_size}"
    if category:
        url += f"&fq=groups:{quote(category)}"
    decoded = as_dict(await get_json(transport, url), url)
    packages, count = _unwrap_result(decoded, url)
    return _to_listing(packages, count, page=page, page_size=page_size, source="ckan_search")


async def current_package_list(
    config: OpenDataConfig,
    transport: Transport,
    page: int,
    page_size: int,
) -> DatasetListing:
    url = f"{config.ckan_base_url}/current_package_list_with_resources?limit={page_size}&offset={page * page_size}"
    decoded = as_dict(await get_json(transport, url), url)
    packages, count = _unwrap_result(decoded, url)
    return _to_listing(packages, count, page=page, page_size=page_size, source="ckan_package_list")
