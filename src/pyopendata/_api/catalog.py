"""Catalog dataset detail endpoint.

``GET {catalog}/datasets/{id}`` returns metadata and resources in one
document, with resource fields spelled ``resourceID`` / ``fileFormat``.
"""

from __future__ import annotations

from urllib.parse import quote

from pyopendata._api._common import as_dict, get_json
from pyopendata._transport import Transport
from pyopendata.config import OpenDataConfig
from pyopendata.models.dataset import DatasetMetadata, DatasetResource


def _normalize_format(resource: DatasetResource) -> DatasetResource:
    # The catalog spells formats inconsistently ("csv", "Csv"); the portal API uses upper case.
    upper = resource.format.upper()
    if upper == resource.format:
        return resource
    return resource.model_copy(update={"format": upper})


async def fetch_dataset_detail(config: OpenDataConfig, transport: Transport, dataset_id: str) -> DatasetMetadata:
    url = f"{config.catalog_base_url}/datasets/{quote(dataset_id)}"
    decoded = as_dict(await get_json(transport, url), url)
    # Some deployments wrap the document as {"success": true, "data": {...}}.
    nested = decoded.get("data")
    if isinstance(nested, dict) and ("resources" in nested or "titleAr" in nested):
        decoded = nested
    metadata = DatasetMetadata.model_validate(decoded)
    update: dict[str, object] = {"resources": [_normalize_format(r) for r in metadata.resources]}
    if not metadata.id:
        update["id"] = dataset_id
    return metadata.model_copy(update=update)
