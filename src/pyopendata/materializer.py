"""Resource materializer: select, download, validate, parse and persist a resource."""

from __future__ import annotations

import csv
import io
import logging
import os
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pyopendata._api._common import looks_like_block_page, raise_for_status
from pyopendata._transport import Transport
from pyopendata.exceptions import (
    OpenDataChallengeBlocked,
    OpenDataEmptyPayload,
    OpenDataError,
    OpenDataNoResourcesError,
    OpenDataNoTabularResourceError,
    OpenDataParseError,
    OpenDataStorageError,
)
from pyopendata.ingestion.normalize import coerce_cell
from pyopendata.models.dataset import DatasetResource
from pyopendata.models.payload import FetchedPayload
from pyopendata.outcomes import Failure

_logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_filename(dataset_id: str) -> str:
    """Map a dataset id to a filesystem-safe stem."""
    stem = _UNSAFE_FILENAME_CHARS.sub("_", dataset_id.strip())
    return stem.strip(".") or "dataset"


def _header_names(raw_header: Sequence[str]) -> list[str]:
    names: list[str] = []
    for index, raw in enumerate(raw_header):
        name = raw.strip() or f"column_{index + 1}"
        candidate = name
        suffix = 2
        while candidate in names:
            candidate = f"{name}_{suffix}"
            suffix += 1
        names.append(candidate)
    return names


def parse_csv(text: str, *, endpoint: str = "") -> FetchedPayload:
    """Parse CSV text into a :class:`FetchedPayload`.

    The header row fixes column order. Short rows fill the missing columns
    with ``None``; cells beyond the header are ignored. Blank lines are
    skipped.
    """
    body = text.lstrip("\ufeff")
    try:
        rows = list(csv.reader(io.StringIO(body, newline=""), strict=True))
    except csv.Error as exc:
        raise OpenDataParseError(f"Malformed CSV from {endpoint or 'resource'}: {exc}", endpoint=endpoint) from exc

    if not rows or not any(cell.strip() for cell in rows[0]):
        raise OpenDataEmptyPayload(f"CSV without header from {endpoint or 'resource'}", endpoint=endpoint)

    columns = _header_names(rows[0])
    records: list[dict[str, Any]] = []
    overflow = 0
    for row in rows[1:]:
        if not any(cell.strip() for cell in row):
            continue
        if len(row) > len(columns):
            overflow += 1
        records.append({col: coerce_cell(row[i]) if i < len(row) else None for i, col in enumerate(columns)})

    if overflow:
        _logger.debug("%d rows from %s had more cells than the header", overflow, endpoint or "resource")
    if not records:
        raise OpenDataEmptyPayload(f"CSV with zero data rows from {endpoint or 'resource'}", endpoint=endpoint)
    return FetchedPayload.from_records(records, columns)


@dataclass(frozen=True, slots=True)
class MaterializedResource:
    """Successful materialization: parsed records plus where they were written."""

    payload: FetchedPayload
    resource: DatasetResource
    local_ref: str | None = None
    """File name under the data directory, ``None`` when persisting was skipped."""


class ResourceMaterializer:
    """Turn a dataset's resource list into parsed records and a local file."""

    def __init__(self, transport: Transport, *, data_dir: Path, tabular_format: str = "CSV") -> None:
        self._transport = transport
        self._data_dir = Path(data_dir)
        self._tabular_format = tabular_format

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def select_resource(self, dataset_id: str, resources: Sequence[DatasetResource]) -> DatasetResource:
        """Return the first resource in the tabular format that has a download URL."""
        if not resources:
            raise OpenDataNoResourcesError(f"Dataset {dataset_id} has no resources")
        for resource in resources:
            # Exact match against the portal's upper-case tag.
            if resource.format == self._tabular_format and resource.download_url:
                return resource
        formats = sorted({r.format or "?" for r in resources})
        raise OpenDataNoTabularResourceError(
            f"Dataset {dataset_id} has no {self._tabular_format} resource (formats: {', '.join(formats)})"
        )

    async def download(self, resource: DatasetResource) -> str:
        url = resource.download_url
        response = await self._transport.request("GET", url, accept="text/csv,text/plain,*/*")
        raise_for_status(response, url)
        text = response.text
        if not text.strip():
            raise OpenDataEmptyPayload(f"Empty download from {url}", endpoint=url)
        if looks_like_block_page(text):
            raise OpenDataChallengeBlocked(
                f"Block page instead of data from {url}",
                status_code=response.status,
                endpoint=url,
            )
        return text

    def write_sink(self, dataset_id: str, content: str, resource_format: str) -> str:
        """Write *content* to ``{data_dir}/{id}.{ext}`` and return the file name."""
        extension = (resource_format or self._tabular_format).lower()
        filename = f"{safe_filename(dataset_id)}.{extension}"
        path = self._data_dir / filename
        tmp_path = path.with_name(f"{path.name}.tmp")
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(content, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise OpenDataStorageError(f"Cannot write {path}: {exc}", endpoint=str(path)) from exc
        return filename

    async def materialize(
        self,
        dataset_id: str,
        resources: Sequence[DatasetResource],
        *,
        persist: bool = True,
    ) -> MaterializedResource | Failure:
        """Select, download, validate and parse the tabular resource of *dataset_id*.

        Every failure mode comes back as a :class:`Failure` with its own kind.
        With ``persist=False`` the local file write is skipped.
        """
        try:
            resource = self.select_resource(dataset_id, resources)
            text = await self.download(resource)
            payload = parse_csv(text, endpoint=resource.download_url)
            local_ref = self.write_sink(dataset_id, text, resource.format) if persist else None
        except OpenDataError as exc:
            _logger.warning("Materializing %s failed: %s (%s)", dataset_id, exc, exc.kind.value)
            return Failure.from_error(exc, target=dataset_id)

        _logger.debug("Materialized %s: %d records, %d columns", dataset_id, payload.total_records, len(payload.columns))
        return MaterializedResource(payload=payload, resource=resource, local_ref=local_ref)
