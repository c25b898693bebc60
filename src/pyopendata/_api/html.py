"""Human-facing listing page scraper.

Last-resort source of dataset ids when every JSON endpoint is blocked.
Titles are best effort: headings are paired with ids in page order.
The HTML pager ignores ``page_size``: page index ``n`` is HTML page ``n + 1``.
"""

from __future__ import annotations

import html
import re

from pyopendata._api._common import raise_for_status
from pyopendata._transport import Transport
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import OpenDataEmptyPayload
from pyopendata.models.dataset import DatasetMetadata
from pyopendata.models.listing import DatasetListing

_ID_PATTERN = re.compile(r"/datasets/view/([a-fA-F0-9-]{36})")
_TITLE_PATTERN = re.compile(r'<h[2-4][^>]*class="[^"]*dataset[^"]*"[^>]*>([^<]+)</h[2-4]>', re.IGNORECASE)


def parse_listing_html(text: str) -> list[DatasetMetadata]:
    ids: list[str] = []
    for match in _ID_PATTERN.finditer(text):
        dataset_id = match.group(1).lower()
        if dataset_id not in ids:
            ids.append(dataset_id)
    titles = [html.unescape(m.group(1)).strip() for m in _TITLE_PATTERN.finditer(text)]
    items: list[DatasetMetadata] = []
    for index, dataset_id in enumerate(ids):
        title = titles[index] if index < len(titles) else ""
        items.append(DatasetMetadata(id=dataset_id, title_ar=title))
    return items


async def fetch_listing_page(
    config: OpenDataConfig,
    transport: Transport,
    category: str | None,
    page: int,
    page_size: int,
) -> DatasetListing:
    # The HTML listing is 1-based.
    url = f"{config.portal_url}/ar/datasets?page={page + 1}"
    if category:
        url += f"&category={category}"
    response = await transport.request("GET", url, accept="text/html,application/xhtml+xml")
    raise_for_status(response, url)
    items = parse_listing_html(response.text)
    if not items and page == 0:
        raise OpenDataEmptyPayload(f"No dataset links found on {url}", endpoint=url)
    # No total is reported and pages hold fewer rows than page_size:
    # advertise one more page while links keep coming, an empty page ends the listing.
    total = (page + 2) * page_size if items else page * page_size
    return DatasetListing(items=items, total_count=total, page=page, page_size=page_size, source="html")
