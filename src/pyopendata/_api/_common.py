"""Shared helpers for portal endpoint modules.

This module centralizes the response rejection rules every JSON endpoint
shares:
- non-2xx status -> upstream rejection
- blank body -> empty payload
- body beginning with an HTML tag -> challenge page
- body that is not JSON -> parse failure
- ``{}`` / ``[]`` -> empty payload

It is internal to pyopendata and may change at any time.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pyopendata._constants import BLOCK_PAGE_MARKERS
from pyopendata._transport import Transport, TransportResponse
from pyopendata.exceptions import (
    OpenDataChallengeBlocked,
    OpenDataEmptyPayload,
    OpenDataParseError,
    OpenDataUpstreamRejection,
)

_JSON_ACCEPT = "application/json, text/plain, */*"
_HTML_PREFIX_RE = re.compile(r"^[\ufeff\s]*<[!a-zA-Z]")


def starts_with_html(text: str) -> bool:
    """Return ``True`` when *text* begins with an HTML tag (ignoring BOM and whitespace)."""
    return _HTML_PREFIX_RE.match(text) is not None


def looks_like_block_page(text: str) -> bool:
    """Heuristic anti-bot/interstitial detector for non-JSON bodies (e.g. CSV)."""
    if starts_with_html(text):
        return True
    return any(marker in text for marker in BLOCK_PAGE_MARKERS)


def raise_for_status(response: TransportResponse, endpoint: str) -> None:
    if not response.ok:
        raise OpenDataUpstreamRejection(
            f"HTTP {response.status} from {endpoint}: {response.text[:200]}",
            status_code=response.status,
            endpoint=endpoint,
        )


def decode_json_body(response: TransportResponse, endpoint: str) -> Any:
    """Apply the rejection rules to *response* and return the decoded JSON."""
    raise_for_status(response, endpoint)

    text = response.text
    if not text or not text.strip():
        raise OpenDataEmptyPayload(f"Empty body from {endpoint}", endpoint=endpoint)

    if starts_with_html(text):
        raise OpenDataChallengeBlocked(
            f"HTML challenge page instead of JSON from {endpoint}",
            status_code=response.status,
            endpoint=endpoint,
        )

    try:
        decoded = json.loads(text.lstrip("\ufeff"))
    except json.JSONDecodeError as exc:
        raise OpenDataParseError(f"Invalid JSON from {endpoint}: {text[:200]}", endpoint=endpoint) from exc

    if decoded is None or decoded == {} or decoded == []:
        raise OpenDataEmptyPayload(f"Empty JSON document from {endpoint}", endpoint=endpoint)
    return decoded


async def get_json(transport: Transport, url: str) -> Any:
    response = await transport.request("GET", url, accept=_JSON_ACCEPT)
    return decode_json_body(response, url)


async def post_json(transport: Transport, url: str, body: Any) -> Any:
    response = await transport.request("POST", url, json_body=body, accept=_JSON_ACCEPT)
    return decode_json_body(response, url)


def as_dict(decoded: Any, endpoint: str) -> dict[str, Any]:
    """Require a JSON object, raising :class:`OpenDataParseError` otherwise."""
    if not isinstance(decoded, dict):
        raise OpenDataParseError(
            f"Expected a JSON object from {endpoint}, got {type(decoded).__name__}",
            endpoint=endpoint,
        )
    return decoded
