"""Webhook notification of detected dataset updates."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import aiohttp

from pyopendata.state.policy import DatasetChange

_logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "Saudi Open Data Monitor"


def build_webhook_payload(changes: Sequence[DatasetChange], now: datetime | None = None) -> dict[str, Any]:
    stamp = now or datetime.now(UTC)
    return {
        "source": WEBHOOK_SOURCE,
        "timestamp": stamp.isoformat(),
        "updates": [change.to_wire() for change in changes],
    }


async def post_webhook(
    http_session: aiohttp.ClientSession,
    url: str,
    changes: Sequence[DatasetChange],
    *,
    timeout: float = 30.0,
) -> bool:
    """POST *changes* to *url*. Delivery problems are logged and reported as ``False``."""
    if not changes:
        return True
    payload = build_webhook_payload(changes)
    try:
        async with http_session.post(
            url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            if 200 <= resp.status < 300:
                _logger.info("Webhook delivered %d updates to %s", len(changes), url)
                return True
            _logger.error("Webhook %s answered HTTP %d", url, resp.status)
            return False
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        _logger.error("Webhook delivery to %s failed: %s", url, exc)
        return False
