from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from pyopendata._transport import TransportResponse
from pyopendata.config import OpenDataConfig

API = "https://open.data.gov.sa/data/api"
CATALOG = "https://open.data.gov.sa/api"
CKAN = "https://open.data.gov.sa/api/3/action"
PORTAL = "https://open.data.gov.sa"

Reply = TransportResponse | Exception


def json_reply(body: Any, status: int = 200) -> TransportResponse:
    return TransportResponse(status=status, text=json.dumps(body, ensure_ascii=False))


def text_reply(text: str, status: int = 200) -> TransportResponse:
    return TransportResponse(status=status, text=text)


@dataclass
class FakeTransport:
    """In-memory stand-in for the portal.

    Routes map ``(method, url)`` to a queue of replies; the last reply of a
    queue repeats. Unrouted URLs answer HTTP 404.
    """

    routes: dict[tuple[str, str], list[Reply]] = field(default_factory=dict)
    calls: list[tuple[str, str, Any]] = field(default_factory=list)
    refreshes: int = 0

    def route(self, method: str, url: str, *replies: Reply) -> None:
        self.routes[(method, url)] = list(replies)

    def calls_to(self, url: str) -> int:
        return sum(1 for _, called, _ in self.calls if called == url)

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        accept: str = "application/json",
    ) -> TransportResponse:
        self.calls.append((method, url, json_body))
        queue = self.routes.get((method, url))
        if not queue:
            return TransportResponse(status=404, text="not found", url=url)
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def refresh_session(self) -> None:
        self.refreshes += 1


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def config(tmp_path: Path) -> OpenDataConfig:
    return OpenDataConfig(
        data_dir=tmp_path / "open-data",
        state_file=tmp_path / "sync-state.json",
        update_log_file=tmp_path / "update-log.json",
        discovery_file=tmp_path / "discovery-state.json",
        cache_dir=None,
        request_delay=0.0,
        page_delay=0.0,
        refresh_delay=0.0,
        dataset_ids=(),
    )
