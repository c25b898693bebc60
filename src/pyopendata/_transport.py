"""HTTP transport with portal cookie management and session refresh."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from http.cookies import SimpleCookie
from typing import Any, Protocol

import aiohttp

from pyopendata._redact import redact_for_log
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import OpenDataTransportError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransportResponse:
    """Status and decoded body of one upstream response."""

    status: int
    text: str
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    The production implementation talks to the portal over aiohttp; tests
    substitute a fake that serves canned bodies. Any implementation that can
    "fetch inside an authenticated context" and "refresh the session" fits.
    """

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        accept: str = "application/json",
    ) -> TransportResponse:
        ...

    async def refresh_session(self) -> None:
        ...


class HttpTransport:
    """aiohttp transport that keeps the portal's session cookies between calls."""

    def __init__(self, config: OpenDataConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._cookies: dict[str, str] = {}
        self._cookie_header: str = ""

    def _update_cookies(self, headers: Any) -> None:
        """Extract Set-Cookie headers and store them."""
        raw_cookies = headers.getall("Set-Cookie", [])
        changed = False
        for raw in raw_cookies:
            cookie: SimpleCookie = SimpleCookie()
            cookie.load(raw)
            for key, morsel in cookie.items():
                value = morsel.value
                if self._cookies.get(key) != value:
                    self._cookies[key] = value
                    changed = True

        if changed:
            self._cookie_header = "; ".join(f"{k}={v}" for k, v in self._cookies.items())

    def _build_headers(self, accept: str, *, has_body: bool) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": accept,
            "accept-language": "ar,en;q=0.9",
            "referer": f"{self._config.portal_url}/",
            "user-agent": self._config.user_agent,
        }
        if has_body:
            headers["content-type"] = "application/json; charset=UTF-8"
        if self._cookie_header:
            headers["cookie"] = self._cookie_header
        return headers

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        accept: str = "application/json",
    ) -> TransportResponse:
        """Send one request and return its status and text body.

        Non-2xx statuses are returned, not raised: deciding what counts as a
        rejection is the caller's job. Only network-level failures raise
        :class:`OpenDataTransportError`.
        """
        has_body = json_body is not None
        headers = self._build_headers(accept, has_body=has_body)
        data = json.dumps(json_body, ensure_ascii=False) if has_body else None
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)

        _logger.debug("%s %s headers=%s body=%s", method, url, redact_for_log(headers), redact_for_log(json_body))

        try:
            async with self._http.request(method, url, data=data, headers=headers, timeout=timeout) as resp:
                self._update_cookies(resp.headers)
                text = await resp.text(errors="replace")
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise OpenDataTransportError(
                f"{method} {url} failed: {exc!r}",
                endpoint=url,
            ) from exc

        _logger.debug("%s %s -> HTTP %d body=%s", method, url, status, redact_for_log(text, max_string=200))
        return TransportResponse(status=status, text=text, url=url)

    async def refresh_session(self) -> None:
        """Load the human-facing listing page to renew anti-bot cookies."""
        url = f"{self._config.portal_url}/ar/datasets"
        _logger.info("Refreshing portal session via %s", url)
        response = await self.request("GET", url, accept="text/html,application/xhtml+xml")
        if not response.ok:
            _logger.warning("Session refresh answered HTTP %d", response.status)
