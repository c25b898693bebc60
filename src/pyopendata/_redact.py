"""Masking of portal session secrets in debug logs.

The portal's anti-bot layer hands out session cookies (``TS01...``,
``JSESSIONID``) that must not end up in shared logs. Cookie headers keep
their cookie names so a trace still shows which cookies were sent; only the
values are masked. Bodies are truncated because challenge pages are large.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

MASK = "<redacted>"

_COOKIE_HEADERS = frozenset({"cookie", "set-cookie"})
_SECRET_HEADERS = frozenset({"authorization", "proxy-authorization", "x-api-key"})
_SECRET_FIELDS = frozenset({"token", "apikey", "api_key", "access_token", "password"})


def mask_cookie_header(value: str, *, set_cookie: bool = False) -> str:
    """Mask cookie values in a ``Cookie`` or ``Set-Cookie`` header value.

    ``Cookie: a=1; b=2`` becomes ``a=<redacted>; b=<redacted>``. For
    ``Set-Cookie`` only the leading ``name=value`` pair is a secret; the
    attributes (``Path``, ``Expires``, ``HttpOnly``) are kept.
    """
    parts = [part.strip() for part in value.split(";")]
    masked: list[str] = []
    for index, part in enumerate(parts):
        if not part:
            continue
        name, sep, _ = part.partition("=")
        if sep and (not set_cookie or index == 0):
            masked.append(f"{name.strip()}={MASK}")
        else:
            masked.append(part)
    return "; ".join(masked)


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}…<truncated {len(text) - limit} chars>"


def redact_for_log(value: Any, *, max_string: int = 512) -> Any:
    """Return a copy of *value* that is safe to emit at DEBUG level.

    Mappings are treated as header or JSON objects: cookie headers are
    masked pair by pair, other secret keys are replaced wholesale.
    """
    if isinstance(value, str):
        return _truncate(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for key, item in value.items():
            name = str(key)
            lowered = name.lower()
            if lowered in _COOKIE_HEADERS and isinstance(item, str):
                redacted[name] = mask_cookie_header(item, set_cookie=lowered == "set-cookie")
            elif lowered in _SECRET_HEADERS or lowered in _SECRET_FIELDS:
                redacted[name] = MASK
            else:
                redacted[name] = redact_for_log(item, max_string=max_string)
        return redacted
    if isinstance(value, (list, tuple)):
        return [redact_for_log(item, max_string=max_string) for item in value]
    return value
