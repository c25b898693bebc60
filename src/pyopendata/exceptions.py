"""Custom exception hierarchy for pyopendata.

Every per-dataset failure class carries a :class:`FailureKind` so the
orchestrator can turn a raised error into an observable outcome value
without inspecting messages.
"""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar


class FailureKind(StrEnum):
    TRANSPORT = "transport_error"
    UPSTREAM_REJECTION = "upstream_rejection"
    CHALLENGE_BLOCKED = "challenge_blocked"
    EMPTY_PAYLOAD = "empty_payload"
    NO_RESOURCES = "no_resources"
    NO_TABULAR_RESOURCE = "no_tabular_resource"
    PARSE_FAILURE = "parse_failure"
    STORAGE_FAILURE = "storage_failure"


class OpenDataError(Exception):
    """Base exception for all pyopendata errors."""

    kind: ClassVar[FailureKind] = FailureKind.TRANSPORT

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class OpenDataConfigError(OpenDataError):
    """Invalid or missing configuration."""


class OpenDataTransportError(OpenDataError):
    """Network-level failure (DNS, connection reset, timeout)."""

    kind = FailureKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        super().__init__(message, endpoint=endpoint)


class OpenDataUpstreamRejection(OpenDataTransportError):
    """Upstream answered with a non-2xx status."""

    kind = FailureKind.UPSTREAM_REJECTION


class OpenDataChallengeBlocked(OpenDataTransportError):
    """Upstream answered 2xx but the body is an HTML interstitial page.

    The portal's anti-bot layer substitutes challenge pages for JSON and
    CSV bodies without changing the status code, so this is detected from
    the body alone.
    """

    kind = FailureKind.CHALLENGE_BLOCKED


class OpenDataEmptyPayload(OpenDataError):
    """Valid response that carries no usable data."""

    kind = FailureKind.EMPTY_PAYLOAD


class OpenDataNoResourcesError(OpenDataEmptyPayload):
    """Dataset has no downloadable resources at all."""

    kind = FailureKind.NO_RESOURCES


class OpenDataNoTabularResourceError(OpenDataEmptyPayload):
    """Dataset has resources, none of them in the tabular format."""

    kind = FailureKind.NO_TABULAR_RESOURCE


class OpenDataParseError(OpenDataError):
    """Response body could not be decoded (malformed JSON or CSV)."""

    kind = FailureKind.PARSE_FAILURE


class OpenDataStorageError(OpenDataError):
    """Local disk or cache write failure."""

    kind = FailureKind.STORAGE_FAILURE
