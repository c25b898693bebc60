"""Typed outcome values returned by per-dataset operations."""

from __future__ import annotations

from dataclasses import dataclass

from pyopendata.exceptions import FailureKind, OpenDataError


@dataclass(frozen=True, slots=True)
class Failure:
    """Why an operation on one target (dataset id or category) failed."""

    kind: FailureKind
    message: str
    target: str | None = None
    endpoint: str = ""
    status_code: int | None = None

    @classmethod
    def from_error(cls, exc: OpenDataError, *, target: str | None = None) -> Failure:
        return cls(
            kind=exc.kind,
            message=str(exc),
            target=target,
            endpoint=exc.endpoint,
            status_code=getattr(exc, "status_code", None),
        )

    def for_target(self, target: str) -> Failure:
        return Failure(
            kind=self.kind,
            message=self.message,
            target=target,
            endpoint=self.endpoint,
            status_code=self.status_code,
        )

    def __str__(self) -> str:
        prefix = f"{self.target}: " if self.target else ""
        return f"{prefix}{self.kind.value}: {self.message}"
