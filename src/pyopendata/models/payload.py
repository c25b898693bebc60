"""Parsed resource payload model."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PayloadSource(StrEnum):
    API = "api"
    CACHE = "cache"


class FetchedPayload(BaseModel):
    """Tabular records parsed from one materialized resource.

    ``columns`` preserves the header order of the source file and equals the
    key set of the first record whenever records are present.
    """

    model_config = ConfigDict(frozen=True)

    records: list[dict[str, Any]] = Field(default_factory=list)
    columns: list[str] = Field(default_factory=list)
    total_records: int = 0
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    provenance: PayloadSource = PayloadSource.API

    @model_validator(mode="after")
    def _check_columns(self) -> FetchedPayload:
        if self.records and set(self.records[0]) != set(self.columns):
            raise ValueError("columns must match the key set of the first record")
        return self

    @classmethod
    def from_records(
        cls,
        records: Sequence[dict[str, Any]],
        columns: Sequence[str] | None = None,
        *,
        provenance: PayloadSource = PayloadSource.API,
    ) -> FetchedPayload:
        rows = list(records)
        if columns is None:
            columns = list(rows[0]) if rows else []
        return cls(
            records=rows,
            columns=list(columns),
            total_records=len(rows),
            provenance=provenance,
        )

    def limited(self, limit: int | None) -> FetchedPayload:
        """Return a copy holding at most *limit* records (``total_records`` unchanged)."""
        if limit is None or limit >= len(self.records):
            return self
        return self.model_copy(update={"records": self.records[:limit]})
