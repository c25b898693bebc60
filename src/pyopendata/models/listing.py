"""Category listing page model."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field

from pyopendata.models.dataset import DatasetMetadata


class DatasetListing(BaseModel):
    """One page of a category (or uncategorized) dataset listing."""

    model_config = ConfigDict(frozen=True)

    items: list[DatasetMetadata] = Field(default_factory=list)
    total_count: int = 0
    """Upstream-reported number of datasets across all pages."""
    page: int = 0
    """Zero-based page index."""
    page_size: int = 100
    source: str = ""
    """Name of the strategy that produced this page."""

    @property
    def page_count(self) -> int:
        """Number of pages implied by ``total_count``, recomputed on every page."""
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)

    @property
    def ids(self) -> list[str]:
        return [item.id for item in self.items]
