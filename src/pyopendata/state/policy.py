"""Change classification policy.

Pure functions only: no I/O and no parsing of the version token.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from pyopendata.models.dataset import DatasetMetadata
from pyopendata.state.models import DatasetRecordState


class ChangeKind(StrEnum):
    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def classify_change(existing: DatasetRecordState | None, metadata: DatasetMetadata) -> ChangeKind:
    """Classify freshly resolved *metadata* against the stored record.

    The version token is compared with exact string equality. It is never
    interpreted as a date because its format is not guaranteed upstream.
    """
    if existing is None:
        return ChangeKind.NEW
    if existing.last_known_update != metadata.updated_at:
        return ChangeKind.UPDATED
    return ChangeKind.UNCHANGED


class DatasetChange(BaseModel):
    """A detected new or updated dataset, as reported to operators and webhooks."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ChangeKind
    title: str = ""
    provider: str = ""
    previous_update: str | None = None
    new_update: str | None = None

    @classmethod
    def from_metadata(
        cls,
        kind: ChangeKind,
        existing: DatasetRecordState | None,
        metadata: DatasetMetadata,
    ) -> DatasetChange:
        return cls(
            id=metadata.id,
            kind=kind,
            title=metadata.display_title,
            provider=metadata.provider_name,
            previous_update=existing.last_known_update if existing is not None else None,
            new_update=metadata.updated_at,
        )

    def to_wire(self) -> dict[str, str | None]:
        """Camel-case shape used by webhooks and the update log."""
        return {
            "id": self.id,
            "title": self.title,
            "provider": self.provider,
            "previousUpdate": self.previous_update,
            "newUpdate": self.new_update,
        }
