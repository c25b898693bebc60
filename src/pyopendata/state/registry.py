"""Durable registry of discovered dataset ids.

Discovery runs, manual additions and imported id lists all land here, so a
later ``sync --discovered`` can pick them up without crawling again. The
file accepts the camelCase keys of older ``discovery-state.json`` files.
"""

from __future__ import annotations

import json
import logging
import os
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from pyopendata.exceptions import OpenDataStorageError
from pyopendata.models.dataset import DatasetMetadata

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DiscoveredDataset(BaseModel):
    """One registered dataset id with the metadata known when it was found."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str
    title_primary: str = Field(default="", validation_alias=AliasChoices("title_primary", "titleAr"))
    title_secondary: str = Field(default="", validation_alias=AliasChoices("title_secondary", "titleEn"))
    provider_name: str = Field(default="", validation_alias=AliasChoices("provider_name", "providerNameAr"))
    update_frequency: str = Field(default="", validation_alias=AliasChoices("update_frequency", "updateFrequency"))
    category: str = ""
    source: str = ""
    """Listing strategy, ``manual`` or ``import``."""
    discovered_at: datetime | None = Field(default=None, validation_alias=AliasChoices("discovered_at", "discoveredAt"))

    @classmethod
    def from_metadata(
        cls,
        metadata: DatasetMetadata,
        *,
        source: str,
        category: str | None = None,
        now: datetime | None = None,
    ) -> DiscoveredDataset:
        return cls(
            id=metadata.id,
            title_primary=metadata.title_ar,
            title_secondary=metadata.title_en,
            provider_name=metadata.provider_name,
            update_frequency=metadata.update_frequency,
            category=metadata.category or category or "",
            source=source,
            discovered_at=now,
        )


class DiscoveryState(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    discovered: list[DiscoveredDataset] = Field(default_factory=list)
    last_update: datetime | None = Field(default=None, validation_alias=AliasChoices("last_update", "lastUpdate"))

    @property
    def ids(self) -> list[str]:
        return [entry.id for entry in self.discovered]

    def by_provider(self) -> Counter[str]:
        return Counter(entry.provider_name or "unknown" for entry in self.discovered)


class DiscoveryRegistry:
    """JSON file of discovered datasets, appended to in discovery order."""

    def __init__(self, path: Path, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._path = Path(path)
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> DiscoveryState:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return DiscoveryState()
        except (OSError, UnicodeDecodeError) as exc:
            _logger.warning("Cannot read discovery registry %s (%s); starting over", self._path, exc)
            return DiscoveryState()
        try:
            return DiscoveryState.model_validate_json(text)
        except ValidationError as exc:
            _logger.warning(
                "Discovery registry %s is corrupt (%d errors); starting over", self._path, exc.error_count()
            )
            return DiscoveryState()

    def save(self, state: DiscoveryState) -> None:
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        document = state.model_dump(mode="json")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise OpenDataStorageError(
                f"Cannot save discovery registry to {self._path}: {exc}", endpoint=str(self._path)
            ) from exc

    def ids(self) -> list[str]:
        return self.load().ids

    def add(self, entries: Iterable[DiscoveredDataset]) -> list[DiscoveredDataset]:
        """Register *entries* whose id is not yet known; returns the ones added.

        Entries without a ``discovered_at`` stamp get the current time. The
        file is only rewritten when something was added.
        """
        state = self.load()
        known = set(state.ids)
        now = self._clock()
        added: list[DiscoveredDataset] = []
        for entry in entries:
            if not entry.id or entry.id in known:
                continue
            known.add(entry.id)
            if entry.discovered_at is None:
                entry = entry.model_copy(update={"discovered_at": now})
            added.append(entry)
        if added:
            state.discovered.extend(added)
            state.last_update = now
            self.save(state)
            _logger.info("Registered %d discovered datasets (%d total)", len(added), len(state.discovered))
        return added

    def reset(self) -> bool:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise OpenDataStorageError(f"Cannot delete {self._path}: {exc}", endpoint=str(self._path)) from exc
        return True
