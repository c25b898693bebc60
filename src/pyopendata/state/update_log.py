"""Bounded JSON history of detected dataset updates."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pyopendata.exceptions import OpenDataStorageError
from pyopendata.state.policy import DatasetChange

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UpdateLog:
    """Append-only list of ``{timestamp, updates}`` entries, trimmed to the newest *max_entries*."""

    def __init__(
        self,
        path: Path,
        *,
        max_entries: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._path = Path(path)
        self._max_entries = max_entries
        self._clock = clock

    def _read(self) -> list[dict[str, Any]]:
        try:
            loaded = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as exc:
            _logger.warning("Ignoring unreadable update log %s: %s", self._path, exc)
            return []
        if not isinstance(loaded, list):
            return []
        return [entry for entry in loaded if isinstance(entry, dict)]

    def append(self, changes: Sequence[DatasetChange]) -> None:
        if not changes:
            return
        entries = self._read()
        entries.append(
            {
                "timestamp": self._clock().isoformat(),
                "updates": [change.to_wire() for change in changes],
            }
        )
        entries = entries[-self._max_entries :]
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(entries, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise OpenDataStorageError(f"Cannot write update log {self._path}: {exc}", endpoint=str(self._path)) from exc

    def recent(self, count: int = 5) -> list[dict[str, Any]]:
        return self._read()[-count:] if count > 0 else []

    def reset(self) -> bool:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        return True
