"""Durable JSON store for :class:`SyncState`.

Single-process by convention: no file locking is attempted. Every save
writes the whole aggregate to a temporary file and renames it into place,
so a crash never leaves a half-written state file behind.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from pyopendata.exceptions import OpenDataStorageError
from pyopendata.state.models import SyncState

_logger = logging.getLogger(__name__)


class SyncStateStore:
    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SyncState:
        """Load the persisted state; missing or corrupt files yield a fresh state."""
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SyncState()
        except (OSError, UnicodeDecodeError) as exc:
            _logger.warning("Cannot read sync state %s (%s); starting over", self._path, exc)
            return SyncState()

        try:
            return SyncState.model_validate_json(text)
        except ValidationError as exc:
            _logger.warning(
                "Sync state %s is corrupt (%d errors); starting over",
                self._path,
                exc.error_count(),
            )
            return SyncState()

    def save(self, state: SyncState) -> None:
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise OpenDataStorageError(f"Cannot save sync state to {self._path}: {exc}", endpoint=str(self._path)) from exc

    def reset(self) -> bool:
        """Delete the state file. Returns ``True`` when a file was removed."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise OpenDataStorageError(f"Cannot delete {self._path}: {exc}", endpoint=str(self._path)) from exc
        return True
