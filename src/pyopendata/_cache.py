"""TTL cache for parsed dataset payloads and listing pages.

Entries are stored as ``{"data": ..., "timestamp": <epoch ms>}`` JSON
strings under ``prefix + id`` in a pluggable key/value backend. Expiry is
checked lazily on read; nothing scans the store on a schedule.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, Protocol, TypeVar
from urllib.parse import quote, unquote

from pydantic import BaseModel, ValidationError

from pyopendata.exceptions import OpenDataStorageError

_logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FILE_SUFFIX = ".json"


class CacheBackend(Protocol):
    """Minimal string key/value store.

    ``set`` raises :class:`OpenDataStorageError` when the store is full or
    cannot be written.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryCacheBackend:
    """In-process backend with an optional byte budget."""

    def __init__(self, capacity_bytes: int | None = None) -> None:
        self._capacity = capacity_bytes
        self._data: dict[str, str] = {}

    def _size(self) -> int:
        return sum(len(v.encode("utf-8")) for v in self._data.values())

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._capacity is not None:
            current = self._size() - len(self._data.get(key, "").encode("utf-8"))
            if current + len(value.encode("utf-8")) > self._capacity:
                raise OpenDataStorageError(f"Memory cache quota of {self._capacity} bytes exceeded")
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileCacheBackend:
    """One JSON file per key under *directory*."""

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)

    def _path(self, key: str) -> Path:
        return self._dir / f"{quote(key, safe='')}{_FILE_SUFFIX}"

    def get(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            _logger.debug("Unreadable cache file for %s: %s", key, exc)
            return None

    def set(self, key: str, value: str) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            self._path(key).write_text(value, encoding="utf-8")
        except OSError as exc:
            raise OpenDataStorageError(f"Cannot write cache entry {key}: {exc}", endpoint=str(self._dir)) from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            _logger.warning("Cannot delete cache entry %s: %s", key, exc)

    def keys(self) -> list[str]:
        if not self._dir.is_dir():
            return []
        return [unquote(p.name[: -len(_FILE_SUFFIX)]) for p in self._dir.iterdir() if p.name.endswith(_FILE_SUFFIX)]


@dataclass(frozen=True)
class CacheStats:
    count: int = 0
    total_size_bytes: int = 0
    ids: list[str] = field(default_factory=list)


class CacheStore(Generic[T]):
    """TTL-bounded store of pydantic models keyed by id.

    Parameters
    ----------
    backend : CacheBackend
        Where serialized entries live.
    model : type
        Pydantic model used to validate entries on read.
    ttl : float
        Seconds after which an entry reads as absent.
    prefix : str
        Key namespace, so several stores can share one backend.
    clock : callable
        Returns epoch seconds. Injected by tests.
    """

    def __init__(
        self,
        backend: CacheBackend,
        model: type[T],
        *,
        ttl: float,
        prefix: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._model = model
        self._ttl_ms = ttl * 1000.0
        self._prefix = prefix
        self._clock = clock

    def _now_ms(self) -> int:
        return int(round(self._clock() * 1000))

    def _key(self, item_id: str) -> str:
        return f"{self._prefix}{item_id}"

    def _own_keys(self) -> list[str]:
        return [k for k in self._backend.keys() if k.startswith(self._prefix)]

    def get(self, item_id: str) -> T | None:
        key = self._key(item_id)
        raw = self._backend.get(key)
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            timestamp = int(entry["timestamp"])
            value = self._model.model_validate(entry["data"])
        except (ValueError, TypeError, KeyError, ValidationError) as exc:
            _logger.debug("Dropping corrupt cache entry %s: %s", key, exc)
            self._backend.delete(key)
            return None

        if self._now_ms() - timestamp > self._ttl_ms:
            _logger.debug("Cache entry %s expired", key)
            self._backend.delete(key)
            return None
        return value

    def put(self, item_id: str, value: T) -> bool:
        """Store *value*; returns ``False`` when the write had to be dropped.

        A failed write triggers one eviction pass and one retry. Caching is
        best effort, so a second failure is logged and swallowed.
        """
        key = self._key(item_id)
        serialized = json.dumps(
            {"data": value.model_dump(mode="json"), "timestamp": self._now_ms()},
            ensure_ascii=False,
        )
        try:
            self._backend.set(key, serialized)
            return True
        except OpenDataStorageError as exc:
            _logger.warning("Cache write for %s failed (%s); evicting oldest entries", key, exc)

        self.evict_oldest_half()
        try:
            self._backend.set(key, serialized)
        except OpenDataStorageError as exc:
            _logger.warning("Cache write for %s dropped after eviction: %s", key, exc)
            return False
        return True

    def clear(self, item_id: str) -> None:
        self._backend.delete(self._key(item_id))

    def clear_all(self) -> int:
        keys = self._own_keys()
        for key in keys:
            self._backend.delete(key)
        return len(keys)

    def stats(self) -> CacheStats:
        total = 0
        ids: list[str] = []
        for key in self._own_keys():
            raw = self._backend.get(key)
            if raw is None:
                continue
            total += len(raw.encode("utf-8"))
            ids.append(key[len(self._prefix) :])
        return CacheStats(count=len(ids), total_size_bytes=total, ids=sorted(ids))

    def evict_oldest_half(self) -> int:
        """Delete the older half of this store's entries; unreadable entries go first."""
        aged: list[tuple[float, str]] = []
        for key in self._own_keys():
            raw = self._backend.get(key)
            try:
                timestamp = float(json.loads(raw)["timestamp"]) if raw is not None else float("-inf")
            except (ValueError, TypeError, KeyError):
                timestamp = float("-inf")
            aged.append((timestamp, key))
        if not aged:
            return 0
        aged.sort()
        doomed = aged[: max(1, len(aged) // 2)]
        for _, key in doomed:
            self._backend.delete(key)
        _logger.info("Evicted %d of %d cache entries under %r", len(doomed), len(aged), self._prefix)
        return len(doomed)
