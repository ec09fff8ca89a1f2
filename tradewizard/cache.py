"""
Result cache for analysis runs.

ExtractionResult values are stored under `extraction:<sha256(url)>` with a TTL.
Two stores are provided: an in-process MemoryStore (bounded, oldest entry
evicted first) and a FileStore that keeps one JSON file per key on local disk.
"""

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from .models import ExtractionResult

logger = logging.getLogger(__name__)

KEY_PREFIX = "extraction:"


def cache_key(url: str) -> str:
    """Cache key for a normalized URL."""
    return KEY_PREFIX + hashlib.sha256(url.encode("utf-8")).hexdigest()


class KeyValueStore(ABC):
    """Minimal get/set/delete store with per-entry TTL."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class MemoryStore(KeyValueStore):
    def __init__(self, max_entries: int = 100, clock: Callable[[], float] = time.time):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() > expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full, evicted {evicted}")
        expires_at = self._clock() + ttl if ttl is not None else None
        self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class FileStore(KeyValueStore):
    def __init__(self, directory: Path, clock: Callable[[], float] = time.time):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    def _path(self, key: str) -> Path:
        return self.directory / f"{key.replace(':', '_')}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                entry = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️  Unreadable cache file {path}: {e}")
            return None
        expires_at = entry.get("expires_at")
        if expires_at is not None and self._clock() > expires_at:
            path.unlink(missing_ok=True)
            return None
        return entry.get("value")

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        entry = {
            "key": key,
            "expires_at": self._clock() + ttl if ttl is not None else None,
            "value": value,
        }
        with open(self._path(key), "w", encoding="utf-8") as f:
            json.dump(entry, f)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class ResultCache:
    """Typed wrapper storing serialized ExtractionResult values."""

    def __init__(self, store: KeyValueStore, ttl: float = 24 * 60 * 60):
        self.store = store
        self.ttl = ttl

    def get(self, url: str) -> Optional[ExtractionResult]:
        raw = self.store.get(cache_key(url))
        if raw is None:
            return None
        try:
            return ExtractionResult.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"⚠️  Discarding malformed cache entry for {url}: {e}")
            self.store.delete(cache_key(url))
            return None

    def set(self, url: str, result: ExtractionResult) -> None:
        self.store.set(cache_key(url), result.model_dump(mode="json"), ttl=self.ttl)
        logger.info(f"📋 Cached extraction result for {url}")

    def invalidate(self, url: str) -> None:
        self.store.delete(cache_key(url))
