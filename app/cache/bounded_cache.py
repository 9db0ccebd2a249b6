"""
app/cache/bounded_cache.py

Size- and count-limited in-memory cache used in front of remote queries.

Eviction ranks entries by ``last_accessed * log(access_count + 1)`` and
drops the lowest until both ceilings hold. Entries older than
``max_age_seconds`` are removed by ``sweep_expired`` regardless of traffic;
the scheduler calls it on a fixed interval.
"""

from __future__ import annotations

import json
import logging
import math
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from app.config import get_cache_settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEM_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_AGE_SECONDS = 3600


@dataclass
class CacheEntry:
    key: str
    value: Any
    size_bytes: int
    created_at: float
    access_count: int = 0
    last_accessed: float = 0.0

    def eviction_score(self) -> float:
        return self.last_accessed * math.log(self.access_count + 1)


@dataclass(frozen=True)
class CacheStats:
    """
    Point-in-time cache counters. ``hit_rate`` is a percentage.
    """

    name: str
    entries: int
    bytes: int
    hits: int
    misses: int
    hit_rate: float
    max_entries: int
    max_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "entries": self.entries,
            "bytes": self.bytes,
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": self.hit_rate,
            "maxEntries": self.max_entries,
            "maxBytes": self.max_bytes,
        }


def estimate_size(value: Any) -> int:
    """
    Approximate resident size as the UTF-8 length of the JSON encoding.
    """

    return len(json.dumps(value, default=str).encode("utf-8"))


class BoundedCache:
    """
    Cache bounded by entry count and total estimated bytes.

    Oversize values (above ``max_item_bytes``) are never admitted.
    """

    def __init__(
        self,
        *,
        name: str,
        max_entries: int,
        max_bytes: int,
        max_item_bytes: int = DEFAULT_MAX_ITEM_BYTES,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.max_entries = max(1, max_entries)
        self.max_bytes = max(1, max_bytes)
        self.max_item_bytes = max_item_bytes
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._total_bytes = 0
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def set(self, key: str, value: Any) -> bool:
        """
        Store ``value`` under ``key``. Returns False when the value was not admitted.
        """

        try:
            size_bytes = estimate_size(value)
        except (TypeError, ValueError):
            logger.warning("Cache skipped unserializable value cache=%s key=%s", self.name, key)
            return False

        if size_bytes > self.max_item_bytes:
            logger.warning(
                "Cache skipped oversize value cache=%s key=%s size_mb=%.1f",
                self.name,
                key,
                size_bytes / (1024 * 1024),
            )
            return False

        now = self._clock()
        with self._lock:
            previous = self._entries.pop(key, None)
            if previous is not None:
                self._total_bytes -= previous.size_bytes
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                size_bytes=size_bytes,
                created_at=now,
                last_accessed=now,
            )
            self._total_bytes += size_bytes
            self._evict_locked()
            admitted = key in self._entries

        logger.debug("Cache set cache=%s key=%s size_kb=%d", self.name, key, size_bytes // 1024)
        return admitted

    def get(self, key: str, *, include_expired: bool = False) -> Any | None:
        """
        Return the cached value or None. Expired entries count as misses
        unless ``include_expired`` is set (used for stale fallbacks).
        """

        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or (not include_expired and self._is_expired(entry, now)):
                self._misses += 1
                return None
            entry.access_count += 1
            entry.last_accessed = now
            self._hits += 1
            return entry.value

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        if value is not None:
            self.set(key, value)
        return value

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            self._total_bytes -= entry.size_bytes
            return True

    def invalidate(self, pattern: str | re.Pattern[str]) -> int:
        """
        Remove every key matching ``pattern`` (regex search). Returns the removed count.
        """

        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            doomed = [key for key in self._entries if regex.search(key)]
            for key in doomed:
                self._total_bytes -= self._entries.pop(key).size_bytes

        if doomed:
            logger.info("Cache invalidated cache=%s pattern=%s removed=%d", self.name, regex.pattern, len(doomed))
        return len(doomed)

    def sweep_expired(self) -> int:
        """
        Remove entries older than ``max_age_seconds``. Returns the removed count.
        """

        now = self._clock()
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in doomed:
                self._total_bytes -= self._entries.pop(key).size_bytes

        if doomed:
            logger.info("Cache sweep cache=%s removed=%d", self.name, len(doomed))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_bytes = 0
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            lookups = self._hits + self._misses
            hit_rate = round(self._hits / lookups * 100, 2) if lookups else 0.0
            return CacheStats(
                name=self.name,
                entries=len(self._entries),
                bytes=self._total_bytes,
                hits=self._hits,
                misses=self._misses,
                hit_rate=hit_rate,
                max_entries=self.max_entries,
                max_bytes=self.max_bytes,
            )

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.max_age_seconds

    def _evict_locked(self) -> None:
        if len(self._entries) <= self.max_entries and self._total_bytes <= self.max_bytes:
            return

        # sorted() is stable, so equal scores evict in insertion order
        ranked = sorted(self._entries.values(), key=CacheEntry.eviction_score)
        evicted = 0
        for entry in ranked:
            if len(self._entries) <= self.max_entries and self._total_bytes <= self.max_bytes:
                break
            del self._entries[entry.key]
            self._total_bytes -= entry.size_bytes
            evicted += 1

        logger.debug("Cache evicted cache=%s count=%d", self.name, evicted)


@lru_cache(maxsize=1)
def get_query_cache() -> BoundedCache:
    """
    Process-wide cache for SQL view results.
    """

    settings = get_cache_settings()
    return BoundedCache(
        name="query",
        max_entries=settings.query_max_entries,
        max_bytes=settings.query_max_bytes,
        max_item_bytes=settings.max_item_bytes,
        max_age_seconds=settings.max_age_seconds,
    )


@lru_cache(maxsize=1)
def get_metadata_cache() -> BoundedCache:
    """
    Process-wide cache for variable metadata and analytics payloads.
    """

    settings = get_cache_settings()
    return BoundedCache(
        name="metadata",
        max_entries=settings.metadata_max_entries,
        max_bytes=settings.metadata_max_bytes,
        max_item_bytes=settings.max_item_bytes,
        max_age_seconds=settings.max_age_seconds,
    )
