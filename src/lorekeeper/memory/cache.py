"""Read-through TTL cache in front of memory store queries.

The store only talks to the ``MemoryCache`` interface, so a distributed cache
can replace ``TTLMemoryCache`` without touching engine logic.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class CacheEntry:
    """A cached payload and its insertion time.

    Attributes:
        payload: Cached value (a list of memory entries for store queries)
        inserted_at: Clock reading when the value was stored
        ttl: Seconds the value stays fresh
    """

    payload: Any
    inserted_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    size: int = 0


class MemoryCache(ABC):
    """Cache interface used by the entity summary store."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the fresh payload for key, or None on a miss."""

    @abstractmethod
    def set(self, key: str, payload: Any, ttl: float | None = None) -> None:
        """Store payload under key for ttl seconds (default TTL if None)."""

    @abstractmethod
    def invalidate(self, key_substring: str | None = None) -> int:
        """Drop every key containing key_substring; no argument clears all.

        Returns:
            Number of entries removed.
        """

    @abstractmethod
    async def get_or_load(
        self, key: str, loader: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Return the cached payload or await loader and cache its result."""


class TTLMemoryCache(MemoryCache):
    """In-process TTL cache with lazy expiry.

    Expired entries are treated as misses and dropped when read; there is no
    background sweeper. All map operations hold a ``threading.Lock`` so the
    cache can be shared between event loops and worker threads.

    An ``invalidate()`` bumps a generation counter. A load that started before
    the invalidation does not store its result, so a read issued after
    ``invalidate()`` returns never sees data loaded before the write.

    Attributes:
        default_ttl: TTL applied when ``set`` is called without one.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._generation = 0
        self._stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            if entry.expired(now):
                del self._entries[key]
                self._stats.misses += 1
                logger.debug(f"Cache entry expired: {key}")
                return None
            self._stats.hits += 1
            return entry.payload

    def set(self, key: str, payload: Any, ttl: float | None = None) -> None:
        entry = CacheEntry(
            payload=payload,
            inserted_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        with self._lock:
            self._entries[key] = entry

    def _set_if_generation(self, key: str, payload: Any, generation: int) -> bool:
        entry = CacheEntry(payload=payload, inserted_at=self._clock(), ttl=self.default_ttl)
        with self._lock:
            if generation != self._generation:
                return False
            self._entries[key] = entry
            return True

    def invalidate(self, key_substring: str | None = None) -> int:
        with self._lock:
            self._generation += 1
            self._stats.invalidations += 1
            if key_substring is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed = [key for key in self._entries if key_substring in key]
                for key in doomed:
                    del self._entries[key]
                removed = len(doomed)

        logger.debug(f"Invalidated {removed} cache entries matching {key_substring!r}")
        return removed

    async def get_or_load(
        self, key: str, loader: Callable[[], Awaitable[Any]]
    ) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached

        with self._lock:
            generation = self._generation

        payload = await loader()
        if not self._set_if_generation(key, payload, generation):
            logger.debug(f"Discarded stale load for {key}")
        return payload

    def stats(self) -> CacheStats:
        """Snapshot of hit/miss counters and current size."""
        with self._lock:
            stats = CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                invalidations=self._stats.invalidations,
                size=len(self._entries),
            )
        logger.debug(f"Cache stats: {stats}")
        return stats
