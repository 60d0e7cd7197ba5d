"""
Content-addressed result cache.

Keys are ``EntityQuery.cache_key`` (hash of the four lower-cased, stripped
input fields). Lookups and writes are O(1) and guarded by one lock so
concurrent batch completions can share the cache.

Expiry is lazy: an entry older than the TTL is dropped when it is next
read. Eviction only runs when a new key arrives at capacity; it removes
the least-hit, oldest 10% of entries.

An optional AppCache backing lets the cache survive restarts:
``load()`` at start-up and ``save()`` on shutdown.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from company_identity.cache import AppCache
from company_identity.constants import (
    CACHE_EVICTION_FRACTION,
    DEFAULT_CACHE_TTL_HOURS,
    DEFAULT_MAX_CACHE_ENTRIES,
)
from company_identity.models import EntityQuery, ResolutionMethod, ResolutionResult

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "results"


@dataclass
class CacheEntry:
    result: ResolutionResult
    timestamp: float  # Seconds since epoch when stored
    hits: int = 0


class ResultCache:
    """Thread-safe in-memory result cache with TTL and hit-based eviction."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_CACHE_ENTRIES,
        ttl_hours: float = DEFAULT_CACHE_TTL_HOURS,
        backing: AppCache | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            max_entries: Capacity before eviction
            ttl_hours: Entries older than this are treated as misses
            backing: Optional durable store used by load()/save()
            clock: Time source (seconds), injectable for tests
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_hours * 3600
        self.backing = backing
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    def get(self, query: EntityQuery) -> ResolutionResult | None:
        """Cached result for a query, re-labelled with method ``cached``."""
        key = query.cache_key
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._expired(entry, now):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            entry.hits += 1
            self._hits += 1
            result = entry.result
        return result.with_method(ResolutionMethod.CACHED)

    def set(self, query: EntityQuery, result: ResolutionResult) -> None:
        """Store a result, evicting first if a new key would exceed capacity."""
        key = query.cache_key
        now = self._clock()
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_locked()
            self._entries[key] = CacheEntry(result=result, timestamp=now)

    def _evict_locked(self) -> None:
        count = max(1, math.floor(self.max_entries * CACHE_EVICTION_FRACTION))
        victims = sorted(
            self._entries.items(), key=lambda item: (item[1].hits, item[1].timestamp)
        )[:count]
        for key, _ in victims:
            del self._entries[key]
        self._evictions += len(victims)
        logger.debug(f"Result cache at capacity ({self.max_entries}); evicted {len(victims)}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }

    def load(self) -> int:
        """Load unexpired entries from the backing store. Returns entries loaded."""
        if self.backing is None:
            return 0
        now = self._clock()
        loaded = 0
        with self._lock:
            for key, raw in self.backing.items(CACHE_NAMESPACE):
                try:
                    entry = CacheEntry(
                        result=ResolutionResult.from_dict(raw["result"]),
                        timestamp=float(raw["timestamp"]),
                        hits=int(raw.get("hits", 0)),
                    )
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Dropping malformed cached result {key}: {e}")
                    self.backing.delete(CACHE_NAMESPACE, key)
                    continue
                if self._expired(entry, now):
                    continue
                if len(self._entries) >= self.max_entries:
                    break
                self._entries[key] = entry
                loaded += 1
        if loaded:
            logger.info(f"Loaded {loaded} cached results from {self.backing.cache_dir}")
        return loaded

    def save(self) -> int:
        """
        Replace the backing namespace with the unexpired entries, each with
        its remaining TTL. Entries evicted in memory do not come back.
        """
        if self.backing is None:
            return 0
        now = self._clock()
        with self._lock:
            snapshot = [
                (key, entry) for key, entry in self._entries.items() if not self._expired(entry, now)
            ]
        self.backing.clear_namespace(CACHE_NAMESPACE)
        for key, entry in snapshot:
            remaining = self.ttl_seconds - (now - entry.timestamp)
            self.backing.set(
                CACHE_NAMESPACE,
                key,
                {"result": entry.result.to_dict(), "timestamp": entry.timestamp, "hits": entry.hits},
                ttl_seconds=remaining,
            )
        logger.debug(f"Saved {len(snapshot)} cached results")
        return len(snapshot)
