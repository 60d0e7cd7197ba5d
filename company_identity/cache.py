"""
Durable key/value storage using diskcache.

Backs the result cache and learned-pattern snapshots when they need to
survive process restarts. Keys are namespaced (``results:<hash>``,
``patterns:snapshot``) so one cache directory can hold both.
"""

import logging
from pathlib import Path
from typing import Any

import diskcache

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path("data/cache")


class AppCache:
    """Namespaced wrapper around a SQLite-backed diskcache.Cache."""

    def __init__(self, cache_dir: Path = DEFAULT_CACHE_DIR, timeout: float = 30.0):
        """
        Initialize cache.

        Args:
            cache_dir: Directory for cache files
            timeout: Seconds to wait for the SQLite write lock. Write-back from
                     several finished batches can contend for it.
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._cache = diskcache.Cache(str(self.cache_dir), timeout=timeout)

    def _make_key(self, namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    def get(self, namespace: str, key: str) -> Any | None:
        """Get a value from cache."""
        return self._cache.get(self._make_key(namespace, key))

    def set(
        self,
        namespace: str,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
    ) -> None:
        """Set a value in cache with optional TTL."""
        expire = ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        self._cache.set(self._make_key(namespace, key), value, expire=expire)

    def delete(self, namespace: str, key: str) -> bool:
        """Delete a value from cache."""
        return bool(self._cache.delete(self._make_key(namespace, key)))

    def items(self, namespace: str):
        """Yield (key, value) pairs in a namespace, skipping entries that expired mid-scan."""
        prefix = f"{namespace}:"
        for full_key in list(self._cache.iterkeys()):
            if not isinstance(full_key, str) or not full_key.startswith(prefix):
                continue
            value = self._cache.get(full_key)
            if value is not None:
                yield full_key[len(prefix) :], value

    def clear_namespace(self, namespace: str) -> int:
        """Clear all keys in a namespace."""
        prefix = f"{namespace}:"
        keys_to_delete = [key for key in self._cache if key.startswith(prefix)]
        for key in keys_to_delete:
            self._cache.delete(key)
        return len(keys_to_delete)

    def count(self, namespace: str | None = None) -> int:
        """Count entries, optionally filtered by namespace."""
        if namespace is None:
            return len(self._cache)
        prefix = f"{namespace}:"
        return sum(1 for key in self._cache if key.startswith(prefix))

    def stats(self) -> dict:
        """Get cache statistics."""
        namespaces: dict[str, int] = {}
        for key in self._cache:
            ns = key.split(":")[0] if ":" in key else "unknown"
            namespaces[ns] = namespaces.get(ns, 0) + 1

        cache_db = self.cache_dir / "cache.db"
        size_bytes = cache_db.stat().st_size if cache_db.exists() else 0

        return {
            "total": len(self._cache),
            "by_namespace": namespaces,
            "size_mb": round(size_bytes / (1024 * 1024), 2),
            "cache_dir": str(self.cache_dir),
        }

    def close(self):
        """Close the cache."""
        self._cache.close()
