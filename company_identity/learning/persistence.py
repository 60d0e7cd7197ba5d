"""
Durable storage backends for pattern-store snapshots.

Backends only move whole snapshots; the store owns the in-memory state and
decides when to flush. Every backend raises on failure and the store
decides how to degrade.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from company_identity.cache import AppCache


class PatternPersistence(ABC):
    """Abstract snapshot backend."""

    @abstractmethod
    def load(self) -> dict[str, Any] | None:
        """Return the stored snapshot, or None if nothing has been saved yet."""
        ...

    @abstractmethod
    def save(self, snapshot: dict[str, Any]) -> None:
        """Durably replace the stored snapshot."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend description for logs."""
        ...


class InMemoryPatternPersistence(PatternPersistence):
    """Keeps the last snapshot in memory. Used for tests and throwaway runs."""

    def __init__(self, snapshot: dict[str, Any] | None = None):
        self._snapshot = copy.deepcopy(snapshot) if snapshot else None
        self.save_count = 0

    @property
    def name(self) -> str:
        return "memory"

    def load(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._snapshot)

    def save(self, snapshot: dict[str, Any]) -> None:
        self._snapshot = copy.deepcopy(snapshot)
        self.save_count += 1


class JsonFilePatternPersistence(PatternPersistence):
    """
    Snapshot in a JSON file.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so a crash mid-write leaves the previous
    snapshot intact.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    @property
    def name(self) -> str:
        return str(self.path)

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def save(self, snapshot: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class DiskCachePatternPersistence(PatternPersistence):
    """Snapshot stored under one key of an AppCache namespace."""

    def __init__(self, cache: AppCache, namespace: str = "patterns", key: str = "snapshot"):
        self.cache = cache
        self.namespace = namespace
        self.key = key

    @property
    def name(self) -> str:
        return f"diskcache:{self.cache.cache_dir}/{self.namespace}:{self.key}"

    def load(self) -> dict[str, Any] | None:
        return self.cache.get(self.namespace, self.key)

    def save(self, snapshot: dict[str, Any]) -> None:
        self.cache.set(self.namespace, self.key, snapshot)
