"""
Resolution context: the shared state a resolution job runs against.

Owns the result cache, pattern store and hierarchy table, and knows how to
persist them. Build one per process (or per test) and hand it to the
orchestrator; nothing in the package keeps global state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from company_identity.cache import AppCache
from company_identity.config import Settings, get_settings
from company_identity.entity_resolution.hierarchy import CompanyHierarchyTable
from company_identity.entity_resolution.result_cache import ResultCache
from company_identity.learning.persistence import JsonFilePatternPersistence
from company_identity.learning.store import PatternStore

logger = logging.getLogger(__name__)


@dataclass
class ResolutionContext:
    settings: Settings
    cache: ResultCache
    store: PatternStore
    hierarchy: CompanyHierarchyTable
    app_cache: AppCache | None = None

    @classmethod
    def in_memory(
        cls,
        settings: Settings | None = None,
        hierarchy: CompanyHierarchyTable | None = None,
        store: PatternStore | None = None,
    ) -> ResolutionContext:
        """Context with no durable storage (tests, dry runs)."""
        settings = settings or get_settings()
        return cls(
            settings=settings,
            cache=ResultCache(settings.max_cache_entries, settings.cache_ttl_hours),
            store=store if store is not None else PatternStore(),
            hierarchy=hierarchy if hierarchy is not None else CompanyHierarchyTable.default(),
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        hierarchy: CompanyHierarchyTable | None = None,
    ) -> ResolutionContext:
        """
        Context backed by the configured storage.

        Learned patterns live in ``settings.pattern_store_path`` (JSON);
        cached results live in the diskcache at ``settings.cache_dir``. If the
        cache directory cannot be opened, results are cached in memory only.
        """
        settings = settings or get_settings()

        app_cache: AppCache | None
        try:
            app_cache = AppCache(settings.cache_dir)
        except Exception as e:
            logger.warning(
                f"Could not open result cache at {settings.cache_dir}: {e}. "
                "Caching in memory only."
            )
            app_cache = None

        cache = ResultCache(settings.max_cache_entries, settings.cache_ttl_hours, backing=app_cache)
        cache.load()
        store = PatternStore(JsonFilePatternPersistence(settings.pattern_store_path))
        return cls(
            settings=settings,
            cache=cache,
            store=store,
            hierarchy=hierarchy if hierarchy is not None else CompanyHierarchyTable.default(),
            app_cache=app_cache,
        )

    def close(self) -> None:
        """Persist cached results and learned patterns, then release storage."""
        try:
            self.cache.save()
        finally:
            self.store.flush()
            if self.app_cache is not None:
                self.app_cache.close()
                self.app_cache = None
                self.cache.backing = None
