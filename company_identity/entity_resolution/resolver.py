"""
Deterministic Resolver.

Zero-network resolution. Consults, in priority order:
1. Result cache (a hit is final)
2. Learned patterns
3. Hierarchy domain patterns
4. Hierarchy bundle ids
5. Hierarchy title keywords
6. Generic domain-name extraction

The most confident strategy wins; ties go to the higher-priority strategy.
A result at or above the confidence threshold is final, anything lower is
handed to inference with the best guess kept as a floor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from company_identity.constants import DEFAULT_CONFIDENCE_THRESHOLD
from company_identity.entity_resolution.hierarchy import CompanyHierarchyTable
from company_identity.entity_resolution.matchers import StrategyMatcher, default_matchers
from company_identity.entity_resolution.result_cache import ResultCache
from company_identity.learning.store import PatternStore
from company_identity.models import EntityQuery, ResolutionMethod, ResolutionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolverOutcome:
    """Best deterministic answer for one query."""

    result: ResolutionResult
    is_final: bool  # True when no inference is needed
    candidates: tuple[ResolutionResult, ...] = ()

    @property
    def from_cache(self) -> bool:
        return self.result.method is ResolutionMethod.CACHED


class DeterministicResolver:
    """
    Runs every strategy and keeps the best result.

    Configurable with pluggable matchers, like the rest of the pipeline.
    """

    def __init__(
        self,
        matchers: list[StrategyMatcher],
        cache: ResultCache | None = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ):
        self.matchers = sorted(matchers, key=lambda m: m.priority)
        self.cache = cache
        self.confidence_threshold = confidence_threshold

    @classmethod
    def default(
        cls,
        store: PatternStore,
        hierarchy: CompanyHierarchyTable,
        cache: ResultCache | None = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> DeterministicResolver:
        return cls(default_matchers(store, hierarchy), cache, confidence_threshold)

    def resolve(self, query: EntityQuery) -> ResolverOutcome:
        """Resolve one query without any network access."""
        if self.cache is not None:
            cached = self.cache.get(query)
            if cached is not None:
                return ResolverOutcome(result=cached, is_final=True, candidates=(cached,))

        candidates: list[ResolutionResult] = []
        for matcher in self.matchers:
            result = matcher.match(query)
            if result is not None and not result.is_unknown:
                logger.debug(
                    f"{matcher.name} -> {result.company} ({result.confidence:.2f}) for {query.url!r}"
                )
                candidates.append(result)

        if not candidates:
            return ResolverOutcome(
                result=ResolutionResult.unknown("No deterministic strategy matched"),
                is_final=False,
            )

        # max() keeps the first maximal element, and candidates are in priority order
        best = max(candidates, key=lambda r: r.confidence)
        return ResolverOutcome(
            result=best,
            is_final=best.confidence >= self.confidence_threshold,
            candidates=tuple(candidates),
        )
