"""
Deterministic Matching Strategies.

Each strategy looks at one kind of evidence in a query (URLs, bundle id,
title) and either returns a ResolutionResult or None. Strategies never
touch the network and never raise on malformed input.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from company_identity.constants import (
    BUNDLE_ID_CONFIDENCE,
    GENERIC_DOMAIN_CONFIDENCE,
    HIERARCHY_DOMAIN_CONFIDENCE,
    TITLE_KEYWORD_CONFIDENCE,
)
from company_identity.domain.intelligence import (
    extract_company_name,
    normalize,
    normalize_bundle_id,
    parse_bundle_id,
)
from company_identity.entity_resolution.hierarchy import CompanyHierarchyTable
from company_identity.learning.store import PatternStore
from company_identity.models import EntityQuery, ResolutionMethod, ResolutionResult


class StrategyMatcher(ABC):
    """Abstract base class for deterministic strategies."""

    @abstractmethod
    def match(self, query: EntityQuery) -> ResolutionResult | None:
        """
        Attempt to identify the company behind a query.

        Args:
            query: The row to identify

        Returns:
            ResolutionResult if the strategy fired, else None
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of this matcher for debugging."""
        ...

    @property
    @abstractmethod
    def priority(self) -> int:
        """Priority (lower = preferred when confidences tie)."""
        ...


class LearnedPatternMatcher(StrategyMatcher):
    """
    Matches URLs against patterns learned from earlier identifications.

    Tries ``url`` then ``url2`` and keeps the more confident suggestion.
    """

    def __init__(self, store: PatternStore):
        self.store = store

    @property
    def name(self) -> str:
        return "learned_pattern"

    @property
    def priority(self) -> int:
        return 1

    def match(self, query: EntityQuery) -> ResolutionResult | None:
        best: ResolutionResult | None = None
        for url in query.urls:
            suggestion = self.store.suggest(url)
            if suggestion and (best is None or suggestion.confidence > best.confidence):
                best = suggestion
        return best


class HierarchyDomainMatcher(StrategyMatcher):
    """Matches URL hosts against the static hierarchy's domain patterns."""

    def __init__(self, hierarchy: CompanyHierarchyTable):
        self.hierarchy = hierarchy

    @property
    def name(self) -> str:
        return "hierarchy_domain"

    @property
    def priority(self) -> int:
        return 2

    def match(self, query: EntityQuery) -> ResolutionResult | None:
        for url in query.urls:
            host = normalize(url)
            hit = self.hierarchy.find_by_domain(host)
            if hit:
                return ResolutionResult(
                    company=hit.company,
                    parent_company=hit.parent_company,
                    confidence=HIERARCHY_DOMAIN_CONFIDENCE,
                    evidence=(f"Domain {host} matches hierarchy pattern {hit.pattern!r}",),
                    method=ResolutionMethod.DOMAIN_PATTERN,
                )
        return None


class BundleIdMatcher(StrategyMatcher):
    """Matches the app URL / bundle id against the hierarchy's bundle patterns."""

    def __init__(self, hierarchy: CompanyHierarchyTable):
        self.hierarchy = hierarchy

    @property
    def name(self) -> str:
        return "bundle_id"

    @property
    def priority(self) -> int:
        return 3

    def match(self, query: EntityQuery) -> ResolutionResult | None:
        bundle_id = normalize_bundle_id(query.app_url)
        hit = self.hierarchy.find_by_bundle_id(bundle_id)
        if not hit:
            return None

        evidence = f"Bundle id {bundle_id} matches hierarchy pattern {hit.pattern!r}"
        parsed = parse_bundle_id(bundle_id)
        if parsed and parsed[1]:
            evidence += f" (app {parsed[1]!r})"
        return ResolutionResult(
            company=hit.company,
            parent_company=hit.parent_company,
            confidence=BUNDLE_ID_CONFIDENCE,
            evidence=(evidence,),
            method=ResolutionMethod.BUNDLE_ID,
        )


class TitleKeywordMatcher(StrategyMatcher):
    """Matches hierarchy keywords inside the website/app title."""

    def __init__(self, hierarchy: CompanyHierarchyTable):
        self.hierarchy = hierarchy

    @property
    def name(self) -> str:
        return "title_keyword"

    @property
    def priority(self) -> int:
        return 4

    def match(self, query: EntityQuery) -> ResolutionResult | None:
        hit = self.hierarchy.find_by_keywords(query.website_app_title)
        if not hit:
            return None
        return ResolutionResult(
            company=hit.company,
            parent_company=hit.parent_company,
            confidence=TITLE_KEYWORD_CONFIDENCE,
            evidence=(f"Title contains keyword {hit.pattern!r}",),
            method=ResolutionMethod.TITLE_KEYWORD,
        )


class GenericDomainMatcher(StrategyMatcher):
    """
    Low-confidence fallback: company name from the registrable domain label.

    "acme-widgets.co.uk" -> "Acme Widgets" at 0.7, below the default
    threshold, so the row still goes to inference with this as its floor.
    """

    @property
    def name(self) -> str:
        return "generic_domain"

    @property
    def priority(self) -> int:
        return 5

    def match(self, query: EntityQuery) -> ResolutionResult | None:
        for url in query.urls:
            name = extract_company_name(url)
            if name:
                return ResolutionResult(
                    company=name,
                    confidence=GENERIC_DOMAIN_CONFIDENCE,
                    evidence=(f"Company name derived from domain {normalize(url)}",),
                    method=ResolutionMethod.GENERIC_DOMAIN,
                )
        return None


def default_matchers(
    store: PatternStore, hierarchy: CompanyHierarchyTable
) -> list[StrategyMatcher]:
    """Standard strategy set in priority order."""
    return [
        LearnedPatternMatcher(store),
        HierarchyDomainMatcher(hierarchy),
        BundleIdMatcher(hierarchy),
        TitleKeywordMatcher(hierarchy),
        GenericDomainMatcher(),
    ]
