"""
Deterministic entity resolution: hierarchy table, strategies, resolver, result cache.
"""

from company_identity.entity_resolution.hierarchy import (
    CompanyHierarchy,
    CompanyHierarchyTable,
    HierarchyMatch,
    SubsidiaryInfo,
    matches_pattern,
)
from company_identity.entity_resolution.matchers import (
    BundleIdMatcher,
    GenericDomainMatcher,
    HierarchyDomainMatcher,
    LearnedPatternMatcher,
    StrategyMatcher,
    TitleKeywordMatcher,
    default_matchers,
)
from company_identity.entity_resolution.resolver import DeterministicResolver, ResolverOutcome
from company_identity.entity_resolution.result_cache import ResultCache

__all__ = [
    "BundleIdMatcher",
    "CompanyHierarchy",
    "CompanyHierarchyTable",
    "DeterministicResolver",
    "GenericDomainMatcher",
    "HierarchyDomainMatcher",
    "HierarchyMatch",
    "LearnedPatternMatcher",
    "ResolverOutcome",
    "ResultCache",
    "StrategyMatcher",
    "SubsidiaryInfo",
    "TitleKeywordMatcher",
    "default_matchers",
    "matches_pattern",
]
