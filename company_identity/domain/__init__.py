"""
Domain intelligence: URL normalization, structural analysis and pattern derivation.
"""

from company_identity.domain.intelligence import (
    analyze_domain,
    are_likely_related,
    extract_company_name,
    extract_smart_patterns,
    generate_pattern_hierarchy,
    group_related_domains,
    normalize,
    parse_bundle_id,
)
from company_identity.domain.models import DomainInfo, SmartPattern

__all__ = [
    "DomainInfo",
    "SmartPattern",
    "analyze_domain",
    "are_likely_related",
    "extract_company_name",
    "extract_smart_patterns",
    "generate_pattern_hierarchy",
    "group_related_domains",
    "normalize",
    "parse_bundle_id",
]
