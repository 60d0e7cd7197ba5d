"""
Data models for domain analysis.

These dataclasses describe a parsed host and the ranked patterns derived
from it. Both are pure values; nothing here touches the network.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class DomainInfo:
    """Structural breakdown of a URL's host."""

    base_domain: str  # Host minus TLD (and minus an infrastructure prefix)
    tld: str
    subdomain: str | None = None
    is_international: bool = False
    country: str | None = None
    canonical_form: str | None = None  # "<base_domain>.com" for international hosts
    has_infrastructure_prefix: bool = False


@dataclass(frozen=True)
class SmartPattern:
    """A ranked lookup key derived from a host."""

    pattern: str
    pattern_type: str  # exact | canonical | base | segment
    confidence: float  # 0.5 - 1.0, decreasing with rank
