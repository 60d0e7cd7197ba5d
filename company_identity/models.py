"""
Core data models shared by every resolution stage.

``EntityQuery`` is one input row; ``ResolutionResult`` is one answer.
Results are immutable and validate their own invariant: a row is
``Unknown`` exactly when its confidence is 0.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from company_identity.constants import UNKNOWN_COMPANY
from company_identity.utils.hashing import compute_fields_hash


class ResolutionMethod(Enum):
    """How a result was produced."""

    CACHED = "cached"
    LEARNED_PATTERN = "learned-pattern"
    DOMAIN_PATTERN = "domain-pattern"
    BUNDLE_ID = "bundle-id"
    TITLE_KEYWORD = "title-keyword"
    GENERIC_DOMAIN = "generic-domain"
    INFERENCE = "inference"
    UNRESOLVED = "unresolved"  # No strategy fired and inference was not reached


# Accepted spellings for each input field when building queries from rows
_ROW_ALIASES = {
    "website_app_title": ("website_app_title", "websiteAppTitle", "title", "Website/App Title"),
    "url": ("url", "URL", "website"),
    "url2": ("url2", "URL2", "secondary_url"),
    "app_url": ("app_url", "appUrl", "App URL", "bundle_id"),
}


@dataclass(frozen=True)
class EntityQuery:
    """One input row to identify."""

    website_app_title: str = ""
    url: str = ""
    url2: str | None = None
    app_url: str = ""

    @property
    def cache_key(self) -> str:
        """Content-addressed key over the four fields (case/whitespace-insensitive)."""
        return compute_fields_hash(self.website_app_title, self.url, self.url2, self.app_url)

    @property
    def urls(self) -> list[str]:
        """Non-empty URLs in lookup order (url, then url2)."""
        return [u for u in (self.url, self.url2) if u and u.strip()]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> EntityQuery:
        """
        Build a query from a row mapping.

        Column names are matched against a few common spellings
        (``url``/``URL``, ``app_url``/``appUrl``, ...). Missing or
        non-string cells become empty strings.
        """
        values: dict[str, str | None] = {}
        for attr, aliases in _ROW_ALIASES.items():
            value = next((row[a] for a in aliases if a in row and row[a] is not None), None)
            values[attr] = str(value).strip() if value is not None else ""
        return cls(
            website_app_title=values["website_app_title"] or "",
            url=values["url"] or "",
            url2=values["url2"] or None,
            app_url=values["app_url"] or "",
        )


def normalize_confidence(value: Any) -> float:
    """
    Coerce a provider-reported confidence onto the 0-1 scale.

    Values above 1 are read as percentages (``95`` -> ``0.95``). Anything
    unparsable becomes 0.0. Results are clamped to [0, 1].
    """
    if isinstance(value, bool):
        return 0.0
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    if confidence > 1.0:
        confidence = confidence / 100.0
    return max(0.0, min(1.0, confidence))


@dataclass(frozen=True)
class ResolutionResult:
    """An identification answer for one row."""

    company: str
    parent_company: str | None = None
    confidence: float = 0.0
    evidence: tuple[str, ...] = field(default_factory=tuple)
    method: ResolutionMethod = ResolutionMethod.UNRESOLVED

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        is_unknown = self.company == UNKNOWN_COMPANY
        if is_unknown != (self.confidence == 0.0):
            raise ValueError(
                f"company {self.company!r} inconsistent with confidence {self.confidence}: "
                f"confidence is 0 exactly when company is {UNKNOWN_COMPANY!r}"
            )
        if is_unknown and self.parent_company is not None:
            raise ValueError("Unknown results cannot carry a parent company")
        if not isinstance(self.evidence, tuple):
            object.__setattr__(self, "evidence", tuple(self.evidence))

    @classmethod
    def unknown(
        cls, reason: str, method: ResolutionMethod = ResolutionMethod.UNRESOLVED
    ) -> ResolutionResult:
        """An Unknown result carrying a diagnostic reason."""
        return cls(company=UNKNOWN_COMPANY, confidence=0.0, evidence=(reason,), method=method)

    @property
    def is_unknown(self) -> bool:
        return self.company == UNKNOWN_COMPANY

    @property
    def reasoning(self) -> str:
        """Evidence joined into one audit string."""
        return "; ".join(self.evidence)

    def with_method(self, method: ResolutionMethod, note: str | None = None) -> ResolutionResult:
        """Copy with a different method and an optional extra evidence line."""
        evidence = self.evidence + (note,) if note else self.evidence
        return replace(self, method=method, evidence=evidence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company": self.company,
            "parent_company": self.parent_company,
            "confidence": self.confidence,
            "evidence": list(self.evidence),
            "method": self.method.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResolutionResult:
        return cls(
            company=data["company"],
            parent_company=data.get("parent_company"),
            confidence=float(data.get("confidence", 0.0)),
            evidence=tuple(data.get("evidence", ())),
            method=ResolutionMethod(data.get("method", ResolutionMethod.UNRESOLVED.value)),
        )
