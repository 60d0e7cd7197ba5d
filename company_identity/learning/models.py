"""
Learned-pattern records and their snapshot format.

A snapshot is the durable form of the pattern store::

    {
        "version": 1,
        "patterns": {"<pattern>": {LearnedPattern fields, camelCase}},
        "domainMappings": {"<base label>": "<company>"}
    }

Field names are camelCase so snapshots written by earlier tooling load
unchanged. Snapshots without a version tag are read as version 1, and
confidences stored on the 0-100 scale are read back as 0-1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from company_identity.constants import PATTERN_SNAPSHOT_VERSION
from company_identity.models import normalize_confidence

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    """ISO-8601 string (``Z`` suffix allowed) or epoch milliseconds -> aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return utcnow()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class LearnedPattern:
    """A lookup key that has been seen to identify a company."""

    pattern: str
    company: str
    parent_company: str | None = None
    confidence: float = 1.0  # Running average of contributing confidences
    occurrences: int = 1
    last_seen: datetime = field(default_factory=utcnow)
    sources: list[str] = field(default_factory=list)  # Most recent contributing URLs

    def age_days(self, now: datetime | None = None) -> float:
        now = now or utcnow()
        return max(0.0, (now - self.last_seen).total_seconds() / 86400.0)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "pattern": self.pattern,
            "company": self.company,
            "confidence": self.confidence,
            "occurrences": self.occurrences,
            "lastSeen": self.last_seen.isoformat(),
            "sources": list(self.sources),
        }
        if self.parent_company:
            data["parentCompany"] = self.parent_company
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], pattern: str | None = None) -> LearnedPattern:
        return cls(
            pattern=data.get("pattern") or pattern or "",
            company=data["company"],
            parent_company=data.get("parentCompany") or data.get("parent_company") or None,
            confidence=normalize_confidence(data.get("confidence", 1.0)),
            occurrences=int(data.get("occurrences", 1)),
            last_seen=_parse_timestamp(data.get("lastSeen") or data.get("last_seen")),
            sources=list(data.get("sources", [])),
        )


def encode_snapshot(
    patterns: dict[str, LearnedPattern], domain_mappings: dict[str, str]
) -> dict[str, Any]:
    """Serializable snapshot of the store."""
    return {
        "version": PATTERN_SNAPSHOT_VERSION,
        "patterns": {key: learned.to_dict() for key, learned in patterns.items()},
        "domainMappings": dict(domain_mappings),
    }


def decode_snapshot(
    snapshot: dict[str, Any] | None,
) -> tuple[dict[str, LearnedPattern], dict[str, str]]:
    """
    Read a snapshot back into patterns and domain mappings.

    Malformed individual entries are skipped with a warning rather than
    failing the whole load.
    """
    if not snapshot:
        return {}, {}
    if not isinstance(snapshot, dict):
        raise ValueError(f"Pattern snapshot must be an object, got {type(snapshot).__name__}")

    version = snapshot.get("version", 1)
    if not isinstance(version, int) or version > PATTERN_SNAPSHOT_VERSION:
        logger.warning(
            f"Pattern snapshot version {version!r} is newer than supported "
            f"({PATTERN_SNAPSHOT_VERSION}); reading known fields only"
        )

    patterns: dict[str, LearnedPattern] = {}
    for key, raw in (snapshot.get("patterns") or {}).items():
        try:
            patterns[key] = LearnedPattern.from_dict(raw, pattern=key)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed learned pattern {key!r}: {e}")

    mappings = {
        str(key): str(company)
        for key, company in (snapshot.get("domainMappings") or {}).items()
        if company
    }
    return patterns, mappings
