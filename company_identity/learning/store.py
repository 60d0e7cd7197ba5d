"""
Pattern store: learns which domain patterns identify which companies.

Every confident identification teaches the store a handful of lookup keys
(full host, leading label, second-level label). Later rows that share one
of those keys, including international variants reached through the
canonical ``.com`` form, resolve without calling the inference provider.

Safety rules:
- Generic keys (``com``, ``group``, two-letter labels, pure numbers) are
  never learned.
- A key that already points at a different company is only reassigned when
  the new confidence beats the stored one by more than 0.2. Otherwise the
  stored entry is capped at 0.5 and marked ambiguous.

Mutations are serialized by one lock and flushed to the persistence
backend after each call (``learn_from_batch`` flushes once at the end).
If the backend fails, the store keeps working in memory only.
"""

from __future__ import annotations

import logging
import math
import re
import threading
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from typing import Any

from company_identity.constants import (
    AMBIGUOUS_PATTERN_CONFIDENCE,
    BATCH_PATTERN_CONFIDENCE_CAP,
    CONFLICT_OVERRIDE_MARGIN,
    DOMAIN_MAPPING_BASE_CONFIDENCE,
    DOMAIN_MAPPING_CANONICAL_CONFIDENCE,
    GENERIC_PATTERN_WORDS,
    INFERRED_VARIANT_CONFIDENCE,
    LEARNED_SUGGESTION_CAP,
    MAX_PATTERN_SOURCES,
    MIN_LEARN_CONFIDENCE,
    PATTERN_TYPE_DISCOUNTS,
    RECENCY_FLOOR,
    RECENCY_HORIZON_DAYS,
    UNKNOWN_COMPANY,
)
from company_identity.domain.intelligence import (
    INFRASTRUCTURE_SUBDOMAINS,
    analyze_domain,
    are_likely_related,
    extract_smart_patterns,
    normalize,
)
from company_identity.learning.models import (
    LearnedPattern,
    decode_snapshot,
    encode_snapshot,
    utcnow,
)
from company_identity.learning.persistence import (
    InMemoryPatternPersistence,
    PatternPersistence,
)
from company_identity.models import (
    EntityQuery,
    ResolutionMethod,
    ResolutionResult,
    normalize_confidence,
)

logger = logging.getLogger(__name__)

_NUMERIC_RE = re.compile(r"^\d+$")


class PatternStore:
    """Thread-safe learned-pattern store with pluggable persistence."""

    def __init__(self, persistence: PatternPersistence | None = None, autoflush: bool = True):
        """
        Load the store from its backend.

        Args:
            persistence: Snapshot backend (default: in-memory)
            autoflush: Flush after every learn() call. Turn off to batch
                       flushes and call flush() explicitly.
        """
        self._persistence = persistence if persistence is not None else InMemoryPatternPersistence()
        self.autoflush = autoflush
        self._lock = threading.RLock()
        self._patterns: dict[str, LearnedPattern] = {}
        self._domain_mappings: dict[str, str] = {}
        self._persistent = True
        self._load()

    @property
    def is_persistent(self) -> bool:
        """False once the backend has failed and the store runs in memory only."""
        return self._persistent

    def __len__(self) -> int:
        with self._lock:
            return len(self._patterns)

    def __contains__(self, pattern: str) -> bool:
        with self._lock:
            return pattern in self._patterns

    def get_pattern(self, pattern: str) -> LearnedPattern | None:
        """Copy of a stored pattern, or None."""
        with self._lock:
            learned = self._patterns.get(pattern)
            return replace(learned, sources=list(learned.sources)) if learned else None

    def get_domain_mapping(self, key: str) -> str | None:
        with self._lock:
            return self._domain_mappings.get(key)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        try:
            snapshot = self._persistence.load()
            patterns, mappings = decode_snapshot(snapshot)
        except Exception as e:
            logger.warning(
                f"Could not load learned patterns from {self._persistence.name}: {e}. "
                "Learning will be kept in memory only for this run."
            )
            self._persistent = False
            return

        self._patterns = patterns
        self._domain_mappings = mappings
        if patterns or mappings:
            logger.info(
                f"Loaded {len(patterns)} learned patterns and {len(mappings)} domain mappings "
                f"from {self._persistence.name}"
            )

    def flush(self) -> bool:
        """
        Write the current state to the backend.

        Returns:
            True if the snapshot was saved, False if the store is (now) in
            memory-only mode
        """
        with self._lock:
            return self._flush_locked()

    def _flush_locked(self) -> bool:
        if not self._persistent:
            return False
        try:
            self._persistence.save(encode_snapshot(self._patterns, self._domain_mappings))
        except Exception as e:
            logger.warning(
                f"Failed to save learned patterns to {self._persistence.name}: {e}. "
                "Switching to in-memory learning for the rest of this run."
            )
            self._persistent = False
            return False
        return True

    def export_snapshot(self) -> dict[str, Any]:
        """Serializable copy of every pattern and domain mapping."""
        with self._lock:
            return encode_snapshot(self._patterns, self._domain_mappings)

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    @staticmethod
    def extract_patterns(url: str | None) -> list[str]:
        """
        Raw keys learned from a URL.

        Examples:
            "burke.nationjob.com" -> ["burke.nationjob.com", "burke", "nationjob"]
            "peanutbutter.mx" -> ["peanutbutter.mx", "peanutbutter"]
        """
        host = normalize(url)
        if not host:
            return []

        parts = host.split(".")
        patterns = [host]
        if len(parts) >= 2 and parts[0]:
            patterns.append(parts[0])
        if len(parts) > 2 and parts[-2]:
            patterns.append(parts[-2])
        return [p for p in dict.fromkeys(patterns) if p]

    @staticmethod
    def is_too_generic(pattern: str) -> bool:
        """
        Short, numeric or stop-listed keys would match unrelated companies.
        Infrastructure labels (shop, api, cdn, ...) count as stop-listed.
        """
        if len(pattern) <= 2:
            return True
        lowered = pattern.lower()
        if lowered in GENERIC_PATTERN_WORDS or lowered in INFRASTRUCTURE_SUBDOMAINS:
            return True
        return bool(_NUMERIC_RE.match(pattern))

    def learn(
        self,
        url: str,
        company: str,
        parent_company: str | None = None,
        confidence: float = 1.0,
        now: datetime | None = None,
    ) -> list[str]:
        """
        Learn patterns from one identification. Not gated by confidence;
        use ``record_resolution`` for pipeline results.

        Returns:
            Patterns that now point at ``company``
        """
        with self._lock:
            learned = self._learn_locked(
                url, company, parent_company, normalize_confidence(confidence), now
            )
            if self.autoflush:
                self._flush_locked()
        return learned

    def record_resolution(self, url: str, result: ResolutionResult) -> list[str]:
        """Learn from a resolution when it is confident (>= 0.8) and not Unknown."""
        if result.is_unknown or result.confidence < MIN_LEARN_CONFIDENCE:
            return []
        return self.learn(url, result.company, result.parent_company, result.confidence)

    def _learn_locked(
        self,
        url: str,
        company: str,
        parent_company: str | None,
        confidence: float,
        now: datetime | None,
    ) -> list[str]:
        if not company or company == UNKNOWN_COMPANY:
            return []
        patterns = self.extract_patterns(url)
        if not patterns:
            return []

        now = now or utcnow()
        parent = parent_company if parent_company and parent_company != company else None
        learned: list[str] = []

        logger.debug(f"Learning from {url} -> {company}: patterns {patterns}")
        for pattern in patterns:
            if self.is_too_generic(pattern):
                logger.debug(f"Skipping overly generic pattern {pattern!r}")
                continue
            if self._learn_pattern(pattern, url, company, parent, confidence, now):
                learned.append(pattern)

        self._learn_domain_mappings(url, company, confidence)
        return learned

    def _learn_pattern(
        self,
        pattern: str,
        url: str,
        company: str,
        parent: str | None,
        confidence: float,
        now: datetime,
    ) -> bool:
        existing = self._patterns.get(pattern)
        if existing is None:
            self._patterns[pattern] = LearnedPattern(
                pattern=pattern,
                company=company,
                parent_company=parent,
                confidence=confidence,
                occurrences=1,
                last_seen=now,
                sources=[url],
            )
            return True

        if existing.company != company:
            if confidence > existing.confidence + CONFLICT_OVERRIDE_MARGIN:
                logger.warning(
                    f"Pattern conflict for {pattern!r}: replacing {existing.company} "
                    f"({existing.confidence:.2f}) with {company} ({confidence:.2f})"
                )
                self._patterns[pattern] = LearnedPattern(
                    pattern=pattern,
                    company=company,
                    parent_company=parent,
                    confidence=confidence,
                    occurrences=1,
                    last_seen=now,
                    sources=[url],
                )
                return True

            logger.warning(
                f"Pattern conflict for {pattern!r}: {existing.company} vs {company}; "
                f"marking ambiguous"
            )
            existing.confidence = min(AMBIGUOUS_PATTERN_CONFIDENCE, existing.confidence)
            return False

        existing.occurrences += 1
        existing.confidence = (
            existing.confidence * (existing.occurrences - 1) + confidence
        ) / existing.occurrences
        existing.last_seen = now
        if parent:
            existing.parent_company = parent
        if url not in existing.sources:
            existing.sources.append(url)
            existing.sources = existing.sources[-MAX_PATTERN_SOURCES:]
        return True

    def _learn_domain_mappings(self, url: str, company: str, confidence: float) -> None:
        if confidence <= MIN_LEARN_CONFIDENCE:
            return

        info = analyze_domain(url)
        if info.is_international and info.base_domain:
            current = self._domain_mappings.get(info.base_domain)
            if current is None or current == company:
                self._domain_mappings[info.base_domain] = company
                logger.debug(f"Learned base domain mapping {info.base_domain} -> {company}")

        parts = normalize(url).split(".")
        if len(parts) >= 2 and parts[0]:
            label = parts[0]
            if self.is_too_generic(label):
                logger.debug(f"Skipping generic domain mapping label {label!r}")
                return
            current = self._domain_mappings.get(label)
            if current is not None and current != company:
                logger.warning(f"Domain mapping conflict for {label!r}: {current} vs {company}")
            else:
                self._domain_mappings[label] = company

    def learn_from_batch(
        self,
        queries: Sequence[EntityQuery],
        results: Sequence[ResolutionResult | None],
    ) -> int:
        """
        Learn cross-row patterns from a finished batch of results.

        1. Group confident results by company; learn each base domain and
           canonical form that repeats or is longer than 3 characters.
        2. For every row still Unknown whose URL is an international variant
           of a successfully identified URL, learn that URL for the same
           company at 0.85.

        Returns:
            Number of pattern updates made
        """
        successes: dict[str, dict[str, Any]] = {}
        for query, result in zip(queries, results):
            if result is None or result.is_unknown or result.confidence < MIN_LEARN_CONFIDENCE:
                continue
            if not query.url:
                continue
            entry = successes.setdefault(
                result.company,
                {"parent": result.parent_company, "confidence": result.confidence, "urls": []},
            )
            entry["confidence"] = max(entry["confidence"], result.confidence)
            entry["urls"].append(query.url)

        updates = 0
        with self._lock:
            for company, entry in successes.items():
                counts: dict[str, int] = {}
                for url in entry["urls"]:
                    info = analyze_domain(url)
                    for key in (info.base_domain, info.canonical_form):
                        if key:
                            counts[key] = counts.get(key, 0) + 1

                confidence = min(BATCH_PATTERN_CONFIDENCE_CAP, entry["confidence"])
                for key, count in counts.items():
                    if count >= 2 or len(key) > 3:
                        updates += len(
                            self._learn_locked(key, company, entry["parent"], confidence, None)
                        )

            for query, result in zip(queries, results):
                if result is not None and not result.is_unknown:
                    continue
                info = analyze_domain(query.url)
                if not (info.is_international and info.canonical_form):
                    continue
                match = self._find_related_success(query.url, successes)
                if match is None:
                    continue
                company, known_url = match
                logger.info(f"Inferring {query.url} is {company} (related to {known_url})")
                updates += len(
                    self._learn_locked(
                        query.url,
                        company,
                        successes[company]["parent"],
                        INFERRED_VARIANT_CONFIDENCE,
                        None,
                    )
                )

            if updates:
                self._flush_locked()

        if updates:
            logger.info(f"Batch learning made {updates} pattern updates across {len(successes)} companies")
        return updates

    @staticmethod
    def _find_related_success(
        url: str, successes: dict[str, dict[str, Any]]
    ) -> tuple[str, str] | None:
        for company, entry in successes.items():
            for known_url in entry["urls"]:
                if are_likely_related(url, known_url):
                    return company, known_url
        return None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def suggest(self, url: str | None, now: datetime | None = None) -> ResolutionResult | None:
        """
        Best learned identification for a URL, or None.

        Candidate keys come from ``extract_smart_patterns``. Each stored hit
        is ranked by
        ``confidence * ln(occurrences + 1) * max(0.5, recency) * pattern confidence``.
        The winner's stored confidence is discounted by its pattern type
        (canonical 0.95, base 0.9, segment 0.85) and capped at 0.9.
        Domain mappings are the fallback (canonical 0.85, base 0.8).
        """
        smart_patterns = extract_smart_patterns(url)
        if not smart_patterns:
            return None

        now = now or utcnow()
        with self._lock:
            best: LearnedPattern | None = None
            best_type = ""
            best_score = 0.0
            for smart in smart_patterns:
                learned = self._patterns.get(smart.pattern)
                if learned is None:
                    continue
                recency = 1.0 - learned.age_days(now) / RECENCY_HORIZON_DAYS
                score = (
                    learned.confidence
                    * math.log(learned.occurrences + 1)
                    * max(RECENCY_FLOOR, recency)
                    * smart.confidence
                )
                if score > best_score:
                    best, best_type, best_score = learned, smart.pattern_type, score

            if best is not None:
                confidence = min(
                    LEARNED_SUGGESTION_CAP,
                    best.confidence * PATTERN_TYPE_DISCOUNTS.get(best_type, 1.0),
                )
                if confidence <= 0:
                    return None
                return ResolutionResult(
                    company=best.company,
                    parent_company=best.parent_company,
                    confidence=round(confidence, 4),
                    evidence=(
                        f"Learned pattern {best.pattern!r} ({best_type}, "
                        f"{best.occurrences} occurrence(s)) -> {best.company}",
                    ),
                    method=ResolutionMethod.LEARNED_PATTERN,
                )

            info = analyze_domain(url)
            for key, confidence in (
                (info.canonical_form, DOMAIN_MAPPING_CANONICAL_CONFIDENCE),
                (info.base_domain, DOMAIN_MAPPING_BASE_CONFIDENCE),
            ):
                company = self._domain_mappings.get(key) if key else None
                if company:
                    return ResolutionResult(
                        company=company,
                        confidence=confidence,
                        evidence=(f"Learned domain mapping {key!r} -> {company}",),
                        method=ResolutionMethod.LEARNED_PATTERN,
                    )
        return None

    def stats(self) -> dict[str, Any]:
        """Counts and the ten most frequently seen patterns."""
        with self._lock:
            most_common = sorted(
                self._patterns.values(), key=lambda p: p.occurrences, reverse=True
            )[:10]
            return {
                "total_patterns": len(self._patterns),
                "total_domain_mappings": len(self._domain_mappings),
                "companies_learned": sorted({p.company for p in self._patterns.values()}),
                "most_common_patterns": [
                    {"pattern": p.pattern, "company": p.company, "occurrences": p.occurrences}
                    for p in most_common
                ],
                "persistent": self._persistent,
                "backend": self._persistence.name,
            }
