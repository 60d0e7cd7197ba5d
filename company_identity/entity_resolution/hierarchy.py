"""
Static company hierarchy table.

Known parent/subsidiary families with the identifiers that point at them:
domain patterns (``*`` wildcards, case-insensitive), app bundle ids and
title keywords. The seed covers the Polaris family plus a handful of
platform companies; deployments extend it with ``add_mapping`` or a JSON
file loaded through ``from_json``.

JSON format::

    {
        "hierarchies": [
            {
                "parent_company": "Polaris Inc",
                "subsidiaries": [
                    {"name": "Polaris Digital Division",
                     "domains": ["*.polaris.io"],
                     "keywords": ["polaris digital"],
                     "bundle_ids": ["com.polarisdigital.*"]}
                ]
            }
        ]
    }
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@lru_cache(maxsize=2048)
def _compile_pattern(pattern: str) -> re.Pattern[str]:
    return re.compile("^" + re.escape(pattern.lower()).replace(r"\*", ".*") + "$", re.IGNORECASE)


def matches_pattern(value: str, pattern: str) -> bool:
    """
    Anchored, case-insensitive match where ``*`` matches any run of characters.

    Examples:
        matches_pattern("experience.polaris.io", "*.polaris.io") -> True
        matches_pattern("polaris.io", "*.polaris.io") -> False
    """
    if not value or not pattern:
        return False
    return bool(_compile_pattern(pattern).match(value))


@dataclass(frozen=True)
class SubsidiaryInfo:
    """A company inside a hierarchy and its identifiers."""

    name: str
    parent_company: str
    domains: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    bundle_ids: tuple[str, ...] = ()


@dataclass
class CompanyHierarchy:
    """One parent company and the identifier -> company maps for its family."""

    parent_company: str
    subsidiaries: dict[str, SubsidiaryInfo] = field(default_factory=dict)
    domain_patterns: dict[str, str] = field(default_factory=dict)
    title_keywords: dict[str, str] = field(default_factory=dict)
    bundle_ids: dict[str, str] = field(default_factory=dict)

    def add_subsidiary(self, info: SubsidiaryInfo) -> None:
        """Register a subsidiary and route its identifiers to it."""
        self.subsidiaries[info.name] = info
        for pattern in info.domains:
            self.domain_patterns[pattern.lower()] = info.name
        for keyword in info.keywords:
            self.title_keywords[keyword.lower()] = info.name
        for bundle in info.bundle_ids:
            self.bundle_ids[bundle.lower()] = info.name


@dataclass(frozen=True)
class HierarchyMatch:
    """A hierarchy lookup hit."""

    company: str
    parent_company: str | None  # None when the company is the parent itself
    pattern: str


class CompanyHierarchyTable:
    """Lookup over every registered hierarchy."""

    def __init__(self, hierarchies: Iterable[CompanyHierarchy] = ()):
        self._hierarchies: dict[str, CompanyHierarchy] = {}
        for hierarchy in hierarchies:
            self.add_hierarchy(hierarchy)

    def __len__(self) -> int:
        return len(self._hierarchies)

    @property
    def parent_companies(self) -> list[str]:
        return list(self._hierarchies)

    def add_hierarchy(self, hierarchy: CompanyHierarchy) -> None:
        self._hierarchies[hierarchy.parent_company] = hierarchy

    def add_mapping(
        self,
        parent_company: str,
        subsidiary: str,
        domains: Iterable[str] = (),
        keywords: Iterable[str] = (),
        bundle_ids: Iterable[str] = (),
    ) -> None:
        """
        Add (or extend) a subsidiary under a parent, creating the parent if needed.

        Example:
            table.add_mapping("Acme Holdings", "Acme Widgets",
                              domains=["acmewidgets.com", "*.acmewidgets.com"],
                              keywords=["acme widgets"])
        """
        hierarchy = self._hierarchies.get(parent_company)
        if hierarchy is None:
            hierarchy = CompanyHierarchy(parent_company=parent_company)
            self._hierarchies[parent_company] = hierarchy

        existing = hierarchy.subsidiaries.get(subsidiary)
        info = SubsidiaryInfo(
            name=subsidiary,
            parent_company=parent_company,
            domains=(existing.domains if existing else ()) + tuple(domains),
            keywords=(existing.keywords if existing else ()) + tuple(keywords),
            bundle_ids=(existing.bundle_ids if existing else ()) + tuple(bundle_ids),
        )
        hierarchy.add_subsidiary(info)
        logger.debug(f"Added hierarchy mapping {subsidiary} -> {parent_company}")

    def _match(self, parent: str, company: str, pattern: str) -> HierarchyMatch:
        return HierarchyMatch(
            company=company,
            parent_company=parent if company != parent else None,
            pattern=pattern,
        )

    def find_by_domain(self, host: str) -> HierarchyMatch | None:
        """Exact patterns are tried before wildcard patterns; first hit wins."""
        if not host:
            return None
        host = host.lower()
        for wildcard in (False, True):
            for parent, hierarchy in self._hierarchies.items():
                for pattern, company in hierarchy.domain_patterns.items():
                    if ("*" in pattern) != wildcard:
                        continue
                    if matches_pattern(host, pattern):
                        return self._match(parent, company, pattern)
        return None

    def find_by_bundle_id(self, bundle_id: str) -> HierarchyMatch | None:
        """Same precedence as domains: exact ids before wildcard ids."""
        if not bundle_id:
            return None
        for wildcard in (False, True):
            for parent, hierarchy in self._hierarchies.items():
                for pattern, company in hierarchy.bundle_ids.items():
                    if ("*" in pattern) != wildcard:
                        continue
                    if matches_pattern(bundle_id, pattern):
                        return self._match(parent, company, pattern)
        return None

    def find_by_keywords(self, title: str) -> HierarchyMatch | None:
        """
        Substring keyword search in a title, longest keyword first.

        "Polaris Digital Companion" matches "polaris digital" (the
        subsidiary) before "polaris" (the parent).
        """
        if not title:
            return None
        lower_title = title.lower()
        keywords = [
            (keyword, company, parent)
            for parent, hierarchy in self._hierarchies.items()
            for keyword, company in hierarchy.title_keywords.items()
        ]
        for keyword, company, parent in sorted(keywords, key=lambda k: len(k[0]), reverse=True):
            if keyword in lower_title:
                return self._match(parent, company, keyword)
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any], include_defaults: bool = True) -> CompanyHierarchyTable:
        table = cls.default() if include_defaults else cls()
        for entry in data.get("hierarchies", []):
            parent = entry["parent_company"]
            for sub in entry.get("subsidiaries", []):
                table.add_mapping(
                    parent,
                    sub["name"],
                    domains=sub.get("domains", ()),
                    keywords=sub.get("keywords", ()),
                    bundle_ids=sub.get("bundle_ids", ()),
                )
            hierarchy = table._hierarchies.setdefault(parent, CompanyHierarchy(parent))
            for key, attr in (
                ("domain_patterns", "domain_patterns"),
                ("title_keywords", "title_keywords"),
                ("bundle_ids", "bundle_ids"),
            ):
                for pattern, company in entry.get(key, {}).items():
                    getattr(hierarchy, attr)[pattern.lower()] = company
        return table

    @classmethod
    def from_json(cls, path: Path | str, include_defaults: bool = True) -> CompanyHierarchyTable:
        """Load hierarchies from a JSON file (see module docstring for the format)."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        table = cls.from_dict(data, include_defaults=include_defaults)
        logger.info(f"Loaded company hierarchy from {path}: {len(table)} parent companies")
        return table

    @classmethod
    def default(cls) -> CompanyHierarchyTable:
        """Seeded table: the Polaris family and common platform companies."""
        table = cls()

        polaris = CompanyHierarchy(parent_company="Polaris Inc")
        polaris.add_subsidiary(
            SubsidiaryInfo(
                name="Polaris Digital Division",
                parent_company="Polaris Inc",
                domains=("polarisdigital.com", "*.polaris.io", "experience.polaris.*"),
                keywords=("polaris digital", "polaris connect", "polaris experience"),
                bundle_ids=("com.polaris.experience", "com.polarisdigital.*"),
            )
        )
        polaris.add_subsidiary(
            SubsidiaryInfo(
                name="Polaris Subsidiary Alpha",
                parent_company="Polaris Inc",
                domains=("alpha.polarisbrands.com", "*.alpha.polaris.*"),
                keywords=("polaris alpha",),
                bundle_ids=("com.polarisbrands.alpha",),
            )
        )
        polaris.add_subsidiary(
            SubsidiaryInfo(
                name="Polaris Subsidiary Beta",
                parent_company="Polaris Inc",
                domains=("beta.polarisbrands.com",),
                keywords=("polaris beta",),
            )
        )
        polaris.domain_patterns.update(
            {
                "polaris.com": "Polaris Inc",
                "polarisind.com": "Polaris Inc",
                "*.polaris.com": "Polaris Inc",
            }
        )
        polaris.title_keywords["polaris"] = "Polaris Inc"
        polaris.bundle_ids["com.polaris.*"] = "Polaris Inc"
        table.add_hierarchy(polaris)

        for company, parent, domains, bundles in (
            (
                "Google",
                "Alphabet Inc",
                ("google.com", "*.google.com", "googleapis.com", "gstatic.com"),
                ("com.google.*",),
            ),
            (
                "Facebook",
                "Meta Platforms Inc",
                ("facebook.com", "*.facebook.com", "fb.com", "fbcdn.net"),
                ("com.facebook.*",),
            ),
            (
                "Amazon",
                "Amazon.com Inc",
                ("amazon.com", "*.amazon.com", "amazonaws.com", "aws.com"),
                ("com.amazon.*",),
            ),
            (
                "Microsoft",
                "Microsoft Corporation",
                ("microsoft.com", "*.microsoft.com", "msn.com", "live.com", "office.com"),
                ("com.microsoft.*",),
            ),
            (
                "Apple",
                "Apple Inc",
                ("apple.com", "*.apple.com", "icloud.com"),
                ("com.apple.*",),
            ),
        ):
            table.add_mapping(
                parent,
                company,
                domains=domains,
                keywords=(company.lower(),),
                bundle_ids=bundles,
            )
        return table
