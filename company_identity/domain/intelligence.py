"""
Domain intelligence: turn raw URLs into comparable signals.

Everything here is pure and fails soft. Malformed input produces an empty
or partial result, never an exception, so callers can feed raw spreadsheet
cells straight in.

The public suffix list is only consulted for the generic company-name
fallback (``extract_company_name``); structural analysis uses a small fixed
table of country TLDs so that international variants collapse onto a
``.com`` canonical form (``peanutbutter.mx`` -> ``peanutbutter.com``).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from urllib.parse import parse_qs, urlsplit

import tldextract

from company_identity.constants import (
    SMART_PATTERN_FLOOR,
    SMART_PATTERN_START,
    SMART_PATTERN_STEP,
)
from company_identity.domain.models import DomainInfo, SmartPattern

logger = logging.getLogger(__name__)

# Country code TLDs -> country
COUNTRY_TLDS = {
    "mx": "Mexico",
    "ca": "Canada",
    "uk": "United Kingdom",
    "fr": "France",
    "de": "Germany",
    "jp": "Japan",
    "cn": "China",
    "br": "Brazil",
    "au": "Australia",
    "id": "Indonesia",
    "se": "Sweden",
    "ph": "Philippines",
}

# Compound TLDs are checked before simple ones
COMPOUND_TLDS = {
    "com.mx": "Mexico",
    "com.cn": "China",
    "com.br": "Brazil",
    "com.au": "Australia",
    "com.ph": "Philippines",
    "co.uk": "United Kingdom",
    "co.jp": "Japan",
    "co.id": "Indonesia",
    "uk.com": "United Kingdom",
    "jpn.com": "Japan",
}

# Leading labels that name a service, not an organization
INFRASTRUCTURE_SUBDOMAINS = frozenset(
    {
        "www",
        "ftp",
        "mail",
        "email",
        "smtp",
        "pop",
        "imap",
        "blog",
        "shop",
        "store",
        "api",
        "app",
        "mobile",
        "cdn",
        "static",
        "assets",
        "images",
        "img",
        "dev",
        "test",
        "staging",
        "demo",
        "sandbox",
        "portal",
        "login",
        "auth",
        "secure",
        "my",
        "support",
        "help",
        "docs",
        "wiki",
        "news",
        "media",
        "press",
    }
)

# Reverse-DNS prefixes skipped when reading a bundle id
BUNDLE_PREFIXES = frozenset({"com", "org", "net", "io", "app", "co"})

_SCHEME_RE = re.compile(r"^(?:https?|ftp)://", re.IGNORECASE)
_WWW_RE = re.compile(r"^www\.")
_HOST_TERMINATORS_RE = re.compile(r"[/?#]")
_NAME_SEPARATORS_RE = re.compile(r"[-_]+")
_TRAILING_DIGITS_RE = re.compile(r"\d+$")

# Offline extractor: bundled suffix snapshot, no HTTP fetch, no cache dir writes
_EXTRACTOR = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


def normalize(url: str | None) -> str:
    """
    Normalize a URL to a bare lower-case host.

    Examples:
        "https://www.Polaris.com/about" -> "polaris.com"
        "ftp://ftp.applegate.com" -> "ftp.applegate.com"
        "peanutbutter.mx" -> "peanutbutter.mx"

    Args:
        url: Raw URL string (may be None or garbage)

    Returns:
        Normalized host, or "" when nothing usable remains
    """
    if not url or not isinstance(url, str):
        return ""

    host = _SCHEME_RE.sub("", url.strip().lower())
    host = _WWW_RE.sub("", host)
    host = _HOST_TERMINATORS_RE.split(host, maxsplit=1)[0]
    # Drop credentials and port
    host = host.rsplit("@", 1)[-1].split(":", 1)[0]
    return host.strip(".").strip()


def _labels(host: str) -> list[str]:
    return [label for label in host.split(".") if label]


def _international(base_domain: str, tld: str, country: str, infra: bool) -> DomainInfo:
    return DomainInfo(
        base_domain=base_domain,
        tld=tld,
        is_international=True,
        country=country,
        canonical_form=f"{base_domain}.com" if base_domain else None,
        has_infrastructure_prefix=infra,
    )


def analyze_domain(url: str | None) -> DomainInfo:
    """
    Break a URL's host into base domain, TLD and international signals.

    Compound country TLDs (``com.mx``) are detected before simple ones
    (``mx``). A leading infrastructure label (www, ftp, api, cdn, ...) is
    stripped first. Any other multi-label host is read as
    ``<leaf>.<parent>.<tld>`` with the parent as base domain, so
    ``burke.nationjob.com`` yields ``nationjob``.
    """
    parts = _labels(normalize(url))
    if not parts:
        return DomainInfo(base_domain="", tld="")
    if len(parts) == 1:
        return DomainInfo(base_domain=parts[0], tld="")

    has_infra = False
    if len(parts) > 2 and parts[0] in INFRASTRUCTURE_SUBDOMAINS:
        has_infra = True
        parts = parts[1:]

    if len(parts) >= 3:
        last_two = ".".join(parts[-2:])
        if last_two in COMPOUND_TLDS:
            return _international(
                ".".join(parts[:-2]), last_two, COMPOUND_TLDS[last_two], has_infra
            )

    tld = parts[-1]
    if tld in COUNTRY_TLDS:
        return _international(".".join(parts[:-1]), tld, COUNTRY_TLDS[tld], has_infra)

    if len(parts) > 2 and not has_infra:
        return DomainInfo(
            base_domain=parts[-2],
            tld=tld,
            subdomain=".".join(parts[:-2]),
        )

    return DomainInfo(
        base_domain=".".join(parts[:-1]),
        tld=tld,
        has_infrastructure_prefix=has_infra,
    )


def generate_pattern_hierarchy(url: str | None) -> list[str]:
    """
    Lookup keys for a URL, most specific first, duplicates removed.

    Order: exact host; host without an infrastructure prefix (plus the bare
    middle label for 3-label hosts like ``ftp.applegate.com``); canonical
    ``.com`` form when international; base domain; leaf and parent labels
    of a meaningful subdomain.
    """
    host = normalize(url)
    parts = _labels(host)
    if not parts:
        return []

    info = analyze_domain(host)
    patterns = [host]

    if len(parts) > 2 and parts[0] in INFRASTRUCTURE_SUBDOMAINS:
        patterns.append(".".join(parts[1:]))
        if len(parts) == 3:
            patterns.append(parts[1])

    if info.is_international and info.canonical_form:
        patterns.append(info.canonical_form)

    if info.base_domain:
        patterns.append(info.base_domain)

    if len(parts) > 2 and parts[0] not in INFRASTRUCTURE_SUBDOMAINS:
        patterns.append(parts[0])
        parent = ".".join(parts[1:-1])
        if parent:
            patterns.append(parent)

    return list(dict.fromkeys(patterns))


def extract_smart_patterns(url: str | None) -> list[SmartPattern]:
    """Typed, ranked patterns: confidence starts at 1.0 and drops 0.1 per rank (floor 0.5)."""
    info = analyze_domain(url)
    smart: list[SmartPattern] = []
    for index, pattern in enumerate(generate_pattern_hierarchy(url)):
        if index == 0:
            pattern_type = "exact"
        elif info.canonical_form and pattern == info.canonical_form:
            pattern_type = "canonical"
        elif pattern == info.base_domain:
            pattern_type = "base"
        else:
            pattern_type = "segment"
        confidence = max(SMART_PATTERN_FLOOR, SMART_PATTERN_START - index * SMART_PATTERN_STEP)
        smart.append(SmartPattern(pattern, pattern_type, round(confidence, 2)))
    return smart


def are_likely_related(url_a: str | None, url_b: str | None) -> bool:
    """
    Whether two URLs probably belong to the same company.

    True when base domains match, when one URL's canonical form is the
    other's host, or when both share a canonical form.
    """
    host_a, host_b = normalize(url_a), normalize(url_b)
    if not host_a or not host_b:
        return False

    info_a, info_b = analyze_domain(host_a), analyze_domain(host_b)
    if info_a.base_domain and info_a.base_domain == info_b.base_domain:
        return True
    if info_a.canonical_form == host_b or info_b.canonical_form == host_a:
        return True
    return bool(info_a.canonical_form and info_a.canonical_form == info_b.canonical_form)


def group_related_domains(urls: Iterable[str | None]) -> dict[str, list[str]]:
    """
    Group URLs by canonical form, falling back to base domain.

    Used before resolution to report how many distinct organizations a job
    appears to touch.
    """
    groups: dict[str, list[str]] = {}
    for url in urls:
        info = analyze_domain(url)
        key = info.canonical_form or info.base_domain
        if key:
            groups.setdefault(key, []).append(url)
    return groups


def clean_company_name(label: str | None) -> str | None:
    """De-hyphenate, drop trailing digits and title-case a domain label."""
    if not label:
        return None
    cleaned = _NAME_SEPARATORS_RE.sub(" ", label)
    cleaned = _TRAILING_DIGITS_RE.sub("", cleaned).strip()
    if len(cleaned) < 2:
        return None
    return " ".join(word.capitalize() for word in cleaned.split())


def extract_company_name(url: str | None) -> str | None:
    """
    Generic company name from the registrable label of a URL.

    Examples:
        "acme-widgets.co.uk" -> "Acme Widgets"
        "https://shop.bluebird42.com/x" -> "Bluebird"

    Returns:
        Title-cased name, or None when the host has no usable label
    """
    host = normalize(url)
    if not host:
        return None

    try:
        ext = _EXTRACTOR(host)
    except Exception as exc:
        logger.debug(f"Suffix lookup failed for {host!r}: {exc}")
        return None

    label = ext.domain
    if not ext.suffix:
        # Unknown TLD: use the label before the last dot, if any
        parts = _labels(host)
        label = parts[-2] if len(parts) >= 2 else parts[0]
    return clean_company_name(label)


def normalize_bundle_id(app_url: str | None) -> str:
    """
    Bundle identifier from an app URL cell.

    Accepts a bare reverse-DNS id (``com.acme.app``) or a store link carrying
    ``?id=<bundle>`` (Google Play). Anything else is returned lower-cased
    and stripped.
    """
    if not app_url or not isinstance(app_url, str):
        return ""
    value = app_url.strip()
    if "://" in value or value.startswith("play.google.com"):
        try:
            query = parse_qs(urlsplit(value if "://" in value else f"https://{value}").query)
        except ValueError:
            return ""
        ids = query.get("id")
        return ids[0].strip().lower() if ids else ""
    return value.lower()


def parse_bundle_id(bundle_id: str | None) -> tuple[str, str | None] | None:
    """
    Split a reverse-DNS bundle id into (company label, app name).

    Examples:
        "com.acme.widgets" -> ("acme", "widgets")
        "io.polaris.experience.ios" -> ("polaris", "experience.ios")
        "acme" -> ("acme", None)
    """
    parts = _labels(normalize_bundle_id(bundle_id))
    if not parts:
        return None
    if len(parts) > 1 and parts[0] in BUNDLE_PREFIXES:
        parts = parts[1:]
    app_name = ".".join(parts[1:]) or None
    return parts[0], app_name
