#!/usr/bin/env python
"""
Review the learned pattern store.

Prints what the resolver has learned so far: pattern and domain-mapping
counts, the most frequently seen patterns, and patterns that were marked
ambiguous after a company conflict. Use it to audit learning before
trusting a store in production.

Usage:
    # Summary of the configured store (PATTERN_STORE_PATH)
    python scripts/review_learned_patterns.py

    # A specific store file, more patterns
    python scripts/review_learned_patterns.py --store data/learned_patterns.json --top 25

    # Full snapshot as JSON for programmatic use
    python scripts/review_learned_patterns.py --json

When the durable cache directory (CACHE_DIR) exists, its entry counts and
size are reported too.
"""

import argparse
import json
from pathlib import Path

from company_identity.cache import AppCache
from company_identity.cli import print_execute_header, setup_logging
from company_identity.config import get_settings
from company_identity.constants import AMBIGUOUS_PATTERN_CONFIDENCE
from company_identity.learning import JsonFilePatternPersistence, PatternStore


def ambiguous_patterns(snapshot: dict) -> list[dict]:
    """Patterns capped by a conflict, lowest confidence first."""
    flagged = [
        {"pattern": key, **value}
        for key, value in snapshot.get("patterns", {}).items()
        if value.get("confidence", 0.0) <= AMBIGUOUS_PATTERN_CONFIDENCE
    ]
    return sorted(flagged, key=lambda p: p.get("confidence", 0.0))


def report_cache(cache_dir: Path, logger) -> None:
    """Entry counts and size of the durable cache behind results and patterns."""
    cache = AppCache(cache_dir)
    try:
        stats = cache.stats()
        logger.info(f"\nDurable cache: {stats['cache_dir']} ({stats['size_mb']} MB)")
        logger.info(f"  Cached results:   {cache.count(namespace='results'):,}")
        for namespace, count in sorted(stats["by_namespace"].items()):
            logger.info(f"  {namespace + ':':<17} {count:,}")
    finally:
        cache.close()


def main():
    parser = argparse.ArgumentParser(description="Review learned company patterns")
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Pattern store JSON file (default: PATTERN_STORE_PATH setting)",
    )
    parser.add_argument(
        "--top", type=int, default=10, help="Number of patterns to list (default: 10)"
    )
    parser.add_argument("--json", action="store_true", help="Output the full snapshot as JSON")
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Durable cache directory (default: CACHE_DIR setting)",
    )
    args = parser.parse_args()

    logger = setup_logging("review_learned_patterns")
    settings = get_settings()
    path = args.store or settings.pattern_store_path
    if not Path(path).exists():
        logger.error(f"No pattern store at {path}")
        raise SystemExit(1)

    store = PatternStore(JsonFilePatternPersistence(path), autoflush=False)
    snapshot = store.export_snapshot()

    if args.json:
        print(json.dumps(snapshot, indent=2, sort_keys=True))
        return

    stats = store.stats()
    print_execute_header(f"Learned patterns: {path}", logger)
    logger.info(f"  Patterns:         {stats['total_patterns']:,}")
    logger.info(f"  Domain mappings:  {stats['total_domain_mappings']:,}")
    logger.info(f"  Companies:        {len(stats['companies_learned']):,}")

    patterns = sorted(
        snapshot["patterns"].items(), key=lambda item: item[1]["occurrences"], reverse=True
    )[: args.top]
    if patterns:
        logger.info(f"\nTop {len(patterns)} patterns by occurrences:")
        for key, value in patterns:
            parent = f" (parent: {value['parentCompany']})" if value.get("parentCompany") else ""
            logger.info(
                f"  {key:<35} -> {value['company']}{parent}  "
                f"conf={value['confidence']:.2f} seen={value['occurrences']}"
            )

    flagged = ambiguous_patterns(snapshot)
    if flagged:
        logger.info(f"\nAmbiguous patterns ({len(flagged)}):")
        for item in flagged[: args.top]:
            logger.info(
                f"  {item['pattern']:<35} -> {item['company']}  conf={item['confidence']:.2f}"
            )

    cache_dir = args.cache_dir or settings.cache_dir
    if Path(cache_dir).exists():
        report_cache(cache_dir, logger)


if __name__ == "__main__":
    main()
