"""
Pattern learning: remember which domain patterns identify which companies.
"""

from company_identity.learning.models import LearnedPattern, decode_snapshot, encode_snapshot
from company_identity.learning.persistence import (
    DiskCachePatternPersistence,
    InMemoryPatternPersistence,
    JsonFilePatternPersistence,
    PatternPersistence,
)
from company_identity.learning.store import PatternStore

__all__ = [
    "DiskCachePatternPersistence",
    "InMemoryPatternPersistence",
    "JsonFilePatternPersistence",
    "LearnedPattern",
    "PatternPersistence",
    "PatternStore",
    "decode_snapshot",
    "encode_snapshot",
]
