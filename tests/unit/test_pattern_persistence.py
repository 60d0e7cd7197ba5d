"""
Unit tests for company_identity.learning persistence backends and snapshot format.
"""

import json
from datetime import datetime, timezone

import pytest

from company_identity.cache import AppCache
from company_identity.learning.models import LearnedPattern, decode_snapshot, encode_snapshot
from company_identity.learning.persistence import (
    DiskCachePatternPersistence,
    InMemoryPatternPersistence,
    JsonFilePatternPersistence,
)
from company_identity.learning.store import PatternStore


class TestSnapshotFormat:
    """Tests for encode_snapshot() / decode_snapshot()."""

    def test_none_is_empty(self):
        """No snapshot yet means an empty store."""
        assert decode_snapshot(None) == ({}, {})

    def test_not_an_object(self):
        """A snapshot that is not an object cannot be read."""
        with pytest.raises(ValueError):
            decode_snapshot(["not", "a", "snapshot"])

    def test_unversioned_snapshot_accepted(self):
        """Snapshots without a version are read as version 1."""
        patterns, mappings = decode_snapshot(
            {"patterns": {"acme.com": {"company": "Acme Corp"}}, "domainMappings": {"acme": "Acme Corp"}}
        )
        assert patterns["acme.com"].company == "Acme Corp"
        assert patterns["acme.com"].pattern == "acme.com"
        assert mappings == {"acme": "Acme Corp"}

    def test_newer_version_warns(self, caplog):
        """Unknown newer versions are read field by field with a warning."""
        with caplog.at_level("WARNING", logger="company_identity.learning.models"):
            patterns, _ = decode_snapshot(
                {"version": 99, "patterns": {"acme.com": {"company": "Acme", "futureField": 1}}}
            )
        assert "newer than supported" in caplog.text
        assert patterns["acme.com"].company == "Acme"

    def test_malformed_entry_skipped(self):
        """One bad entry does not sink the whole load."""
        patterns, _ = decode_snapshot(
            {
                "version": 1,
                "patterns": {
                    "good.com": {"company": "Good"},
                    "bad.com": {"confidence": 0.9},
                    "worse.com": {"company": "Worse", "occurrences": "many"},
                },
            }
        )
        assert list(patterns) == ["good.com"]

    def test_timestamp_formats(self):
        """lastSeen accepts ISO-8601 with Z and epoch milliseconds."""
        iso = LearnedPattern.from_dict({"company": "A", "lastSeen": "2026-01-02T03:04:05Z"})
        epoch = LearnedPattern.from_dict({"company": "A", "lastSeen": 1767323045000})
        expected = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert iso.last_seen == expected
        assert epoch.last_seen == expected

    def test_percentage_confidence_rescaled(self):
        """Legacy 0-100 confidences load on the 0-1 scale."""
        patterns, _ = decode_snapshot({"patterns": {"acme.com": {"company": "Acme", "confidence": 95}}})
        assert patterns["acme.com"].confidence == pytest.approx(0.95)

    def test_percentage_snapshot_keeps_running_average(self):
        """Learning on top of a 0-100 snapshot stays within [0, 1]."""
        store = PatternStore(
            InMemoryPatternPersistence(
                {"patterns": {"acme.com": {"company": "Acme", "confidence": 95, "occurrences": 1}}}
            )
        )
        store.learn("acme.com", "Acme", confidence=0.9)

        learned = store.get_pattern("acme.com")
        assert learned.occurrences == 2
        assert learned.confidence == pytest.approx(0.925)

    def test_round_trip_fields(self):
        """Every field survives an encode/decode cycle."""
        seen = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        original = LearnedPattern(
            pattern="polarisdigital.com",
            company="Polaris Digital Division",
            parent_company="Polaris Inc",
            confidence=0.93,
            occurrences=4,
            last_seen=seen,
            sources=["polarisdigital.com", "www.polarisdigital.com"],
        )
        patterns, mappings = decode_snapshot(
            json.loads(json.dumps(encode_snapshot({original.pattern: original}, {"x": "y"})))
        )
        assert patterns[original.pattern] == original
        assert mappings == {"x": "y"}

    def test_parent_omitted_when_absent(self):
        """parentCompany is only written when present."""
        data = LearnedPattern(pattern="a.com", company="A").to_dict()
        assert "parentCompany" not in data


class TestJsonFilePersistence:
    """Tests for JsonFilePatternPersistence."""

    def test_missing_file_loads_none(self, tmp_path):
        """No file yet means nothing saved."""
        assert JsonFilePatternPersistence(tmp_path / "none.json").load() is None

    def test_save_and_load(self, tmp_path):
        """Saved snapshots load back unchanged."""
        path = tmp_path / "nested" / "patterns.json"
        persistence = JsonFilePatternPersistence(path)
        persistence.save({"version": 1, "patterns": {}, "domainMappings": {"a": "A"}})

        assert path.exists()
        assert persistence.load()["domainMappings"] == {"a": "A"}

    def test_no_temp_files_left(self, tmp_path):
        """Atomic writes clean up after themselves."""
        persistence = JsonFilePatternPersistence(tmp_path / "patterns.json")
        for i in range(3):
            persistence.save({"version": 1, "patterns": {}, "domainMappings": {"n": str(i)}})
        assert [p.name for p in tmp_path.iterdir()] == ["patterns.json"]

    def test_corrupt_file_degrades_store(self, tmp_path):
        """A corrupt JSON file leaves the store empty and memory-only."""
        path = tmp_path / "patterns.json"
        path.write_text("{not json", encoding="utf-8")

        store = PatternStore(JsonFilePatternPersistence(path))
        assert len(store) == 0
        assert store.is_persistent is False
        assert path.read_text(encoding="utf-8") == "{not json"

    def test_store_round_trip(self, tmp_path):
        """A store reloaded from disk answers the same suggestions."""
        path = tmp_path / "patterns.json"
        PatternStore(JsonFilePatternPersistence(path)).learn(
            "peanutbutter.com", "Skippy", confidence=0.9
        )

        reloaded = PatternStore(JsonFilePatternPersistence(path))
        assert reloaded.suggest("peanutbutter.mx").company == "Skippy"


class TestOtherBackends:
    """Tests for the diskcache and in-memory backends."""

    def test_diskcache_backend(self, tmp_path):
        """Snapshots live under one AppCache key."""
        cache = AppCache(tmp_path / "cache")
        try:
            persistence = DiskCachePatternPersistence(cache)
            assert persistence.load() is None

            PatternStore(persistence).learn("acme.com", "Acme Corp", confidence=0.9)
            assert cache.count(namespace="patterns") == 1
            assert PatternStore(persistence).get_pattern("acme.com").company == "Acme Corp"
        finally:
            cache.close()

    def test_in_memory_isolated_from_caller(self):
        """The in-memory backend keeps its own copy of snapshots."""
        snapshot = {"version": 1, "patterns": {}, "domainMappings": {"a": "A"}}
        persistence = InMemoryPatternPersistence(snapshot)
        snapshot["domainMappings"]["a"] = "changed"
        assert persistence.load()["domainMappings"]["a"] == "A"
