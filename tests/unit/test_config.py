"""
Unit tests for company_identity.config module.

Settings are built with ``_env_file=None`` so a developer's .env file never
leaks into the assertions; environment variables are set with monkeypatch.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from company_identity.config import Settings, get_openai_api_key, get_settings


@pytest.fixture
def fresh_settings():
    """Clear the cached Settings before and after the test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults():
    """Defaults match the documented policy."""
    settings = Settings(_env_file=None)
    assert settings.batch_size == 10
    assert settings.max_concurrent_batches == 6
    assert settings.confidence_threshold == 0.8
    assert settings.learned_retry_threshold == 0.7
    assert settings.cost_limit == 750.0
    assert settings.pattern_store_path == Path("data/learned_patterns.json")


def test_environment_overrides(monkeypatch):
    """Environment variables override defaults."""
    monkeypatch.setenv("BATCH_SIZE", "25")
    monkeypatch.setenv("CONFIDENCE_THRESHOLD", "0.9")
    monkeypatch.setenv("PATTERN_STORE_PATH", "/tmp/patterns.json")
    settings = Settings(_env_file=None)
    assert settings.batch_size == 25
    assert settings.confidence_threshold == 0.9
    assert settings.pattern_store_path == Path("/tmp/patterns.json")


def test_empty_cost_limit_is_unlimited(monkeypatch):
    """COST_LIMIT='' means no limit."""
    monkeypatch.setenv("COST_LIMIT", "")
    assert Settings(_env_file=None).cost_limit is None


@pytest.mark.parametrize(
    "field,value",
    [
        ("batch_size", 0),
        ("max_concurrent_batches", 0),
        ("confidence_threshold", 1.5),
        ("learned_retry_threshold", -0.1),
        ("cost_limit", -1.0),
        ("request_timeout_seconds", 0),
        ("max_retries", -1),
        ("max_cache_entries", 0),
    ],
)
def test_out_of_range_values_rejected(field, value):
    """Invalid configuration fails fast."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_api_key_whitespace_stripped():
    assert Settings(_env_file=None, openai_api_key="  sk-test  ").openai_api_key == "sk-test"


def test_get_openai_api_key_missing(monkeypatch, fresh_settings):
    """A missing key is an error at the point of use."""
    monkeypatch.setenv("OPENAI_API_KEY", "")
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        get_openai_api_key()


def test_get_openai_api_key_present(monkeypatch, fresh_settings):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
    assert get_openai_api_key() == "sk-from-env"


def test_get_settings_is_cached(fresh_settings):
    assert get_settings() is get_settings()
