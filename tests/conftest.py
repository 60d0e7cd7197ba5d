"""
Pytest configuration and shared fixtures for company_identity tests.
"""

import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from company_identity.config import Settings
from company_identity.entity_resolution.hierarchy import CompanyHierarchyTable
from company_identity.inference.providers import MockInferenceProvider, ProviderResult
from company_identity.learning.store import PatternStore
from company_identity.pipeline.context import ResolutionContext


def build_settings(tmp_path: Path, **overrides) -> Settings:
    """
    Isolated Settings: no .env file, storage under tmp_path, no retry delay.

    Explicit values take precedence over any environment variables.
    """
    values = {
        "openai_api_key": "",
        "batch_size": 10,
        "max_concurrent_batches": 6,
        "confidence_threshold": 0.8,
        "learned_retry_threshold": 0.7,
        "cost_limit": None,
        "max_retries": 3,
        "retry_base_delay_seconds": 0.0,
        "request_timeout_seconds": 5.0,
        "pattern_store_path": tmp_path / "learned_patterns.json",
        "cache_dir": tmp_path / "cache",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path):
    """Default isolated settings."""
    return build_settings(tmp_path)


@pytest.fixture
def make_settings(tmp_path):
    """Factory for isolated settings with overrides."""

    def _make(**overrides) -> Settings:
        return build_settings(tmp_path, **overrides)

    return _make


@pytest.fixture
def store():
    """Empty in-memory pattern store."""
    return PatternStore()


@pytest.fixture
def hierarchy():
    """Seeded hierarchy table."""
    return CompanyHierarchyTable.default()


@pytest.fixture
def context(settings, hierarchy, store):
    """In-memory resolution context."""
    return ResolutionContext.in_memory(settings, hierarchy=hierarchy, store=store)


@pytest.fixture
def mock_provider():
    """Mock provider with the default keyword rules."""
    return MockInferenceProvider()


def responder_from(answers: dict[str, tuple[str, str | None, float]]):
    """
    Build a MockInferenceProvider responder answering by URL substring.

    Args:
        answers: {url substring: (company, parent, confidence)}; rows that
                 match nothing come back Unknown with confidence 0
    """

    def respond(requests):
        results = []
        for request in requests:
            haystack = " ".join(request.query.urls).lower()
            for needle, (company, parent, confidence) in answers.items():
                if needle in haystack:
                    results.append(
                        ProviderResult(
                            request_id=request.request_id,
                            company=company,
                            parent_company=parent,
                            confidence=confidence,
                            reasoning=f"matched {needle}",
                        )
                    )
                    break
            else:
                results.append(
                    ProviderResult(
                        request_id=request.request_id,
                        company="Unknown",
                        confidence=0,
                        reasoning="no idea",
                    )
                )
        return results

    return respond


def make_openai_client(
    content: str | dict | list | None,
    prompt_tokens: int | None = 1000,
    completion_tokens: int | None = 200,
) -> MagicMock:
    """
    Mock AsyncOpenAI client whose chat.completions.create returns one canned response.

    Dict/list content is JSON-encoded; pass a string to send a raw body.
    """
    if isinstance(content, (dict, list)):
        content = json.dumps(content)
    usage = (
        SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
        if prompt_tokens is not None
        else None
    )
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=usage,
    )
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


@pytest.fixture
def make_responder():
    """Fixture access to responder_from()."""
    return responder_from


@pytest.fixture
def make_client():
    """Fixture access to make_openai_client()."""
    return make_openai_client
