"""
End-to-end tests for ResolutionOrchestrator.

Every test runs the full three-phase pipeline against MockInferenceProvider,
so nothing here touches the network.
"""

import asyncio

import pytest

from company_identity.entity_resolution.matchers import (
    BundleIdMatcher,
    HierarchyDomainMatcher,
    LearnedPatternMatcher,
    TitleKeywordMatcher,
)
from company_identity.entity_resolution.resolver import DeterministicResolver
from company_identity.inference.providers import MockInferenceProvider
from company_identity.models import EntityQuery, ResolutionMethod
from company_identity.pipeline import ResolutionContext, ResolutionOrchestrator, RowState


@pytest.fixture
def provider_for(make_responder):
    """Mock provider answering by URL substring."""

    def _make(answers, **kwargs) -> MockInferenceProvider:
        return MockInferenceProvider(responder=make_responder(answers), **kwargs)

    return _make


class TestDeterministicPath:
    """Rows settled before inference."""

    def test_hierarchy_rows_need_no_inference(self, context, mock_provider):
        """Polaris family rows resolve from the hierarchy alone."""
        orchestrator = ResolutionOrchestrator(mock_provider, context=context)
        results = orchestrator.resolve_all_sync(
            [
                EntityQuery(url="https://experience.polaris.io"),
                EntityQuery(url="polaris.com"),
                EntityQuery(website_app_title="Polaris Alpha Rider"),
            ]
        )

        assert [r.company for r in results] == [
            "Polaris Digital Division",
            "Polaris Inc",
            "Polaris Subsidiary Alpha",
        ]
        assert results[0].parent_company == "Polaris Inc"
        assert results[0].method is ResolutionMethod.DOMAIN_PATTERN
        assert mock_provider.call_count == 0
        assert orchestrator.row_states == [RowState.DETERMINISTIC_RESOLVED] * 3
        assert orchestrator.get_stats()["deterministic_resolved"] == 3

    def test_empty_input(self, context, mock_provider):
        orchestrator = ResolutionOrchestrator(mock_provider, context=context)
        assert orchestrator.resolve_all_sync([]) == []
        assert orchestrator.get_stats()["processed"] == 0


class TestInferencePath:
    """Rows sent to the provider."""

    def test_order_and_progress(self, context, provider_for):
        """Results align with input; progress reaches (n, n)."""
        queries = [EntityQuery(url=f"shop{i}.example.org") for i in range(30)]
        answers = {f"shop{i}.": (f"Shop Company {i}", None, 0.9) for i in range(30)}
        progress = []

        orchestrator = ResolutionOrchestrator(provider_for(answers), context=context)
        results = orchestrator.resolve_all_sync(
            queries, on_progress=lambda done, total: progress.append((done, total))
        )

        assert [r.company for r in results] == [f"Shop Company {i}" for i in range(30)]
        assert progress[-1] == (30, 30)
        assert [done for done, _ in progress] == sorted(done for done, _ in progress)

    def test_rerun_is_served_from_cache(self, context, provider_for):
        """A second run over the same rows makes no new calls."""
        provider = provider_for({"mystery-one": ("Mystery One Ltd", None, 0.9)})
        orchestrator = ResolutionOrchestrator(provider, context=context)
        queries = [
            EntityQuery(url="mystery-one.example"),
            EntityQuery(url="https://experience.polaris.io"),
        ]

        first = orchestrator.resolve_all_sync(queries)
        calls = orchestrator.get_stats()["inference_calls"]
        second = orchestrator.resolve_all_sync(queries)

        assert calls == 1
        assert orchestrator.get_stats()["inference_calls"] == calls
        assert orchestrator.row_states == [RowState.CACHED, RowState.CACHED]
        assert [(r.company, r.confidence) for r in second] == [
            (r.company, r.confidence) for r in first
        ]
        assert all(r.method is ResolutionMethod.CACHED for r in second)
        assert orchestrator.get_stats()["cached_hits"] == 2

    def test_duplicate_rows_sent_once(self, context, provider_for):
        """Rows with the same content key share one request."""
        provider = provider_for({"mystery": ("Mystery Inc", None, 0.9)})
        orchestrator = ResolutionOrchestrator(provider, context=context)
        results = orchestrator.resolve_all_sync(
            [
                EntityQuery(url="mystery.example"),
                EntityQuery(url="MYSTERY.example "),
                EntityQuery(url="other.example"),
                EntityQuery(url="mystery.example"),
            ]
        )

        assert sum(len(call) for call in provider.calls) == 2
        assert [r.company for r in results][:2] == ["Mystery Inc", "Mystery Inc"]
        assert results[3].company == "Mystery Inc"

    def test_floor_kept_when_inference_does_worse(self, context, provider_for):
        """A generic guess survives an Unknown answer."""
        orchestrator = ResolutionOrchestrator(provider_for({}), context=context)
        (result,) = orchestrator.resolve_all_sync([EntityQuery(url="acme-widgets.co.uk")])

        assert result.company == "Acme Widgets"
        assert result.confidence == 0.7
        assert "Kept deterministic guess" in result.reasoning

    def test_failed_batch_retried_next_job(self, context, provider_for):
        """Failed rows are Unknown and are not cached."""
        provider = provider_for(
            {"123.com": ("Numeric Holdings", None, 0.9)}, failures=[ValueError("bad request")]
        )
        orchestrator = ResolutionOrchestrator(provider, context=context)
        query = EntityQuery(url="123.com")

        (first,) = orchestrator.resolve_all_sync([query])
        assert first.is_unknown
        assert len(context.cache) == 0
        assert orchestrator.get_stats()["errors"] == 1

        (second,) = orchestrator.resolve_all_sync([query])
        assert second.company == "Numeric Holdings"
        assert provider.call_count == 2

    def test_zero_cost_limit(self, make_settings, provider_for):
        """No calls are made and unsent rows stay Unknown."""
        context = ResolutionContext.in_memory(make_settings(cost_limit=0.0))
        provider = provider_for({"mystery": ("Mystery Inc", None, 0.9)})
        orchestrator = ResolutionOrchestrator(provider, context=context)
        results = orchestrator.resolve_all_sync(
            [EntityQuery(url="mystery-a.com"), EntityQuery(url="mystery-b.com")]
        )

        assert provider.call_count == 0
        assert all(r.is_unknown for r in results)
        stats = orchestrator.get_stats()
        assert stats["skipped_cost_limit"] == 2
        assert stats["unknown"] == 2
        assert len(context.cache) == 0

    def test_cost_limit_is_per_job(self, make_settings, provider_for):
        """A second resolve_all on the same orchestrator gets a fresh budget."""
        context = ResolutionContext.in_memory(make_settings(cost_limit=0.5))
        provider = provider_for(
            {"mystery": ("Mystery Inc", None, 0.9)}, cost_per_1k_tokens=1.0
        )
        orchestrator = ResolutionOrchestrator(provider, context=context)

        (first,) = orchestrator.resolve_all_sync([EntityQuery(url="mystery-a.com")])
        (second,) = orchestrator.resolve_all_sync([EntityQuery(url="mystery-b.com")])

        assert provider.call_count == 2
        assert (first.company, second.company) == ("Mystery Inc", "Mystery Inc")
        assert orchestrator.get_stats()["skipped_cost_limit"] == 0


class TestLearning:
    """Pattern learning across rows and jobs."""

    def test_generic_labels_never_learned(self, context, provider_for):
        """acme.com.mx teaches 'acme' but never 'com'."""
        provider = provider_for({"acme": ("Acme Corp", None, 0.95)})
        ResolutionOrchestrator(provider, context=context).resolve_all_sync(
            [EntityQuery(url="acme.com.mx")]
        )

        assert "acme" in context.store
        assert "com" not in context.store
        assert "mx" not in context.store

    def test_international_variant_from_earlier_job(self, context, provider_for):
        """peanutbutter.mx resolves from what peanutbutter.com taught."""
        provider = provider_for({"peanutbutter.com": ("Skippy", None, 0.95)})
        orchestrator = ResolutionOrchestrator(provider, context=context)
        orchestrator.resolve_all_sync([EntityQuery(url="peanutbutter.com")])

        (result,) = orchestrator.resolve_all_sync([EntityQuery(url="peanutbutter.mx")])
        assert result.company == "Skippy"
        assert result.method is ResolutionMethod.LEARNED_PATTERN
        assert 0.8 <= result.confidence <= 0.855
        assert provider.call_count == 1

    def test_learned_retry_within_one_job(self, context, provider_for):
        """An Unknown sibling is resolved by patterns learned in the same job."""
        store, hierarchy = context.store, context.hierarchy
        resolver = DeterministicResolver(
            [
                LearnedPatternMatcher(store),
                HierarchyDomainMatcher(hierarchy),
                BundleIdMatcher(hierarchy),
                TitleKeywordMatcher(hierarchy),
            ],
            cache=context.cache,
            confidence_threshold=0.8,
        )
        provider = provider_for({"acme.com": ("Acme Corp", None, 0.95)})
        orchestrator = ResolutionOrchestrator(provider, context=context, resolver=resolver)

        results = orchestrator.resolve_all_sync(
            [EntityQuery(url="acme.com"), EntityQuery(url="acme.mx")]
        )

        assert provider.call_count == 1
        assert results[1].company == "Acme Corp"
        assert results[1].confidence >= 0.7
        assert orchestrator.row_states[1] is RowState.LEARNED_RETRY
        assert "learned during this job" in results[1].reasoning
        assert orchestrator.get_stats()["learned_retry_resolved"] == 1

    def test_concurrent_write_back(self, make_settings, provider_for):
        """Every settled batch writes back; no update is lost."""
        context = ResolutionContext.in_memory(make_settings(batch_size=1, max_concurrent_batches=6))
        provider = provider_for({"acme": ("Acme Corp", None, 0.9)})
        ResolutionOrchestrator(provider, context=context).resolve_all_sync(
            [EntityQuery(url=f"site{i}.acme.com") for i in range(20)]
        )

        assert provider.call_count == 20
        assert all(f"site{i}.acme.com" in context.store for i in range(20))
        assert context.store.get_pattern("acme").occurrences >= 20

    def test_export_learned_patterns(self, context, provider_for):
        provider = provider_for({"acme": ("Acme Corp", None, 0.95)})
        orchestrator = ResolutionOrchestrator(provider, context=context)
        orchestrator.resolve_all_sync([EntityQuery(url="acme.com")])

        snapshot = orchestrator.export_learned_patterns()
        assert snapshot["patterns"]["acme.com"]["company"] == "Acme Corp"
        assert snapshot["domainMappings"]["acme"] == "Acme Corp"


class TestPersistence:
    """State carried between processes through configured storage."""

    def test_results_and_patterns_survive_restart(self, settings, provider_for):
        """A second context loads cached results and learned patterns from disk."""
        first_provider = provider_for({"peanutbutter": ("Skippy", None, 0.95)})
        with ResolutionOrchestrator(
            first_provider, context=ResolutionContext.from_settings(settings)
        ) as orchestrator:
            orchestrator.resolve_all_sync([EntityQuery(url="peanutbutter.com")])
        assert settings.pattern_store_path.exists()

        second_provider = provider_for({})
        with ResolutionOrchestrator(
            second_provider, context=ResolutionContext.from_settings(settings)
        ) as orchestrator:
            cached, variant = orchestrator.resolve_all_sync(
                [EntityQuery(url="peanutbutter.com"), EntityQuery(url="peanutbutter.mx")]
            )
            assert orchestrator.row_states[0] is RowState.CACHED

        assert cached.company == "Skippy"
        assert variant.company == "Skippy"
        assert second_provider.call_count == 0


class TestStats:
    """get_stats() shape."""

    def test_stats_keys(self, context, mock_provider):
        orchestrator = ResolutionOrchestrator(mock_provider, context=context)
        asyncio.run(orchestrator.resolve_all([EntityQuery(url="aixam-dealer.fr")]))

        stats = orchestrator.get_stats()
        assert set(stats) == {
            "processed",
            "cached_hits",
            "inference_calls",
            "errors",
            "estimated_cost",
            "deterministic_resolved",
            "inferred",
            "learned_retry_resolved",
            "unknown",
            "skipped_cost_limit",
            "retries",
            "input_tokens",
            "output_tokens",
            "cache",
        }
        assert stats["processed"] == 1
        assert stats["inferred"] == 1
        assert stats["inference_calls"] == 1


@pytest.mark.parametrize("rows", [1, 11])
def test_default_context_from_settings(settings, rows):
    """Without a context the orchestrator builds an in-memory one."""
    orchestrator = ResolutionOrchestrator(MockInferenceProvider(), settings=settings)
    results = orchestrator.resolve_all_sync([EntityQuery(url="polaris.com")] * rows)
    assert len(results) == rows
    assert orchestrator.context.settings is settings
