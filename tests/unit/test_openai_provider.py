"""
Unit tests for company_identity.inference.providers.

The OpenAI client is replaced with a MagicMock whose
chat.completions.create is an AsyncMock (see conftest.make_openai_client).
"""

import asyncio

import pytest

from company_identity.inference import providers
from company_identity.inference.providers import (
    InferenceRequest,
    MockInferenceProvider,
    OpenAIInferenceProvider,
    build_batch_prompt,
    parse_batch_response,
)
from company_identity.models import EntityQuery

POLARIS_BODY = {
    "results": [
        {
            "id": "q0",
            "company": "Polaris Inc",
            "parentCompany": None,
            "confidence": 0.95,
            "reasoning": "Official Polaris site",
        }
    ]
}


def polaris_request() -> list[InferenceRequest]:
    return [InferenceRequest("q0", EntityQuery(website_app_title="Polaris", url="polaris.com"))]


class TestOpenAIInferenceProvider:
    """Tests for OpenAIInferenceProvider.identify()."""

    def test_request_shape(self, make_client):
        """JSON mode, system + user messages, configured model."""
        client = make_client(POLARIS_BODY)
        provider = OpenAIInferenceProvider(client=client, model="gpt-4o-mini")
        asyncio.run(provider.identify(polaris_request()))

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in kwargs["messages"]] == ["system", "user"]
        prompt = kwargs["messages"][1]["content"]
        assert "Entry id: q0" in prompt
        assert "URL: polaris.com" in prompt
        assert "URL 2: Not provided" in prompt

    def test_parses_results_and_usage(self, make_client):
        """Results and token usage come from the response."""
        provider = OpenAIInferenceProvider(client=make_client(POLARIS_BODY, 1234, 56))
        response = asyncio.run(provider.identify(polaris_request()))

        assert len(response.results) == 1
        result = response.results[0]
        assert (result.request_id, result.company, result.parent_company) == (
            "q0",
            "Polaris Inc",
            None,
        )
        assert result.confidence == 0.95
        assert (response.input_tokens, response.output_tokens) == (1234, 56)
        assert response.diagnostics == []

    def test_token_count_fallback(self, make_client, monkeypatch):
        """Without usage data, tokens are counted locally."""
        monkeypatch.setattr(providers, "count_tokens", lambda text, model: 7)
        provider = OpenAIInferenceProvider(client=make_client(POLARIS_BODY, prompt_tokens=None))
        response = asyncio.run(provider.identify(polaris_request()))
        assert (response.input_tokens, response.output_tokens) == (7, 7)

    def test_bad_body_is_diagnostic(self, make_client):
        """An unparsable body yields no results rather than an exception."""
        provider = OpenAIInferenceProvider(client=make_client("I cannot help with that"))
        response = asyncio.run(provider.identify(polaris_request()))
        assert response.results == []
        assert "unparsable" in response.diagnostics[0]

    def test_transport_errors_propagate(self, make_client):
        """Transport failures are raised for the client to classify."""
        client = make_client(POLARIS_BODY)
        client.chat.completions.create.side_effect = ConnectionError("reset")
        provider = OpenAIInferenceProvider(client=client)
        with pytest.raises(ConnectionError):
            asyncio.run(provider.identify(polaris_request()))

    def test_estimate_cost(self, make_client):
        """gpt-4o-mini: 0.15 in + 0.60 out per million tokens."""
        provider = OpenAIInferenceProvider(client=make_client(POLARIS_BODY), model="gpt-4o-mini")
        assert provider.estimate_cost(1_000_000, 1_000_000) == pytest.approx(0.75)
        assert provider.model_name == "gpt-4o-mini"

    def test_explicit_api_key(self):
        """An explicit key builds a real client without reading settings."""
        provider = OpenAIInferenceProvider(api_key="sk-test")
        assert provider.client is not None


class TestPrompt:
    """Tests for build_batch_prompt()."""

    def test_one_entry_per_request(self):
        requests = [
            InferenceRequest("q0", EntityQuery(url="a.com")),
            InferenceRequest("q1", EntityQuery(url="b.com", app_url="com.b.app")),
        ]
        prompt = build_batch_prompt(requests)
        assert "following 2 entries" in prompt
        assert "Entry id: q1" in prompt
        assert "App URL: com.b.app" in prompt
        assert "exactly 2 objects" in prompt


class TestParseBatchResponse:
    """Tests for parse_batch_response()."""

    @pytest.mark.parametrize(
        "content,diagnostic",
        [
            (None, "empty response body"),
            ("   ", "empty response body"),
            ("{not json", "unparsable response body"),
            ('{"answers": []}', "no 'results' array"),
            ('{"results": "nope"}', "expected array"),
        ],
    )
    def test_bad_bodies(self, content, diagnostic):
        """Bad bodies give no results and one diagnostic."""
        results, diagnostics = parse_batch_response(content)
        assert results == []
        assert diagnostic in diagnostics[0]

    def test_bare_array(self):
        """A top-level array is accepted."""
        results, _ = parse_batch_response('[{"id": "q0", "company": "Acme", "confidence": 0.9}]')
        assert results[0].company == "Acme"

    def test_non_object_entries_skipped(self):
        """Entries that are not objects are dropped with a diagnostic."""
        results, diagnostics = parse_batch_response(
            '{"results": ["oops", {"id": "q1", "company": "Acme"}]}'
        )
        assert [r.request_id for r in results] == ["q1"]
        assert "entry 0" in diagnostics[0]

    def test_field_normalization(self):
        """Ids become strings and null-ish parents become None."""
        results, _ = parse_batch_response(
            '{"results": [{"id": 3, "company": " Acme ", "parentCompany": "null", '
            '"confidence": "0.8"},'
            ' {"company": "Beta", "parent_company": "Beta Holdings"}]}'
        )
        first, second = results
        assert first.request_id == "3"
        assert first.company == "Acme"
        assert first.parent_company is None
        assert first.confidence == "0.8"
        assert second.request_id is None
        assert second.parent_company == "Beta Holdings"
        assert second.confidence == 0.0


class TestMockInferenceProvider:
    """Tests for the offline provider."""

    def test_default_rules(self):
        """Keyword rules match any input field."""
        response = asyncio.run(
            MockInferenceProvider().identify(
                [
                    InferenceRequest("q0", EntityQuery(website_app_title="Polaris Ride")),
                    InferenceRequest("q1", EntityQuery(url="aixam-dealer.fr")),
                    InferenceRequest("q2", EntityQuery(url="nothing.example")),
                ]
            )
        )
        companies = [r.company for r in response.results]
        assert companies == ["Polaris Digital Division", "AIXAM", "Unknown"]
        assert response.input_tokens == 500

    def test_failures_raised_in_order(self):
        """Queued failures are raised by successive calls."""
        provider = MockInferenceProvider(failures=[TimeoutError(), None])
        with pytest.raises(TimeoutError):
            asyncio.run(provider.identify(polaris_request()))
        response = asyncio.run(provider.identify(polaris_request()))
        assert response.results[0].company == "Polaris Digital Division"
        assert provider.call_count == 2
