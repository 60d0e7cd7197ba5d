"""
Inference providers.

A provider identifies a batch of rows in one call. Every request carries an
opaque tag (``q0``, ``q1``, ...) that the provider is asked to echo back,
so the client can re-align answers even when the response is reordered or
short.

Providers report what they got; they do not pad or re-align. Unparsable
bodies come back as an empty result list plus a diagnostic, and the
client turns that into per-row ``Unknown``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from openai import AsyncOpenAI

from company_identity.config import get_openai_api_key
from company_identity.constants import (
    DEFAULT_INFERENCE_MODEL,
    INFERENCE_MAX_TOKENS,
    INFERENCE_TEMPERATURE,
    UNKNOWN_COMPANY,
)
from company_identity.inference.pricing import count_tokens, estimate_llm_cost_usd
from company_identity.models import EntityQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceRequest:
    """One row in a batch, with the tag the provider must echo."""

    request_id: str
    query: EntityQuery


@dataclass(frozen=True)
class ProviderResult:
    """One raw answer as reported by the provider (not yet validated)."""

    request_id: str | None
    company: str | None
    parent_company: str | None = None
    confidence: Any = 0.0  # Raw value; normalized by the client
    reasoning: str = ""


@dataclass
class InferenceResponse:
    """Everything one provider call returned."""

    results: list[ProviderResult]
    input_tokens: int = 0
    output_tokens: int = 0
    diagnostics: list[str] = field(default_factory=list)


class InferenceProvider(ABC):
    """Abstract base class for batch identification backends."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier, used for logs and pricing."""
        ...

    @abstractmethod
    async def identify(self, requests: Sequence[InferenceRequest]) -> InferenceResponse:
        """
        Identify a batch of rows in a single call.

        Raises:
            Any exception from the underlying transport; the client
            classifies it as retryable or fatal.
        """
        ...

    @abstractmethod
    def estimate_cost(self, input_tokens: int, output_tokens: int = 0) -> float:
        """Estimated USD cost for the given token counts."""
        ...


SYSTEM_PROMPT = (
    "You identify the companies behind websites and mobile apps. "
    "Respond with a single JSON object."
)

GUIDELINES = """Guidelines:
- Identify the company from the URL, title and app identifier; use what you know about the site (logos, "about us" pages).
- If the site is a dealer or distributor (e.g., an Aixam car dealer), identify the manufacturer/brand being sold, not the dealer.
- Standardize company names (e.g., "Polaris Inc", not "Polaris Industries").
- Include the parent company when known, otherwise null.
- Do NOT infer an industry from the domain name alone; "heritage" in a domain does not make it an insurer.
- International domains (.mx, .id, .se, ...) usually belong to the same company as their .com counterpart.
- FTP URLs (ftp://) are valid company URLs; identify from the domain.
- Meaningful subdomains (like burke.nationjob.com) identify the company named in the subdomain.
- Set confidence between 0.0 and 1.0 from your certainty.
- When in doubt, return company "Unknown" with confidence 0."""


def _field(value: str | None) -> str:
    return value.strip() if value and value.strip() else "Not provided"


def build_batch_prompt(requests: Sequence[InferenceRequest]) -> str:
    """User prompt for one batch, one tagged entry per request."""
    entries = "\n\n".join(
        f"Entry id: {req.request_id}\n"
        f"Website/App Title: {_field(req.query.website_app_title)}\n"
        f"URL: {_field(req.query.url)}\n"
        f"URL 2: {_field(req.query.url2)}\n"
        f"App URL: {_field(req.query.app_url)}"
        for req in requests
    )
    n = len(requests)
    return f"""Identify the companies for the following {n} entries.

{entries}

Return a JSON object with a "results" array of exactly {n} objects, one per entry, in the same order:
{{
  "id": "<entry id, copied exactly>",
  "company": "Company Name",
  "parentCompany": "Parent Company Name or null",
  "confidence": 0.0 to 1.0,
  "reasoning": "Brief explanation"
}}

{GUIDELINES}"""


def _as_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text and text.lower() not in {"null", "none", "n/a"} else None


def parse_batch_response(content: str | None) -> tuple[list[ProviderResult], list[str]]:
    """
    Parse a provider response body into raw results.

    Accepts ``{"results": [...]}`` or a bare JSON array. Never raises: bad
    bodies yield ``([], [diagnostic])``, bad entries are skipped with a
    diagnostic.
    """
    diagnostics: list[str] = []
    if not content or not content.strip():
        return [], ["empty response body"]

    try:
        payload = json.loads(content)
    except json.JSONDecodeError as e:
        return [], [f"unparsable response body: {e}"]

    if isinstance(payload, dict):
        items = payload.get("results")
        if items is None:
            return [], ["response object has no 'results' array"]
    else:
        items = payload
    if not isinstance(items, list):
        return [], [f"'results' is {type(items).__name__}, expected array"]

    results: list[ProviderResult] = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            diagnostics.append(f"entry {position} is {type(item).__name__}, expected object")
            continue
        raw_id = item.get("id")
        results.append(
            ProviderResult(
                request_id=str(raw_id).strip() if raw_id is not None else None,
                company=_as_optional_str(item.get("company")),
                parent_company=_as_optional_str(
                    item.get("parentCompany", item.get("parent_company"))
                ),
                confidence=item.get("confidence", 0.0),
                reasoning=str(item.get("reasoning") or "").strip(),
            )
        )
    return results, diagnostics


def _usage_tokens(usage: Any, name: str) -> int | None:
    value = getattr(usage, name, None) if usage is not None else None
    return value if isinstance(value, int) else None


class OpenAIInferenceProvider(InferenceProvider):
    """Batch identification through OpenAI chat completions (JSON mode)."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str = DEFAULT_INFERENCE_MODEL,
        api_key: str | None = None,
        temperature: float = INFERENCE_TEMPERATURE,
        max_tokens: int = INFERENCE_MAX_TOKENS,
    ):
        """
        Args:
            client: Existing AsyncOpenAI client (default: one built from api_key)
            model: Chat model name
            api_key: API key (default: OPENAI_API_KEY from settings)
            temperature: Sampling temperature
            max_tokens: Completion token limit per batch
        """
        self.client = client or AsyncOpenAI(api_key=api_key or get_openai_api_key())
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def model_name(self) -> str:
        return self.model

    async def identify(self, requests: Sequence[InferenceRequest]) -> InferenceResponse:
        prompt = build_batch_prompt(requests)
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        content = response.choices[0].message.content if response.choices else None
        results, diagnostics = parse_batch_response(content)

        usage = getattr(response, "usage", None)
        input_tokens = _usage_tokens(usage, "prompt_tokens")
        output_tokens = _usage_tokens(usage, "completion_tokens")
        if input_tokens is None:
            input_tokens = count_tokens(SYSTEM_PROMPT + prompt, self.model)
        if output_tokens is None:
            output_tokens = count_tokens(content or "", self.model)

        return InferenceResponse(
            results=results,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            diagnostics=diagnostics,
        )

    def estimate_cost(self, input_tokens: int, output_tokens: int = 0) -> float:
        cost, _ = estimate_llm_cost_usd(
            self.model, input_tokens=input_tokens, output_tokens=output_tokens
        )
        return cost


# (keyword, company, parent company, confidence)
DEFAULT_MOCK_RULES: tuple[tuple[str, str, str | None, float], ...] = (
    ("polaris", "Polaris Digital Division", "Polaris Inc", 0.95),
    ("aixam", "AIXAM", None, 0.9),
)


class MockInferenceProvider(InferenceProvider):
    """
    Deterministic offline provider for tests and dry runs.

    Answers by keyword rules over the four input fields, or through a
    custom ``responder``. ``failures`` are raised by successive calls
    before any answer is produced (``None`` entries mean "succeed").
    """

    def __init__(
        self,
        rules: Sequence[tuple[str, str, str | None, float]] = DEFAULT_MOCK_RULES,
        responder: Callable[[Sequence[InferenceRequest]], list[ProviderResult]] | None = None,
        failures: Sequence[BaseException | None] = (),
        input_tokens_per_call: int = 500,
        output_tokens_per_call: int = 100,
        cost_per_1k_tokens: float = 0.0,
        delay: float = 0.0,
        model: str = "mock",
    ):
        self.rules = list(rules)
        self.responder = responder
        self._failures = list(failures)
        self.input_tokens_per_call = input_tokens_per_call
        self.output_tokens_per_call = output_tokens_per_call
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.delay = delay
        self.model = model
        self.calls: list[list[InferenceRequest]] = []

    @property
    def model_name(self) -> str:
        return self.model

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _apply_rules(self, request: InferenceRequest) -> ProviderResult:
        q = request.query
        haystack = " ".join(
            part for part in (q.website_app_title, q.url, q.url2, q.app_url) if part
        ).lower()
        for keyword, company, parent, confidence in self.rules:
            if keyword.lower() in haystack:
                return ProviderResult(
                    request_id=request.request_id,
                    company=company,
                    parent_company=parent,
                    confidence=confidence,
                    reasoning=f"Mock rule {keyword!r}",
                )
        return ProviderResult(
            request_id=request.request_id,
            company=UNKNOWN_COMPANY,
            confidence=0.0,
            reasoning="No mock rule matched",
        )

    async def identify(self, requests: Sequence[InferenceRequest]) -> InferenceResponse:
        self.calls.append(list(requests))
        if self._failures:
            failure = self._failures.pop(0)
            if failure is not None:
                raise failure
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.responder is not None:
            results = list(self.responder(requests))
        else:
            results = [self._apply_rules(request) for request in requests]
        return InferenceResponse(
            results=results,
            input_tokens=self.input_tokens_per_call,
            output_tokens=self.output_tokens_per_call,
        )

    def estimate_cost(self, input_tokens: int, output_tokens: int = 0) -> float:
        return (input_tokens + output_tokens) / 1000.0 * self.cost_per_1k_tokens
