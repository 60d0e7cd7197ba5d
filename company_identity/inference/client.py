"""
Batched inference client.

Splits unresolved rows into fixed-size batches and sends them to the
provider concurrently, bounded by a semaphore. Each call is wrapped in a
hard timeout and retried with exponential backoff on transient failures.
Fatal failures, exhausted retries and malformed responses never raise to
the caller: the affected rows come back as ``Unknown`` with a reason.

Once cumulative estimated spend reaches the cost limit, batches that have
not started are skipped; batches already in flight finish normally.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from company_identity.config import Settings
from company_identity.constants import (
    CONCURRENCY_TIERS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_CONCURRENT_BATCHES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    UNKNOWN_COMPANY,
)
from company_identity.inference.errors import (
    FatalInferenceError,
    InferenceError,
    RetryableInferenceError,
    classify_exception,
)
from company_identity.inference.providers import (
    InferenceProvider,
    InferenceRequest,
    InferenceResponse,
    ProviderResult,
)
from company_identity.models import (
    EntityQuery,
    ResolutionMethod,
    ResolutionResult,
    normalize_confidence,
)
from company_identity.utils.stats import ExecutionStats

logger = logging.getLogger(__name__)


class BatchStatus(Enum):
    """What happened to the batch a row belonged to."""

    ANSWERED = "answered"  # Provider responded (the row may still be Unknown)
    FAILED = "failed"  # Fatal error or retries exhausted
    SKIPPED = "skipped"  # Not dispatched because the cost limit was reached


@dataclass(frozen=True)
class RowOutcome:
    result: ResolutionResult
    status: BatchStatus


BatchCallback = Callable[[list[int], list[RowOutcome]], Awaitable[None] | None]


class BatchedInferenceClient:
    """Bounded-concurrency, retrying, cost-limited batch identification."""

    def __init__(
        self,
        provider: InferenceProvider,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrent_batches: int = DEFAULT_MAX_CONCURRENT_BATCHES,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY_SECONDS,
        cost_limit: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            provider: Inference backend
            batch_size: Rows per provider call
            max_concurrent_batches: Hard ceiling on in-flight calls
            request_timeout: Seconds before a call counts as a (retryable) timeout
            max_retries: Retries after the first attempt
            retry_base_delay: Backoff base; attempt n waits base * 2**n
            cost_limit: USD ceiling on estimated spend (None = unlimited)
            sleep: Awaitable sleep used between retries
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrent_batches < 1:
            raise ValueError("max_concurrent_batches must be at least 1")
        self.provider = provider
        self.batch_size = batch_size
        self.max_concurrent_batches = max_concurrent_batches
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.cost_limit = cost_limit
        self._sleep = sleep
        self._cost_limit_logged = False
        self._job_cost_start = 0.0
        self.stats = ExecutionStats(
            calls=0,
            batches=0,
            failed_batches=0,
            skipped_batches=0,
            retries=0,
            mismatched_batches=0,
            input_tokens=0,
            output_tokens=0,
            estimated_cost=0.0,
        )

    @classmethod
    def from_settings(cls, provider: InferenceProvider, settings: Settings) -> BatchedInferenceClient:
        return cls(
            provider,
            batch_size=settings.batch_size,
            max_concurrent_batches=settings.max_concurrent_batches,
            request_timeout=settings.request_timeout_seconds,
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay_seconds,
            cost_limit=settings.cost_limit,
        )

    @property
    def estimated_cost(self) -> float:
        return float(self.stats.get("estimated_cost"))

    @property
    def job_cost(self) -> float:
        """Spend since the current identify_all() started."""
        return self.estimated_cost - self._job_cost_start

    def cost_limit_reached(self) -> bool:
        return self.cost_limit is not None and self.job_cost >= self.cost_limit

    def concurrency_for(self, total_rows: int) -> int:
        """In-flight batch limit for a job: tiered by size, never above the ceiling."""
        tier = CONCURRENCY_TIERS[-1][1]
        for upper_bound, limit in CONCURRENCY_TIERS:
            if total_rows <= upper_bound:
                tier = limit
                break
        return max(1, min(tier, self.max_concurrent_batches))

    @staticmethod
    def make_batches(indices: Iterable[int], size: int) -> list[list[int]]:
        items = list(indices)
        return [items[i : i + size] for i in range(0, len(items), size)]

    async def identify_all(
        self,
        queries: Sequence[EntityQuery],
        on_batch_complete: BatchCallback | None = None,
        total_rows: int | None = None,
    ) -> list[RowOutcome]:
        """
        Identify every query, one outcome per query in input order.

        Args:
            queries: Rows to identify
            on_batch_complete: Called with (indices, outcomes) as each batch
                               settles; may be a coroutine function
            total_rows: Job size used to pick the concurrency tier
                        (default: len(queries))
        """
        queries = list(queries)
        if not queries:
            return []

        self._cost_limit_logged = False
        self._job_cost_start = self.estimated_cost
        outcomes: list[RowOutcome | None] = [None] * len(queries)
        batches = self.make_batches(range(len(queries)), self.batch_size)
        concurrency = self.concurrency_for(total_rows or len(queries))
        semaphore = asyncio.Semaphore(concurrency)
        logger.info(
            f"Dispatching {len(queries):,} rows in {len(batches):,} batches "
            f"(batch size {self.batch_size}, concurrency {concurrency})"
        )

        async def run(indices: list[int]) -> None:
            async with semaphore:
                if self.cost_limit_reached():
                    batch_outcomes = self._skipped(len(indices))
                else:
                    batch_outcomes = await self.identify_batch([queries[i] for i in indices])
            for index, outcome in zip(indices, batch_outcomes):
                outcomes[index] = outcome
            if on_batch_complete is not None:
                pending = on_batch_complete(indices, batch_outcomes)
                if inspect.isawaitable(pending):
                    await pending

        # Settle all, discard individually: one failing batch never cancels its siblings
        settled = await asyncio.gather(*(run(b) for b in batches), return_exceptions=True)
        for indices, value in zip(batches, settled):
            if isinstance(value, BaseException):
                logger.error(f"Batch completion failed for rows {indices[0]}-{indices[-1]}: {value}")
                self.stats.increment("failed_batches")
                failed = self._failed(len(indices), f"Batch handling failed: {value}")
                for index, outcome in zip(indices, failed):
                    if outcomes[index] is None:
                        outcomes[index] = outcome

        return [outcome for outcome in outcomes if outcome is not None]

    async def identify_batch(self, queries: Sequence[EntityQuery]) -> list[RowOutcome]:
        """Identify one batch with a single (retried) provider call."""
        requests = [InferenceRequest(request_id=f"q{i}", query=q) for i, q in enumerate(queries)]
        self.stats.increment("batches")
        try:
            response = await self._call_with_retry(requests)
        except InferenceError as e:
            self.stats.increment("failed_batches")
            logger.error(f"Inference batch of {len(requests)} rows failed: {e}")
            return self._failed(len(requests), f"Inference failed: {e}")

        self._account(response)
        return [
            RowOutcome(result, BatchStatus.ANSWERED)
            for result in self._validate(requests, response)
        ]

    async def _call_with_retry(self, requests: list[InferenceRequest]) -> InferenceResponse:
        attempt = 0
        while True:
            self.stats.increment("calls")
            try:
                return await asyncio.wait_for(
                    self.provider.identify(requests), timeout=self.request_timeout
                )
            except Exception as e:
                error = classify_exception(e)
                if isinstance(error, FatalInferenceError):
                    raise error from e
                if attempt >= self.max_retries:
                    raise RetryableInferenceError(
                        f"gave up after {attempt + 1} attempts: {error}"
                    ) from e
                delay = self.retry_base_delay * (2**attempt)
                logger.warning(
                    f"Inference call failed ({error}); retry {attempt + 1}/{self.max_retries} "
                    f"in {delay:.1f}s"
                )
                self.stats.increment("retries")
                await self._sleep(delay)
                attempt += 1

    def _account(self, response: InferenceResponse) -> None:
        cost = self.provider.estimate_cost(response.input_tokens, response.output_tokens)
        self.stats.increment("input_tokens", response.input_tokens)
        self.stats.increment("output_tokens", response.output_tokens)
        self.stats.increment("estimated_cost", cost)

    def _validate(
        self, requests: list[InferenceRequest], response: InferenceResponse
    ) -> list[ResolutionResult]:
        """Align provider results with requests by tag, then by position; pad the rest."""
        for diagnostic in response.diagnostics:
            logger.warning(f"Inference response problem: {diagnostic}")

        expected = {request.request_id for request in requests}
        by_id: dict[str, ProviderResult] = {}
        untagged: list[tuple[int, ProviderResult]] = []
        for position, item in enumerate(response.results):
            if item.request_id is None:
                untagged.append((position, item))
            elif item.request_id not in expected:
                logger.warning(f"Ignoring inference result with unknown id {item.request_id!r}")
            elif item.request_id in by_id:
                logger.warning(f"Ignoring duplicate inference result for id {item.request_id!r}")
            else:
                by_id[item.request_id] = item

        for position, item in untagged:
            if position < len(requests) and requests[position].request_id not in by_id:
                by_id[requests[position].request_id] = item

        if len(response.results) != len(requests) or len(by_id) != len(requests):
            self.stats.increment("mismatched_batches")
            logger.warning(
                f"Inference returned {len(response.results)} results for {len(requests)} rows; "
                f"{len(requests) - len(by_id)} padded as {UNKNOWN_COMPANY}"
            )

        results = []
        for request in requests:
            item = by_id.get(request.request_id)
            if item is None:
                results.append(
                    ResolutionResult.unknown("Missing from response", ResolutionMethod.INFERENCE)
                )
            else:
                results.append(self._to_result(item))
        return results

    @staticmethod
    def _to_result(item: ProviderResult) -> ResolutionResult:
        company = (item.company or "").strip()
        confidence = normalize_confidence(item.confidence)
        if not company or company.lower() == UNKNOWN_COMPANY.lower() or confidence == 0.0:
            return ResolutionResult.unknown(
                item.reasoning or "Provider could not identify the company",
                ResolutionMethod.INFERENCE,
            )
        parent = item.parent_company if item.parent_company != company else None
        return ResolutionResult(
            company=company,
            parent_company=parent,
            confidence=confidence,
            evidence=(item.reasoning or "Identified by inference",),
            method=ResolutionMethod.INFERENCE,
        )

    def _failed(self, count: int, reason: str) -> list[RowOutcome]:
        result = ResolutionResult.unknown(reason, ResolutionMethod.INFERENCE)
        return [RowOutcome(result, BatchStatus.FAILED) for _ in range(count)]

    def _skipped(self, count: int) -> list[RowOutcome]:
        self.stats.increment("skipped_batches")
        if not self._cost_limit_logged:
            self._cost_limit_logged = True
            logger.warning(
                f"Cost limit reached (${self.job_cost:.4f} of ${self.cost_limit:.2f}); "
                "no further batches will be dispatched"
            )
        result = ResolutionResult.unknown(
            "Cost limit reached; row not sent to inference", ResolutionMethod.INFERENCE
        )
        return [RowOutcome(result, BatchStatus.SKIPPED) for _ in range(count)]
