"""
Resolution orchestrator.

Drives every row through three phases:

Phase 1 (cheap, sequential): result cache, then deterministic strategies.
    Rows at or above the confidence threshold are done; the rest are queued
    for inference with their best guess kept as a floor.
Phase 2 (concurrent): queued rows (deduplicated by content key) go to the
    batched inference client. As each batch settles, confident answers are
    written back to the pattern store and every answered row is cached.
Phase 3 (single pass): batch-level learning, then rows still Unknown are
    looked up again in the pattern store, which may now know sibling
    domains learned during Phase 2.

Results are written into slots indexed by input position, so output order
always matches input order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from enum import Enum
from typing import Any

from tqdm import tqdm

from company_identity.config import Settings, get_settings
from company_identity.domain.intelligence import group_related_domains
from company_identity.entity_resolution.resolver import DeterministicResolver
from company_identity.inference.client import BatchedInferenceClient, BatchStatus, RowOutcome
from company_identity.inference.providers import InferenceProvider
from company_identity.models import EntityQuery, ResolutionResult
from company_identity.pipeline.context import ResolutionContext
from company_identity.utils.stats import ExecutionStats

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class RowState(Enum):
    """Stage that produced a row's result."""

    PENDING = "pending"
    CACHED = "cached"
    DETERMINISTIC_RESOLVED = "deterministic_resolved"
    QUEUED_FOR_INFERENCE = "queued_for_inference"
    INFERRED = "inferred"
    LEARNED_RETRY = "learned_retry"
    FINAL = "final"  # Still Unknown after every phase


class ResolutionOrchestrator:
    """
    Resolves batches of EntityQuery rows to companies.

    Usage:
        with ResolutionOrchestrator(MockInferenceProvider()) as orchestrator:
            results = orchestrator.resolve_all_sync(queries)
            print(orchestrator.get_stats())
    """

    def __init__(
        self,
        provider: InferenceProvider,
        context: ResolutionContext | None = None,
        settings: Settings | None = None,
        resolver: DeterministicResolver | None = None,
        show_progress: bool = False,
    ):
        """
        Args:
            provider: Inference backend for rows the resolver cannot settle
            context: Shared cache/store/hierarchy (default: in-memory)
            settings: Used only when no context is given
            resolver: Custom deterministic resolver (default: standard strategies)
            show_progress: Draw a tqdm bar over inference batches
        """
        if context is None:
            context = ResolutionContext.in_memory(settings or get_settings())
        self.context = context
        self.settings = self.context.settings
        self.resolver = resolver or DeterministicResolver.default(
            self.context.store,
            self.context.hierarchy,
            cache=self.context.cache,
            confidence_threshold=self.settings.confidence_threshold,
        )
        self.client = BatchedInferenceClient.from_settings(provider, self.settings)
        self.show_progress = show_progress
        self.stats = ExecutionStats(
            processed=0,
            cached_hits=0,
            deterministic_resolved=0,
            inferred=0,
            learned_retry_resolved=0,
            unknown=0,
            skipped_cost_limit=0,
        )
        self.row_states: list[RowState] = []

    def __enter__(self) -> ResolutionOrchestrator:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Persist cache and learned patterns."""
        self.context.close()

    def resolve_all_sync(
        self, queries: Iterable[EntityQuery], on_progress: ProgressCallback | None = None
    ) -> list[ResolutionResult]:
        """Blocking wrapper around resolve_all()."""
        return asyncio.run(self.resolve_all(queries, on_progress))

    async def resolve_all(
        self, queries: Iterable[EntityQuery], on_progress: ProgressCallback | None = None
    ) -> list[ResolutionResult]:
        """
        Resolve every query; one result per query, in input order.

        Args:
            queries: Rows to resolve
            on_progress: Called with (completed_rows, total_rows) as rows finish

        Returns:
            Results aligned with the input. Never raises for per-row or
            per-batch failures; those rows come back Unknown with a reason.
        """
        queries = list(queries)
        total = len(queries)
        if not queries:
            self.row_states = []
            return []

        results: list[ResolutionResult | None] = [None] * total
        states = [RowState.PENDING] * total
        self.row_states = states
        completed = 0

        def advance(count: int = 1) -> None:
            nonlocal completed
            completed += count
            if on_progress is not None:
                on_progress(completed, total)

        groups = group_related_domains(q.url for q in queries if q.url)
        logger.info(f"Resolving {total:,} rows ({len(groups):,} related domain groups)")

        pending, floors = self._phase_deterministic(queries, results, states, advance)
        skipped: set[int] = set()
        if pending:
            skipped = await self._phase_inference(
                queries, pending, floors, results, states, advance
            )

        for index, result in enumerate(results):
            if result is None:
                results[index] = ResolutionResult.unknown("Resolution did not complete")

        await self._phase_learned_retry(queries, results, states, skipped)
        return self._finish(results, states)

    def _phase_deterministic(
        self,
        queries: list[EntityQuery],
        results: list[ResolutionResult | None],
        states: list[RowState],
        advance: Callable[[int], None],
    ) -> tuple[dict[str, list[int]], dict[int, ResolutionResult]]:
        pending: dict[str, list[int]] = {}
        floors: dict[int, ResolutionResult] = {}

        for index, query in enumerate(queries):
            outcome = self.resolver.resolve(query)
            if outcome.is_final:
                results[index] = outcome.result
                if outcome.from_cache:
                    states[index] = RowState.CACHED
                    self.stats.increment("cached_hits")
                else:
                    states[index] = RowState.DETERMINISTIC_RESOLVED
                    self.stats.increment("deterministic_resolved")
                    self.context.cache.set(query, outcome.result)
                advance(1)
                continue

            states[index] = RowState.QUEUED_FOR_INFERENCE
            pending.setdefault(query.cache_key, []).append(index)
            if not outcome.result.is_unknown:
                floors[index] = outcome.result

        queued = sum(len(rows) for rows in pending.values())
        logger.info(
            f"Phase 1: {len(queries) - queued:,} rows resolved without inference, "
            f"{queued:,} queued ({len(pending):,} unique)"
        )
        return pending, floors

    async def _phase_inference(
        self,
        queries: list[EntityQuery],
        pending: dict[str, list[int]],
        floors: dict[int, ResolutionResult],
        results: list[ResolutionResult | None],
        states: list[RowState],
        advance: Callable[[int], None],
    ) -> set[int]:
        keys = list(pending)
        representatives = [queries[pending[key][0]] for key in keys]
        skipped: set[int] = set()
        batch_count = len(self.client.make_batches(range(len(keys)), self.client.batch_size))
        progress = tqdm(
            total=batch_count,
            desc="Inference batches",
            unit="batch",
            disable=not self.show_progress,
        )

        async def on_batch(positions: list[int], outcomes: list[RowOutcome]) -> None:
            write_back: list[tuple[str, ResolutionResult]] = []
            for position, outcome in zip(positions, outcomes):
                rows = pending[keys[position]]
                for row in rows:
                    results[row] = self._apply_floor(outcome, floors.get(row))
                    states[row] = RowState.INFERRED
                    if outcome.status is BatchStatus.ANSWERED:
                        self.context.cache.set(queries[row], results[row])
                    elif outcome.status is BatchStatus.SKIPPED:
                        skipped.add(row)
                        self.stats.increment("skipped_cost_limit")
                if outcome.status is BatchStatus.ANSWERED and representatives[position].url:
                    write_back.append((representatives[position].url, outcome.result))
                advance(len(rows))

            if write_back:
                await asyncio.to_thread(self._write_back, write_back)
            progress.update(1)

        try:
            await self.client.identify_all(
                representatives, on_batch_complete=on_batch, total_rows=len(queries)
            )
        finally:
            progress.close()

        client_stats = self.client.stats.to_dict()
        logger.info(
            f"Phase 2: {client_stats['batches']:,} batches, {client_stats['calls']:,} calls, "
            f"{client_stats['failed_batches']:,} failed, {client_stats['skipped_batches']:,} skipped, "
            f"estimated cost ${client_stats['estimated_cost']:.4f}"
        )
        return skipped

    def _write_back(self, pairs: list[tuple[str, ResolutionResult]]) -> None:
        store = self.context.store
        for url, result in pairs:
            store.record_resolution(url, result)

    @staticmethod
    def _apply_floor(outcome: RowOutcome, floor: ResolutionResult | None) -> ResolutionResult:
        """Keep the deterministic guess when inference did worse (but not for skipped rows)."""
        if outcome.status is BatchStatus.SKIPPED or floor is None:
            return outcome.result
        if floor.confidence > outcome.result.confidence:
            note = f"Kept deterministic guess over inference ({outcome.result.reasoning})"
            return replace(floor, evidence=floor.evidence + (note,))
        return outcome.result

    async def _phase_learned_retry(
        self,
        queries: list[EntityQuery],
        results: list[ResolutionResult],
        states: list[RowState],
        skipped: set[int],
    ) -> None:
        fresh = [i for i, state in enumerate(states) if state is not RowState.CACHED]
        if fresh:
            await asyncio.to_thread(
                self.context.store.learn_from_batch,
                [queries[i] for i in fresh],
                [results[i] for i in fresh],
            )

        unknown_rows = [
            i for i, result in enumerate(results) if result.is_unknown and i not in skipped
        ]
        if not unknown_rows:
            return

        improved = 0
        threshold = self.settings.learned_retry_threshold
        for index in unknown_rows:
            best: ResolutionResult | None = None
            for url in queries[index].urls:
                suggestion = self.context.store.suggest(url)
                if suggestion and (best is None or suggestion.confidence > best.confidence):
                    best = suggestion
            if best is None or best.confidence < threshold:
                continue
            results[index] = best.with_method(
                best.method, "Resolved by patterns learned during this job"
            )
            states[index] = RowState.LEARNED_RETRY
            self.context.cache.set(queries[index], results[index])
            improved += 1

        self.stats.increment("learned_retry_resolved", improved)
        if improved:
            logger.info(f"Phase 3: learned patterns resolved {improved:,} of {len(unknown_rows):,} unknown rows")

    def _finish(self, final: list[ResolutionResult], states: list[RowState]) -> list[ResolutionResult]:
        unknown = 0
        inferred = 0
        for index, result in enumerate(final):
            if result.is_unknown:
                unknown += 1
                states[index] = RowState.FINAL
            elif states[index] is RowState.INFERRED:
                inferred += 1

        self.stats.increment("processed", len(final))
        self.stats.increment("unknown", unknown)
        self.stats.increment("inferred", inferred)

        identified = len(final) - unknown
        logger.info(
            f"Resolved {identified:,}/{len(final):,} rows "
            f"({identified / len(final) * 100:.1f}% success rate)"
        )
        return final

    def get_stats(self) -> dict[str, Any]:
        """Cumulative counters for this orchestrator."""
        stats = self.stats.to_dict()
        client = self.client.stats.to_dict()
        return {
            "processed": int(stats["processed"]),
            "cached_hits": int(stats["cached_hits"]),
            "inference_calls": int(client["calls"]),
            "errors": int(client["failed_batches"]),
            "estimated_cost": round(float(client["estimated_cost"]), 6),
            "deterministic_resolved": int(stats["deterministic_resolved"]),
            "inferred": int(stats["inferred"]),
            "learned_retry_resolved": int(stats["learned_retry_resolved"]),
            "unknown": int(stats["unknown"]),
            "skipped_cost_limit": int(stats["skipped_cost_limit"]),
            "retries": int(client["retries"]),
            "input_tokens": int(client["input_tokens"]),
            "output_tokens": int(client["output_tokens"]),
            "cache": self.context.cache.stats(),
        }

    def export_learned_patterns(self) -> dict[str, Any]:
        """Serializable snapshot of the pattern store, for audit."""
        return self.context.store.export_snapshot()
