"""
Ranking Pipeline for focusrank

Runs one query end to end:

    filter -> BM25 keyword ranking -> RRF (vector + keyword) -> boosts /
    group diversity -> truncate -> rerank -> adaptive source selection

Configuration is validated before any scoring. Each run creates its own
candidates and returns a SelectionResult plus PipelineDiagnostics; no
state is shared across runs, so concurrent queries do not interact.
A caller may abandon a run by setting cancel_event; it is checked
between stages and inside the greedy selection loop.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from focusrank.kernel.errors import PipelineCancelledError
from focusrank.kernel.lexical_scorer import rank_bm25
from focusrank.kernel.metrics_registry import get_pipeline_metrics
from focusrank.kernel.rank_fusion import (
    FusionAnalysis,
    RankingChannel,
    analyze_fusion,
    apply_fusion_boosts,
    diversify_by_group,
    reciprocal_rank_fusion,
)
from focusrank.kernel.reranker import Reranker, RerankReport, intent_from_profile
from focusrank.kernel.retrieval_config import PipelineSettings, validate_settings
from focusrank.kernel.selection_policy import derive_policy
from focusrank.kernel.source_selector import select_sources
from focusrank.kernel.types import (
    KEYWORD_CHANNEL,
    VECTOR_CHANNEL,
    CandidateFilters,
    Chunk,
    QueryProfile,
    RankedList,
    ScoreDistribution,
    SelectionOptions,
    SelectionResult,
    parse_timestamp,
)


logger = logging.getLogger(__name__)


@dataclass
class PipelineDiagnostics:
    """Per-run observability data, returned next to the SelectionResult"""

    stage_counts: dict[str, int] = field(default_factory=dict)
    stage_timings_ms: dict[str, float] = field(default_factory=dict)
    score_distribution: ScoreDistribution = field(default_factory=ScoreDistribution)
    total_time_ms: float = 0.0
    warnings: list[str] = field(default_factory=list)
    rerank_report: RerankReport | None = None
    fusion_analysis: FusionAnalysis | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "stage_counts": dict(self.stage_counts),
            "stage_timings_ms": dict(self.stage_timings_ms),
            "score_distribution": self.score_distribution.as_dict(),
            "total_time_ms": self.total_time_ms,
            "warnings": list(self.warnings),
            "rerank_report": self.rerank_report.as_dict() if self.rerank_report else None,
            "fusion_analysis": self.fusion_analysis.as_dict() if self.fusion_analysis else None,
        }


@dataclass
class PipelineResult:
    selection: SelectionResult
    diagnostics: PipelineDiagnostics


class RankingPipeline:
    """
    End-to-end hybrid ranking

    Example usage:
        pipeline = RankingPipeline()
        result = pipeline.run(
            "how focused was I on project apollo this week",
            chunks,
            QueryProfile(domain="project", complexity="moderate"),
            vector_ranking=vector_hits,
            options=SelectionOptions(max_token_budget=3000),
        )
        for chunk in result.selection.chunks:
            print(chunk.id)
    """

    def __init__(self, settings: PipelineSettings | None = None):
        self.settings = settings or PipelineSettings()

    def _check_cancelled(self, cancel_event: threading.Event | None, stage: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Pipeline cancelled before stage '{stage}'")
            raise PipelineCancelledError(stage)

    def run(
        self,
        query: str,
        candidates: Sequence[Chunk],
        profile: QueryProfile,
        vector_ranking: RankedList | None = None,
        options: SelectionOptions | None = None,
        filters: CandidateFilters | None = None,
        now: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PipelineResult:
        """
        Rank and select sources for one query

        Args:
            query: Natural-language query
            candidates: Candidate chunks for this pass
            profile: Externally classified query profile
            vector_ranking: Optional vector-similarity ranking from the
                embedding collaborator (entries outside `candidates` are
                ignored)
            options: Caller selection options
            filters: Optional level/project/date filters
            now: Reference time for freshness (defaults to current UTC time)
            cancel_event: Set to abandon the run between stages

        Returns:
            PipelineResult with the SelectionResult and diagnostics

        Raises:
            InvalidConfigurationError: invalid settings, profile or options
            PipelineCancelledError: cancel_event was set between stages
        """
        settings = self.settings
        validate_settings(settings)
        options = options or SelectionOptions()
        policy = derive_policy(
            profile,
            options,
            settings.selector,
            freshness_half_life_days=settings.reranker.half_life_days,
        )
        now = parse_timestamp(now) or datetime.now(timezone.utc)

        metrics = get_pipeline_metrics()
        diagnostics = PipelineDiagnostics()
        run_start = time.perf_counter()

        def timed(stage: str, started: float) -> None:
            elapsed = time.perf_counter() - started
            diagnostics.stage_timings_ms[stage] = elapsed * 1000
            if metrics:
                metrics.stage_seconds.labels(stage=stage).observe(elapsed)

        diagnostics.stage_counts["input"] = len(candidates)

        # Filter
        started = time.perf_counter()
        pool = [c for c in candidates if filters is None or filters.matches(c)]
        pool_ids = {c.id for c in pool}
        diagnostics.stage_counts["filtered"] = len(pool)
        timed("filter", started)

        if not pool:
            logger.debug("No candidates after filtering")
            diagnostics.total_time_ms = (time.perf_counter() - run_start) * 1000
            if metrics:
                metrics.runs.inc()
                metrics.selected_sources.observe(0)
            return PipelineResult(
                selection=SelectionResult.empty(total_available=0),
                diagnostics=diagnostics,
            )

        # Keyword channel
        self._check_cancelled(cancel_event, "lexical")
        started = time.perf_counter()
        keyword_ranking = rank_bm25(
            query,
            pool,
            min_score=settings.lexical.min_keyword_score,
            enhanced=settings.lexical.enhanced,
        )
        diagnostics.stage_counts["lexical"] = len(keyword_ranking)
        timed("lexical", started)

        # Fusion
        self._check_cancelled(cancel_event, "fusion")
        started = time.perf_counter()
        fusion = settings.fusion
        channels = [RankingChannel(KEYWORD_CHANNEL, keyword_ranking, fusion.keyword_weight)]
        if vector_ranking is not None:
            vector_entries = [entry for entry in vector_ranking if entry.chunk.id in pool_ids]
            channels.insert(0, RankingChannel(VECTOR_CHANNEL, vector_entries, fusion.vector_weight))
        fused = reciprocal_rank_fusion(channels, k=fusion.rrf_k)

        if fusion.apply_boosts:
            fused = apply_fusion_boosts(
                fused,
                content_type_boosts=fusion.content_type_boosts,
                recency_weight=fusion.recency_weight,
                half_life_days=fusion.recency_half_life_days,
                productivity_weight=fusion.productivity_weight,
                now=now,
            )
        if fusion.diversify_groups:
            fused = diversify_by_group(fused, group_key=fusion.group_key)
        fused = fused[: fusion.max_fused_results]
        diagnostics.fusion_analysis = analyze_fusion(fused)
        diagnostics.stage_counts["fused"] = len(fused)
        timed("fusion", started)

        # Rerank
        ranked = fused
        if settings.reranker.enabled:
            self._check_cancelled(cancel_event, "rerank")
            started = time.perf_counter()
            outcome = Reranker(settings.reranker).rerank(
                query,
                fused,
                intent=intent_from_profile(profile, query),
                now=now,
            )
            ranked = outcome.results
            diagnostics.rerank_report = outcome.report
            diagnostics.score_distribution = outcome.report.score_distribution
            if outcome.report.failed_candidates:
                diagnostics.warnings.append(
                    f"scoring_failures:{outcome.report.failed_candidates}",
                )
                if metrics:
                    metrics.scoring_failures.inc(outcome.report.failed_candidates)
            timed("rerank", started)
        else:
            diagnostics.score_distribution = ScoreDistribution.from_scores(
                [c.fused_score for c in fused],
            )
        diagnostics.stage_counts["reranked"] = len(ranked)

        # Select
        self._check_cancelled(cancel_event, "select")
        started = time.perf_counter()
        selection = select_sources(
            query,
            profile,
            ranked,
            policy,
            settings=settings.selector,
            now=now,
            cancel_event=cancel_event,
        )
        diagnostics.stage_counts["qualified"] = selection.qualified
        diagnostics.stage_counts["selected"] = len(selection.result.chunks)
        diagnostics.warnings.extend(selection.warnings)
        timed("select", started)

        diagnostics.total_time_ms = (time.perf_counter() - run_start) * 1000
        if metrics:
            metrics.runs.inc()
            metrics.selected_sources.observe(len(selection.result.chunks))
            if selection.result.budget_exhausted:
                metrics.budget_exhausted.inc()

        logger.debug(
            f"Pipeline: {diagnostics.stage_counts} in {diagnostics.total_time_ms:.1f}ms",
        )
        return PipelineResult(selection=selection.result, diagnostics=diagnostics)
