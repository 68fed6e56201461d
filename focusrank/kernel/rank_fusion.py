"""
Rank Fusion Engine for focusrank

Merges independently ranked channels (vector similarity, BM25) into one
ranking with Reciprocal Rank Fusion. Only rank positions are fused;
BM25 and cosine scores live on incomparable scales and are never
normalized into the fusion step.

Features:
- Weighted RRF: fused = sum_i weight_i / (k + rank_i), absent lists add 0
- Deterministic ordering (fused score desc, chunk id asc)
- Optional boosts: content-type multipliers, freshness decay, productivity
- Optional group diversity pass (interleave across projects)
- Fusion analysis for observability
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone

import numpy as np

from focusrank.kernel.errors import InvalidConfigurationError
from focusrank.kernel.text_utils import age_in_days, half_life_decay
from focusrank.kernel.types import (
    KEYWORD_CHANNEL,
    VECTOR_CHANNEL,
    Chunk,
    RankedList,
    ScoredCandidate,
)


logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60


@dataclass(frozen=True)
class RankingChannel:
    """One retrieval channel's ranking and its fusion weight"""

    name: str
    entries: RankedList
    weight: float = 1.0


def validate_fusion_params(channels: Sequence[RankingChannel], k: float) -> None:
    """
    Reject invalid fusion configuration

    Raises:
        InvalidConfigurationError: k <= 0, negative weights, weights summing
            to <= 0, duplicate channel names or ranks below 1
    """
    if k <= 0:
        raise InvalidConfigurationError(f"RRF constant k must be positive, got {k}")

    names = [channel.name for channel in channels]
    if len(names) != len(set(names)):
        raise InvalidConfigurationError(f"Duplicate channel names: {names}")

    for channel in channels:
        if channel.weight < 0:
            raise InvalidConfigurationError(
                f"Channel '{channel.name}' has negative weight {channel.weight}",
            )
        for entry in channel.entries:
            if entry.rank < 1:
                raise InvalidConfigurationError(
                    f"Channel '{channel.name}' has rank {entry.rank} for chunk "
                    f"'{entry.chunk.id}'; ranks are 1-based",
                )

    if channels and sum(channel.weight for channel in channels) <= 0:
        raise InvalidConfigurationError("Channel weights must sum to a positive value")


def _assign_ranks(candidates: list[ScoredCandidate]) -> list[ScoredCandidate]:
    for position, candidate in enumerate(candidates, start=1):
        candidate.rank = position
    return candidates


def _fusion_sort_key(candidate: ScoredCandidate) -> tuple[float, str]:
    return (-candidate.fused_score, candidate.id)


def reciprocal_rank_fusion(
    channels: Sequence[RankingChannel],
    k: float = DEFAULT_RRF_K,
) -> list[ScoredCandidate]:
    """
    Fuse channel rankings with weighted Reciprocal Rank Fusion

    Args:
        channels: Ranked channels to fuse (any number, usually vector + keyword)
        k: RRF denominator constant

    Returns:
        One ScoredCandidate per distinct chunk id across all channels,
        sorted by fused score desc then chunk id asc, ranks 1..n

    Raises:
        InvalidConfigurationError: see validate_fusion_params
    """
    validate_fusion_params(channels, k)

    chunks: dict[str, Chunk] = {}
    fused: dict[str, ScoredCandidate] = {}

    for channel in channels:
        # A chunk listed twice in one channel keeps its best rank
        best: dict[str, tuple[int, float | None]] = {}
        for entry in channel.entries:
            chunk_id = entry.chunk.id
            chunks.setdefault(chunk_id, entry.chunk)
            if chunk_id not in best or entry.rank < best[chunk_id][0]:
                best[chunk_id] = (entry.rank, entry.score)

        for chunk_id, (rank, score) in best.items():
            candidate = fused.get(chunk_id)
            if candidate is None:
                candidate = ScoredCandidate(chunk=chunks[chunk_id])
                fused[chunk_id] = candidate
            candidate.fused_score += channel.weight / (k + rank)
            candidate.channel_ranks[channel.name] = rank
            candidate.channel_scores[channel.name] = score

    results = sorted(fused.values(), key=_fusion_sort_key)

    logger.debug(
        f"RRF: fused {len(results)} chunks from "
        f"{', '.join(f'{c.name}={len(c.entries)}' for c in channels) or 'no channels'}",
    )
    return _assign_ranks(results)


def fuse_vector_and_keyword(
    vector_results: RankedList,
    keyword_results: RankedList,
    k: float = DEFAULT_RRF_K,
    vector_weight: float = 1.0,
    keyword_weight: float = 1.0,
) -> list[ScoredCandidate]:
    """Two-channel convenience wrapper around reciprocal_rank_fusion"""
    return reciprocal_rank_fusion(
        [
            RankingChannel(VECTOR_CHANNEL, vector_results, vector_weight),
            RankingChannel(KEYWORD_CHANNEL, keyword_results, keyword_weight),
        ],
        k=k,
    )


def apply_fusion_boosts(
    candidates: Sequence[ScoredCandidate],
    content_type_boosts: dict[str, float] | None = None,
    recency_weight: float = 0.1,
    half_life_days: float = 30.0,
    productivity_weight: float = 0.1,
    now: datetime | None = None,
) -> list[ScoredCandidate]:
    """
    Apply content-type, freshness and productivity boosts to fused scores

    fused' = fused * type_boost
             + recency_weight * 2^(-age_days / half_life_days)
             + productivity_weight * analytics.productivity_score

    Returns new candidates, re-sorted and re-ranked; inputs are untouched.
    """
    content_type_boosts = content_type_boosts or {}
    now = now or datetime.now(timezone.utc)

    boosted = []
    for candidate in candidates:
        chunk = candidate.chunk
        type_boost = content_type_boosts.get(chunk.content_type, 1.0)

        age = age_in_days(chunk.created_at, now)
        recency_boost = 0.0
        if age is not None and recency_weight > 0:
            recency_boost = recency_weight * half_life_decay(age, half_life_days)

        productivity_boost = 0.0
        if chunk.analytics.productivity_score is not None:
            productivity_boost = productivity_weight * chunk.analytics.productivity_score

        breakdown = dict(candidate.breakdown)
        breakdown.update(
            {
                "content_type_boost": type_boost,
                "recency_boost": recency_boost,
                "productivity_boost": productivity_boost,
            },
        )
        boosted.append(
            replace(
                candidate,
                fused_score=candidate.fused_score * type_boost + recency_boost + productivity_boost,
                channel_ranks=dict(candidate.channel_ranks),
                channel_scores=dict(candidate.channel_scores),
                breakdown=breakdown,
            ),
        )

    boosted.sort(key=_fusion_sort_key)
    return _assign_ranks(boosted)


def _group_of(chunk: Chunk, group_key: str) -> str | None:
    if group_key == "project":
        return chunk.project_id
    return chunk.entity_refs.get(group_key)


def diversify_by_group(
    candidates: Sequence[ScoredCandidate],
    group_key: str = "project",
) -> list[ScoredCandidate]:
    """
    Interleave candidates across groups to avoid one project dominating

    Groups are visited in order of first appearance; each round takes the
    next candidate of every group (while under its cap) and then the next
    ungrouped candidate. Each group is capped at max(2, n // group_count)
    picks and candidates past the cap are dropped.
    """
    groups: dict[str, list[ScoredCandidate]] = {}
    ungrouped: list[ScoredCandidate] = []
    for candidate in candidates:
        group = _group_of(candidate.chunk, group_key)
        if group:
            groups.setdefault(group, []).append(candidate)
        else:
            ungrouped.append(candidate)

    if not groups:
        return _assign_ranks([replace(c) for c in candidates])

    max_per_group = max(2, len(candidates) // len(groups))
    counts = dict.fromkeys(groups, 0)
    rounds = max([len(members) for members in groups.values()] + [len(ungrouped)])

    diverse: list[ScoredCandidate] = []
    for i in range(rounds):
        for group, members in groups.items():
            if i < len(members) and counts[group] < max_per_group:
                diverse.append(members[i])
                counts[group] += 1
        if i < len(ungrouped):
            diverse.append(ungrouped[i])

    logger.debug(
        f"Group diversity: {len(groups)} groups, max {max_per_group} per group, "
        f"{len(candidates) - len(diverse)} dropped",
    )
    return _assign_ranks([replace(c) for c in diverse])


@dataclass(frozen=True)
class FusionAnalysis:
    """Channel overlap and fused score summary for diagnostics"""

    total_results: int
    vector_only: int
    keyword_only: int
    hybrid: int
    average_score: float
    min_score: float
    max_score: float
    median_score: float

    def as_dict(self) -> dict[str, float]:
        return {
            "total_results": self.total_results,
            "vector_only": self.vector_only,
            "keyword_only": self.keyword_only,
            "hybrid": self.hybrid,
            "average_score": self.average_score,
            "min_score": self.min_score,
            "max_score": self.max_score,
            "median_score": self.median_score,
        }


def analyze_fusion(candidates: Sequence[ScoredCandidate]) -> FusionAnalysis:
    """Summarize how much each channel contributed to a fused ranking"""
    in_vector = [VECTOR_CHANNEL in c.channel_ranks for c in candidates]
    in_keyword = [KEYWORD_CHANNEL in c.channel_ranks for c in candidates]

    scores = np.array([c.fused_score for c in candidates], dtype=float)
    if scores.size == 0:
        return FusionAnalysis(0, 0, 0, 0, 0.0, 0.0, 0.0, 0.0)

    return FusionAnalysis(
        total_results=len(candidates),
        vector_only=sum(1 for v, kw in zip(in_vector, in_keyword) if v and not kw),
        keyword_only=sum(1 for v, kw in zip(in_vector, in_keyword) if kw and not v),
        hybrid=sum(1 for v, kw in zip(in_vector, in_keyword) if v and kw),
        average_score=float(scores.mean()),
        min_score=float(scores.min()),
        max_score=float(scores.max()),
        median_score=float(np.median(scores)),
    )
