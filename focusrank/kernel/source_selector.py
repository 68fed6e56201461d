"""
Adaptive Source Selector for focusrank

Chooses the final, budgeted set of chunks handed to answer synthesis.

Steps:
1. Score every candidate on relevance, quality, freshness and diversity
   (content-type rarity), combined with the policy's weights
2. Drop candidates below the policy's quality threshold
3. Pick a target count from the policy (fewer qualified candidates lower
   it; prioritize_cost lowers it ~30%)
4. Walk candidates in score order under the token budget; at least one
   candidate is always kept (BudgetExhausted is a flag, not an error)
5. Diversity greedy: top candidate first, then maximise
   0.6 * score + 0.4 * (1 - max word-set Jaccard vs selected)

Selection is sequential and runs single-threaded per query.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from focusrank.kernel.retrieval_config import SelectorSettings
from focusrank.kernel.selection_policy import DOMAIN_KEYWORDS
from focusrank.kernel.text_utils import (
    age_in_days,
    content_type_weight,
    estimate_tokens,
    half_life_decay,
    jaccard,
    word_set,
)
from focusrank.kernel.types import (
    QueryProfile,
    ScoredCandidate,
    SelectionPolicy,
    SelectionResult,
)


logger = logging.getLogger(__name__)

QUALITY_LENGTH_SATURATION = 500
COST_REDUCTION_FACTOR = 0.7
UNKNOWN_AGE_FRESHNESS = 0.5


@dataclass
class SourceScore:
    """Per-candidate selection signals"""

    candidate: ScoredCandidate
    relevance: float
    quality: float
    freshness: float
    diversity: float = 0.0
    score: float = 0.0
    tokens: int = 0

    @property
    def id(self) -> str:
        return self.candidate.id


@dataclass
class SelectionOutcome:
    """SelectionResult plus selector diagnostics"""

    result: SelectionResult
    qualified: int = 0
    target: int = 0
    scores: list[SourceScore] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _base_relevance(candidate: ScoredCandidate, max_fused: float) -> float:
    if candidate.rerank_score is not None:
        return min(1.0, max(0.0, candidate.rerank_score))
    if max_fused <= 0:
        return 0.0
    return min(1.0, max(0.0, candidate.fused_score / max_fused))


def relevance_signal(candidate: ScoredCandidate, policy: SelectionPolicy, max_fused: float) -> float:
    """
    Blend the pipeline's relevance with domain keyword coverage and the
    content-type weight for the query domain
    """
    base = _base_relevance(candidate, max_fused)
    ctw = min(1.0, content_type_weight(candidate.chunk.content_type, policy.content_type_weights))

    keywords = DOMAIN_KEYWORDS.get(policy.domain)
    if not keywords:
        return base * 0.9 + ctw * 0.1

    content_lower = candidate.chunk.content.lower()
    coverage = sum(1 for kw in keywords if kw in content_lower) / len(keywords)
    return base * 0.7 + coverage * 0.2 + ctw * 0.1


def quality_signal(candidate: ScoredCandidate) -> float:
    """Content quality: length, analytics completeness/productivity and confidence"""
    chunk = candidate.chunk
    length_score = min(1.0, len(chunk.content) / QUALITY_LENGTH_SATURATION)

    analytics = chunk.analytics
    analytics_score = analytics.completeness()
    if analytics.productivity_score is not None:
        analytics_score = (analytics_score + min(1.0, max(0.0, analytics.productivity_score))) / 2

    confidence = min(1.0, max(0.0, candidate.confidence))
    return length_score * 0.4 + analytics_score * 0.3 + confidence * 0.3


def freshness_signal(candidate: ScoredCandidate, now: datetime, half_life_days: float) -> float:
    age = age_in_days(candidate.chunk.created_at, now)
    if age is None:
        return UNKNOWN_AGE_FRESHNESS
    return half_life_decay(age, half_life_days)


def score_sources(
    candidates: Sequence[ScoredCandidate],
    policy: SelectionPolicy,
    now: datetime,
) -> list[SourceScore]:
    """
    Compute per-candidate selection signals and the weighted selection score

    The diversity signal rewards content types that are rare in the pool.
    Returned list is sorted by score desc, chunk id asc.
    """
    if not candidates:
        return []

    max_fused = max(c.fused_score for c in candidates)
    type_counts = Counter(c.chunk.content_type for c in candidates)
    weights = policy.weights

    scored = []
    for candidate in candidates:
        source = SourceScore(
            candidate=candidate,
            relevance=relevance_signal(candidate, policy, max_fused),
            quality=quality_signal(candidate),
            freshness=freshness_signal(candidate, now, policy.freshness_half_life_days),
            diversity=1.0 - (type_counts[candidate.chunk.content_type] - 1) / len(candidates),
            tokens=estimate_tokens(candidate.chunk.content),
        )
        source.score = (
            source.relevance * weights.relevance
            + source.quality * weights.quality
            + source.freshness * weights.freshness
            + source.diversity * weights.diversity
        )
        scored.append(source)

    scored.sort(key=lambda s: (-s.score, s.id))
    return scored


def compute_target_count(policy: SelectionPolicy, qualified: int) -> int:
    """Target number of sources given the policy and the qualified pool size"""
    target = policy.optimal_sources
    if qualified < target:
        target = max(policy.min_sources, qualified)
    if policy.prioritize_cost and qualified > policy.min_sources:
        target = max(policy.min_sources, math.ceil(target * COST_REDUCTION_FACTOR))
    return min(target, policy.max_sources, qualified)


def apply_token_budget(
    pool: list[SourceScore],
    source_budget: int | None,
) -> tuple[list[SourceScore], bool]:
    """
    Take the longest score-ordered prefix that fits the source token budget

    Returns:
        (kept, budget_exhausted). When nothing fits, the top candidate is
        kept alone and budget_exhausted is True.
    """
    if source_budget is None or not pool:
        return pool, False

    kept = []
    used = 0
    for source in pool:
        if used + source.tokens > source_budget:
            break
        kept.append(source)
        used += source.tokens

    if not kept:
        return pool[:1], True
    return kept, False


def diversity_greedy(
    pool: list[SourceScore],
    target: int,
    relevance_mix: float = 0.6,
    diversity_mix: float = 0.4,
    cancel_event: threading.Event | None = None,
) -> list[SourceScore]:
    """
    Greedy diversity-maximising selection

    The first pick is the top-scoring candidate. Each subsequent pick
    maximises relevance_mix * score + diversity_mix * (1 - max_similarity)
    against everything already selected; ties go to the higher score and
    then the smaller chunk id. A set cancel_event returns the picks made
    so far.
    """
    if not pool or target <= 0:
        return []

    words = {source.id: word_set(source.candidate.chunk.content) for source in pool}
    selected = [pool[0]]
    remaining = list(pool[1:])

    while remaining and len(selected) < target:
        if cancel_event is not None and cancel_event.is_set():
            logger.debug(f"Diversity selection cancelled after {len(selected)} picks")
            break

        best = None
        best_key = None
        for source in remaining:
            max_similarity = max(jaccard(words[source.id], words[s.id]) for s in selected)
            combined = relevance_mix * source.score + diversity_mix * (1 - max_similarity)
            key = (-combined, -source.score, source.id)
            if best_key is None or key < best_key:
                best, best_key = source, key

        selected.append(best)
        remaining.remove(best)

    return selected


def _strategy_tags(policy: SelectionPolicy, budget_limited: bool, exhausted: bool) -> tuple[str, ...]:
    tags = [f"{policy.complexity_level}-complexity", f"{policy.domain}-domain"]
    if policy.prioritize_cost:
        tags.append("cost-optimized")
    if budget_limited:
        tags.append("token-constrained")
    if exhausted:
        tags.append("budget-exhausted")
    if policy.uncertainty_boosted:
        tags.append("uncertainty-boosted")
    if policy.recent_bias:
        tags.append("recency-biased")
    tags.append("diversity-greedy")
    return tuple(tags)


def select_sources(
    query: str,
    profile: QueryProfile,
    candidates: Sequence[ScoredCandidate],
    policy: SelectionPolicy,
    settings: SelectorSettings | None = None,
    now: datetime | None = None,
    cancel_event: threading.Event | None = None,
) -> SelectionOutcome:
    """
    Select the final sources for one query

    Args:
        query: Query text (counted in the token estimate)
        profile: Query profile (its confidence feeds the result confidence)
        candidates: Scored or reranked candidates
        policy: Derived selection policy
        settings: Selector settings (pricing, response allowance, greedy mix)
        now: Reference time for freshness
        cancel_event: Checked inside the greedy loop

    Returns:
        SelectionOutcome wrapping the SelectionResult
    """
    settings = settings or SelectorSettings()
    now = now or datetime.now(timezone.utc)

    if not candidates:
        logger.debug("No candidates to select from")
        return SelectionOutcome(result=SelectionResult.empty())

    scored = score_sources(candidates, policy, now)
    qualified = [s for s in scored if s.quality >= policy.min_quality_threshold]
    if not qualified:
        logger.debug(
            f"No candidates pass quality threshold {policy.min_quality_threshold} "
            f"({len(scored)} scored)",
        )
        return SelectionOutcome(
            result=SelectionResult.empty(total_available=len(candidates)),
            scores=scored,
        )

    target = compute_target_count(policy, len(qualified))
    query_tokens = estimate_tokens(query)
    warnings = []

    source_budget = None
    if policy.max_token_budget is not None:
        source_budget = policy.max_token_budget - query_tokens - settings.response_token_allowance
    pool, exhausted = apply_token_budget(qualified, source_budget)
    if exhausted:
        warnings.append("budget_exhausted")
        logger.warning(
            f"Token budget {policy.max_token_budget} too small for any candidate; "
            f"keeping best-effort candidate {pool[0].id!r}",
        )
    budget_limited = len(pool) < len(qualified)

    picks = diversity_greedy(
        pool,
        min(target, len(pool)) if not exhausted else 1,
        relevance_mix=settings.relevance_mix,
        diversity_mix=settings.diversity_mix,
        cancel_event=cancel_event,
    )

    chunks = tuple(s.candidate.chunk for s in picks)
    estimated_tokens = query_tokens + sum(s.tokens for s in picks) + settings.response_token_allowance
    price = settings.token_prices[settings.pricing_model]

    candidate_confidence = sum(s.candidate.confidence for s in picks) / len(picks) if picks else 0.0
    confidence = (profile.confidence + candidate_confidence) / 2 if picks else 0.0

    result = SelectionResult(
        chunks=chunks,
        estimated_tokens=estimated_tokens,
        estimated_cost=estimated_tokens * price,
        strategy_tags=_strategy_tags(policy, budget_limited, exhausted),
        confidence=confidence,
        total_available=len(candidates),
        budget_exhausted=exhausted,
    )

    logger.debug(
        f"Selected {len(chunks)}/{len(qualified)} qualified (target {target}), "
        f"{estimated_tokens} tokens, ${result.estimated_cost:.6f}",
    )
    return SelectionOutcome(
        result=result,
        qualified=len(qualified),
        target=target,
        scores=scored,
        warnings=warnings,
    )
