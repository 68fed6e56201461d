"""
Relevance Reranker for focusrank

Recomputes a final score per candidate from several weighted signals and
re-ranks the pool. Scoring strategies are interchangeable:

- lexical: heuristic cross-encoder approximation (exact phrase, term
  coverage, early mention, length normalisation, metadata fit)
- semantic: term-overlap x coherence
- hybrid (default): semantic 35%, lexical 25%, structural 15%,
  freshness 10%, content-type 10%, position 5%
- external-model: any model exposing predict(pairs) -> scores, such as a
  sentence-transformers CrossEncoder

Per-candidate signals are independent of each other. The diversity
penalty is sequential: each candidate is compared only against picks
already accepted in the same pass.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

import numpy as np

from focusrank.kernel.errors import InvalidConfigurationError
from focusrank.kernel.retrieval_config import RerankerSettings
from focusrank.kernel.text_utils import (
    MAX_QUERY_KEY_TERMS,
    age_in_days,
    content_similarity,
    content_type_weight,
    extract_key_terms,
    half_life_decay,
)
from focusrank.kernel.types import (
    Chunk,
    QueryProfile,
    ScoreDistribution,
    ScoredCandidate,
)


logger = logging.getLogger(__name__)


class RerankStrategy(str, Enum):
    LEXICAL = "lexical"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    EXTERNAL_MODEL = "external-model"


HYBRID_WEIGHTS = {
    "semantic": 0.35,
    "lexical": 0.25,
    "structural": 0.15,
    "freshness": 0.10,
    "content_type": 0.10,
    "position": 0.05,
}

MAX_CONFIDENCE = 0.95
MAX_DIVERSITY_PENALTY = 0.5
MISSING_TIMESTAMP_FRESHNESS = 0.3
TF_SATURATION = 5


# ============================================================================
# Query intent
# ============================================================================


def classify_rerank_intent(query: str) -> str:
    """
    Classify the query into quantitative / informational / analytical /
    status / general using keyword cues
    """
    q = query.lower()
    if "how many" in q or "count" in q or "number" in q:
        return "quantitative"
    if "what" in q or "which" in q or "show" in q:
        return "informational"
    if "why" in q or "how" in q or "explain" in q:
        return "analytical"
    if "status" in q or "progress" in q or "update" in q:
        return "status"
    return "general"


_PROFILE_INTENTS = {
    "count": "quantitative",
    "analysis": "analytical",
    "comparison": "analytical",
    "timeline": "status",
    "relationship": "informational",
}


def intent_from_profile(profile: QueryProfile | None, query: str) -> str:
    """Map a classifier profile's primary intent, falling back to keyword cues"""
    if profile is not None and profile.primary_intent in _PROFILE_INTENTS:
        return _PROFILE_INTENTS[profile.primary_intent]
    return classify_rerank_intent(query)


# ============================================================================
# Signals
# ============================================================================


@dataclass(frozen=True)
class RerankContext:
    """Per-query inputs shared by all candidates of one rerank pass"""

    query: str
    query_terms: tuple[str, ...]
    intent: str
    now: datetime
    half_life_days: float = 30.0
    content_type_weights: dict[str, float] = field(default_factory=dict)

    @property
    def query_lower(self) -> str:
        return self.query.lower().strip()


@dataclass
class SignalScores:
    """Signals computed for one candidate before the diversity penalty"""

    base_score: float
    semantic: float
    lexical: float
    signals: dict[str, float] = field(default_factory=dict)
    explanation: str = ""
    scored: bool = True

    @classmethod
    def zero(cls, reason: str = "empty content") -> SignalScores:
        return cls(base_score=0.0, semantic=0.0, lexical=0.0, explanation=f"Zero: {reason}", scored=False)

    def is_finite(self) -> bool:
        values = [self.base_score, self.semantic, self.lexical, *self.signals.values()]
        return all(math.isfinite(v) for v in values)


def _term_count(term: str, words: list[str]) -> int:
    return sum(1 for word in words if term in word)


def term_overlap_score(query_terms: Sequence[str], content: str) -> float:
    """
    Jaccard over key terms blended with saturated term-frequency weighting

    0.6 * jaccard(query_terms, content_terms) + 0.4 * mean_tf, where
    mean_tf averages log(1 + tf) / log(1 + TF_SATURATION) capped at 1.
    """
    if not query_terms:
        return 0.0
    query_set = set(query_terms)
    content_set = set(extract_key_terms(content))
    union = query_set | content_set
    jaccard_score = len(query_set & content_set) / len(union) if union else 0.0

    words = content.lower().split()
    tf_total = 0.0
    for term in query_terms:
        tf = _term_count(term, words)
        tf_total += min(1.0, math.log(1 + tf) / math.log(1 + TF_SATURATION))
    tf_score = tf_total / len(query_terms)

    return jaccard_score * 0.6 + tf_score * 0.4


def _consecutive_match_ratio(query_terms: Sequence[str], content: str) -> float:
    words = content.lower().split()
    if not query_terms:
        return 0.0
    best = 0
    for i in range(max(0, len(words) - len(query_terms) + 1)):
        run = 0
        for j, term in enumerate(query_terms):
            if i + j < len(words) and term in words[i + j]:
                run += 1
            else:
                break
        best = max(best, run)
    return best / len(query_terms)


def lexical_coverage(query_terms: Sequence[str], content: str) -> float:
    """Fraction of query terms present, plus 0.2 x longest consecutive run ratio"""
    if not query_terms:
        return 0.0
    content_lower = content.lower()
    matches = sum(1 for term in query_terms if term in content_lower)
    coverage = matches / len(query_terms)
    return min(1.0, coverage + _consecutive_match_ratio(query_terms, content) * 0.2)


_INTENT_CONTENT_CUES = {
    "quantitative": ("summary", "aggregate"),
    "informational": ("project", "task"),
    "analytical": ("session", "analysis"),
    "status": ("summary", "update"),
}


def structural_fit(chunk: Chunk, intent: str) -> float:
    """Content-type fit to the query intent, plus a bonus for structured metadata"""
    score = 0.5
    cues = _INTENT_CONTENT_CUES.get(intent, ())
    if any(cue in chunk.content_type for cue in cues):
        score += 0.3
    if chunk.entity_refs or chunk.analytics.completeness() > 0:
        score += 0.1
    return min(1.0, score)


def freshness_score(chunk: Chunk, now: datetime, half_life_days: float) -> float:
    age = age_in_days(chunk.created_at, now)
    if age is None:
        return MISSING_TIMESTAMP_FRESHNESS
    return half_life_decay(age, half_life_days)


def content_type_score(chunk: Chunk, weights: dict[str, float]) -> float:
    return min(1.0, content_type_weight(chunk.content_type, weights))


def position_score(query_terms: Sequence[str], content: str, window: int | None = None) -> float:
    """
    Average earliness of each query term's first occurrence

    Args:
        window: Optional cap on the length used for normalisation
    """
    content_lower = content.lower()
    length = len(content) if window is None else min(len(content), window)
    total = 0.0
    found = 0
    for term in query_terms:
        idx = content_lower.find(term)
        if idx != -1:
            total += max(0.0, 1 - idx / max(length, 1))
            found += 1
    return total / found if found else 0.0


def _coherence_score(content: str) -> float:
    sentences = sum(1 for part in content.replace("!", ".").replace("?", ".").split(".") if part.strip())
    words = len(content.split())
    avg_sentence = words / sentences if sentences else 0.0
    length_score = max(0.0, 1 - abs(avg_sentence - 20) / 20) if avg_sentence > 0 else 0.5
    has_structure = 0.1 if any(ch in content for ch in ":-*") or any(ch.isdigit() for ch in content) else 0.0
    return min(1.0, length_score + has_structure + 0.3)


def _contextual_relevance(ctx: RerankContext, chunk: Chunk) -> float:
    score = 0.5
    q = ctx.query_lower
    content_type = chunk.content_type
    if "project" in q and "project" in content_type:
        score += 0.3
    if "task" in q and "task" in content_type:
        score += 0.3
    if "summary" in q and "summary" in content_type:
        score += 0.2
    age = age_in_days(chunk.created_at, ctx.now)
    if age is not None:
        score += max(0.0, 1 - age / 30) * 0.1
    return min(1.0, score)


# ============================================================================
# Strategies
# ============================================================================


class ScoringStrategy:
    """
    Base class for rerank scoring strategies

    Subclasses implement score() for one chunk; score_batch() isolates
    per-candidate failures (returned as None) so one bad chunk never
    aborts the batch.
    """

    name = "base"
    penalize_repeated_types = False

    def score(self, ctx: RerankContext, chunk: Chunk) -> SignalScores:
        raise NotImplementedError

    def score_batch(self, ctx: RerankContext, chunks: Sequence[Chunk]) -> list[SignalScores | None]:
        results: list[SignalScores | None] = []
        for chunk in chunks:
            try:
                if not isinstance(chunk.content, str) or not chunk.content.strip():
                    results.append(SignalScores.zero())
                    continue
                signals = self.score(ctx, chunk)
                if not signals.is_finite():
                    raise ValueError("non-finite signal")
                results.append(signals)
            except Exception as e:
                logger.warning(f"Scoring failed for chunk {chunk.id!r} ({self.name}): {e}")
                results.append(None)
        return results


class LexicalStrategy(ScoringStrategy):
    """Lexical-heavy heuristic approximation of a cross-encoder"""

    name = RerankStrategy.LEXICAL.value

    def score(self, ctx: RerankContext, chunk: Chunk) -> SignalScores:
        content = chunk.content
        content_lower = content.lower()
        terms = ctx.query_terms

        exact = 1.0 if ctx.query_lower and ctx.query_lower in content_lower else 0.0
        coverage = sum(1 for t in terms if t in content_lower) / max(len(terms), 1)
        early = 0.2 if any(0 <= content_lower.find(t) < 100 for t in terms) else 0.0
        length_norm = min(1.0, 500 / max(len(content), 100))
        relevance = min(1.0, (exact * 0.4 + coverage * 0.4 + early + length_norm * 0.2) * 0.9)

        contextual = _contextual_relevance(ctx, chunk)
        position = position_score(terms, content, window=500)
        lexical = lexical_coverage(terms, content)

        base = relevance * 0.6 + contextual * 0.3 + position * 0.1
        return SignalScores(
            base_score=base,
            semantic=relevance,
            lexical=lexical,
            signals={"relevance": relevance, "contextual": contextual, "position": position},
            explanation=(
                f"Lexical: Rel({relevance:.3f}) + Ctx({contextual:.3f}) + Pos({position:.3f})"
            ),
        )


class SemanticStrategy(ScoringStrategy):
    """Term-overlap similarity scaled by content coherence"""

    name = RerankStrategy.SEMANTIC.value
    penalize_repeated_types = True

    def score(self, ctx: RerankContext, chunk: Chunk) -> SignalScores:
        semantic = term_overlap_score(ctx.query_terms, chunk.content)
        coherence = _coherence_score(chunk.content)
        lexical = lexical_coverage(ctx.query_terms, chunk.content)
        return SignalScores(
            base_score=semantic * coherence,
            semantic=semantic,
            lexical=lexical,
            signals={"semantic": semantic, "coherence": coherence},
            explanation=f"Semantic: Sem({semantic:.3f}) x Coh({coherence:.3f})",
        )


class HybridStrategy(ScoringStrategy):
    """Weighted blend of six signals"""

    name = RerankStrategy.HYBRID.value

    def score(self, ctx: RerankContext, chunk: Chunk) -> SignalScores:
        content = chunk.content
        signals = {
            "semantic": term_overlap_score(ctx.query_terms, content),
            "lexical": lexical_coverage(ctx.query_terms, content),
            "structural": structural_fit(chunk, ctx.intent),
            "freshness": freshness_score(chunk, ctx.now, ctx.half_life_days),
            "content_type": content_type_score(chunk, ctx.content_type_weights),
            "position": position_score(ctx.query_terms, content),
        }
        base = sum(signals[name] * weight for name, weight in HYBRID_WEIGHTS.items())
        return SignalScores(
            base_score=base,
            semantic=signals["semantic"],
            lexical=signals["lexical"],
            signals=signals,
            explanation=(
                f"Hybrid: Sem({signals['semantic']:.2f}) + Lex({signals['lexical']:.2f}) "
                f"+ Struct({signals['structural']:.2f}) + Fresh({signals['freshness']:.2f}) "
                f"+ Type({signals['content_type']:.2f}) + Pos({signals['position']:.2f})"
            ),
        )


class CrossEncoderModel(Protocol):
    def predict(self, sentences: list[tuple[str, str]], **kwargs: Any) -> Any: ...


class ExternalModelStrategy(ScoringStrategy):
    """
    Delegates relevance to an external pairwise model

    The model is called once per batch; when the batch call fails each
    candidate is retried on its own so failures stay per-candidate.
    Raw outputs are squashed with a sigmoid when they look like logits.
    """

    name = RerankStrategy.EXTERNAL_MODEL.value

    def __init__(self, model: CrossEncoderModel, batch_size: int = 32, apply_sigmoid: bool = True):
        self.model = model
        self.batch_size = batch_size
        self.apply_sigmoid = apply_sigmoid

    def _predict(self, pairs: list[tuple[str, str]]) -> np.ndarray:
        raw = np.asarray(self.model.predict(pairs, batch_size=self.batch_size), dtype=float)
        raw = raw.reshape(-1)
        if self.apply_sigmoid:
            raw = 1.0 / (1.0 + np.exp(-raw))
        return np.clip(raw, 0.0, 1.0)

    def _signals(self, ctx: RerankContext, chunk: Chunk, model_score: float) -> SignalScores:
        lexical = lexical_coverage(ctx.query_terms, chunk.content)
        return SignalScores(
            base_score=model_score,
            semantic=model_score,
            lexical=lexical,
            signals={"model": model_score},
            explanation=f"Model: {model_score:.3f}",
        )

    def score(self, ctx: RerankContext, chunk: Chunk) -> SignalScores:
        return self._signals(ctx, chunk, float(self._predict([(ctx.query, chunk.content)])[0]))

    def score_batch(self, ctx: RerankContext, chunks: Sequence[Chunk]) -> list[SignalScores | None]:
        scorable = [
            i
            for i, chunk in enumerate(chunks)
            if isinstance(chunk.content, str) and chunk.content.strip()
        ]
        results: list[SignalScores | None] = [SignalScores.zero() for _ in chunks]
        if not scorable:
            return results

        try:
            scores = self._predict([(ctx.query, chunks[i].content) for i in scorable])
        except Exception as e:
            logger.error(f"External model batch scoring failed, retrying per candidate: {e}")
            for i in scorable:
                results[i] = super().score_batch(ctx, [chunks[i]])[0]
            return results

        for i, model_score in zip(scorable, scores):
            results[i] = self._signals(ctx, chunks[i], float(model_score))
        return results


def load_cross_encoder(model_name: str) -> CrossEncoderModel:
    """
    Load a sentence-transformers CrossEncoder (requires the `rerank` extra)
    """
    from sentence_transformers import CrossEncoder

    logger.info(f"Loading cross-encoder model: {model_name}")
    return CrossEncoder(model_name, device="cpu")


def build_strategy(
    strategy: RerankStrategy | str,
    model: CrossEncoderModel | None = None,
    model_name: str | None = None,
) -> ScoringStrategy:
    """Instantiate a scoring strategy by name"""
    strategy = RerankStrategy(strategy)
    if strategy is RerankStrategy.LEXICAL:
        return LexicalStrategy()
    if strategy is RerankStrategy.SEMANTIC:
        return SemanticStrategy()
    if strategy is RerankStrategy.EXTERNAL_MODEL:
        if model is None:
            if not model_name:
                raise InvalidConfigurationError("external-model strategy needs a model or model name")
            model = load_cross_encoder(model_name)
        return ExternalModelStrategy(model)
    return HybridStrategy()


# ============================================================================
# Reranker
# ============================================================================


@dataclass
class RerankReport:
    """Observability summary of one rerank pass"""

    total_candidates: int
    reranked_results: int
    processing_time_ms: float
    strategy: str
    average_confidence: float
    score_distribution: ScoreDistribution
    failed_candidates: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_candidates": self.total_candidates,
            "reranked_results": self.reranked_results,
            "processing_time_ms": self.processing_time_ms,
            "strategy": self.strategy,
            "average_confidence": self.average_confidence,
            "score_distribution": self.score_distribution.as_dict(),
            "failed_candidates": self.failed_candidates,
        }


@dataclass
class RerankOutcome:
    results: list[ScoredCandidate]
    report: RerankReport


def _as_candidate(item: ScoredCandidate | tuple[Chunk, float]) -> ScoredCandidate:
    if isinstance(item, ScoredCandidate):
        return item
    chunk, prior = item
    return ScoredCandidate(chunk=chunk, fused_score=float(prior))


def validate_reranker_settings(settings: RerankerSettings) -> None:
    if settings.max_candidates <= 0:
        raise InvalidConfigurationError("reranker.max_candidates must be positive")
    if not 0.0 <= settings.min_relevance_score <= 1.0:
        raise InvalidConfigurationError("reranker.min_relevance_score must be within [0, 1]")
    if settings.diversity_weight < 0:
        raise InvalidConfigurationError("reranker.diversity_weight must be non-negative")
    if settings.half_life_days <= 0:
        raise InvalidConfigurationError("reranker.half_life_days must be positive")


class Reranker:
    """
    Multi-signal reranker

    Example usage:
        reranker = Reranker(RerankerSettings(strategy="hybrid"))
        outcome = reranker.rerank("weekly focus on project apollo", candidates)
        for candidate in outcome.results:
            print(candidate.rank, candidate.rerank_score, candidate.explanation)
    """

    def __init__(
        self,
        settings: RerankerSettings | None = None,
        strategy: ScoringStrategy | None = None,
    ):
        self.settings = settings or RerankerSettings()
        validate_reranker_settings(self.settings)
        self.strategy = strategy or build_strategy(
            self.settings.strategy,
            model_name=self.settings.external_model_name,
        )

    def _diversity_penalty(self, chunk: Chunk, accepted: list[Chunk]) -> float:
        if not accepted:
            return 0.0
        max_similarity = max(content_similarity(chunk.content, other.content) for other in accepted)
        penalty = 2 * self.settings.diversity_weight * max_similarity
        if self.strategy.penalize_repeated_types:
            same_type = sum(1 for other in accepted if other.content_type == chunk.content_type)
            penalty += min(0.3, same_type * 0.1)
        return min(MAX_DIVERSITY_PENALTY, penalty)

    def rerank(
        self,
        query: str,
        candidates: Sequence[ScoredCandidate | tuple[Chunk, float]],
        intent: str | None = None,
        now: datetime | None = None,
    ) -> RerankOutcome:
        """
        Re-score and re-rank candidates

        Args:
            query: Query text
            candidates: ScoredCandidates or (chunk, prior_score) pairs
            intent: Rerank intent; derived from the query when None
            now: Reference time for freshness (defaults to current UTC time)

        Returns:
            RerankOutcome with candidates scoring >= min_relevance_score,
            sorted by rerank score desc (prior score desc, chunk id asc on
            ties) and ranked 1..n, plus a RerankReport
        """
        start = time.perf_counter()
        now = now or datetime.now(timezone.utc)

        pool = sorted(
            (_as_candidate(item) for item in candidates),
            key=lambda c: (-c.final_score, c.id),
        )[: self.settings.max_candidates]

        if not pool:
            return RerankOutcome(
                results=[],
                report=RerankReport(
                    total_candidates=0,
                    reranked_results=0,
                    processing_time_ms=(time.perf_counter() - start) * 1000,
                    strategy=self.strategy.name,
                    average_confidence=0.0,
                    score_distribution=ScoreDistribution(),
                ),
            )

        ctx = RerankContext(
            query=query,
            query_terms=tuple(extract_key_terms(query, limit=MAX_QUERY_KEY_TERMS)),
            intent=intent or classify_rerank_intent(query),
            now=now,
            half_life_days=self.settings.half_life_days,
            content_type_weights=self.settings.content_type_weights,
        )
        logger.debug(
            f"Reranking {len(pool)} candidates with {self.strategy.name} strategy "
            f"(intent={ctx.intent}, terms={list(ctx.query_terms)})",
        )

        batch = self.strategy.score_batch(ctx, [c.chunk for c in pool])

        failed = 0
        accepted: list[Chunk] = []
        scored: list[tuple[ScoredCandidate, float]] = []
        for candidate, signals in zip(pool, batch):
            prior = candidate.final_score
            if signals is None:
                failed += 1
                signals = SignalScores.zero("scoring failed")
                confidence = 0.0
            elif not signals.scored:
                confidence = 0.0
            else:
                confidence = min(MAX_CONFIDENCE, (signals.semantic + signals.lexical) / 2 + 0.1)

            penalty = self._diversity_penalty(candidate.chunk, accepted)
            final = max(0.0, signals.base_score * (1 - penalty))

            breakdown = dict(candidate.breakdown)
            breakdown.update(signals.signals)
            breakdown["diversity_penalty"] = penalty

            reranked = replace(
                candidate,
                rerank_score=final,
                confidence=confidence,
                channel_ranks=dict(candidate.channel_ranks),
                channel_scores=dict(candidate.channel_scores),
                breakdown=breakdown,
                explanation=signals.explanation,
            )
            if final >= self.settings.min_relevance_score:
                accepted.append(candidate.chunk)
                scored.append((reranked, prior))

        scored.sort(key=lambda item: (-item[0].rerank_score, -item[1], item[0].id))
        results = [candidate for candidate, _prior in scored]
        for position, candidate in enumerate(results, start=1):
            candidate.rank = position

        confidences = [c.confidence for c in results]
        report = RerankReport(
            total_candidates=len(pool),
            reranked_results=len(results),
            processing_time_ms=(time.perf_counter() - start) * 1000,
            strategy=self.strategy.name,
            average_confidence=float(np.mean(confidences)) if confidences else 0.0,
            score_distribution=ScoreDistribution.from_scores([c.rerank_score for c in results]),
            failed_candidates=failed,
        )

        logger.debug(
            f"Rerank complete: {report.reranked_results}/{report.total_candidates} kept, "
            f"distribution={report.score_distribution.as_dict()}, failed={failed}",
        )
        return RerankOutcome(results=results, report=report)
