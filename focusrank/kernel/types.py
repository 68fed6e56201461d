"""
Core value types for the focusrank ranking kernel

All entities are created fresh per query and discarded once the
SelectionResult is returned. Chunks are produced externally and treated
as immutable for the duration of one query.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


# Channel names used by the pipeline when fusing rankings
VECTOR_CHANNEL = "vector"
KEYWORD_CHANNEL = "keyword"

DOMAINS = ("task", "project", "productivity", "time", "general")
PRIMARY_INTENTS = ("count", "analysis", "comparison", "timeline", "relationship", "general")
COMPLEXITY_LEVELS = ("simple", "moderate", "complex", "analytical")
TIME_SCOPES = ("recent", "historical", "specific", "broad")


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an ISO timestamp (or datetime) into an aware UTC datetime

    Naive values are assumed to be UTC. Returns None for empty or
    unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class ChunkAnalytics:
    """Opaque numeric signals attached to a chunk by the summarizer"""

    duration_minutes: float | None = None
    session_count: int | None = None
    completion_rate: float | None = None
    productivity_score: float | None = None

    def completeness(self) -> float:
        """Fraction of analytics fields that are populated"""
        values = (
            self.duration_minutes,
            self.session_count,
            self.completion_rate,
            self.productivity_score,
        )
        return sum(1 for v in values if v is not None) / len(values)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ChunkAnalytics:
        data = data or {}
        return cls(
            duration_minutes=data.get("duration_minutes", data.get("duration")),
            session_count=data.get("session_count", data.get("sessions")),
            completion_rate=data.get("completion_rate"),
            productivity_score=data.get("productivity_score", data.get("productivity")),
        )


@dataclass(frozen=True)
class Chunk:
    """
    A retrievable unit of summarized text

    Fields:
        id: Unique within a retrieval pass
        content: Summary text
        content_type: Tag such as task_summary, daily_summary, generic
        created_at: Creation timestamp (aware UTC), None if unknown
        source_ids: Identifiers of the records the chunk was built from
        level: Priority tier, lower = coarser / more important
        entity_refs: Optional project/task/user identifiers
        analytics: Duration, session count, completion rate, productivity
    """

    id: str
    content: str
    content_type: str = "generic"
    created_at: datetime | None = None
    source_ids: tuple[str, ...] = ()
    level: int = 0
    entity_refs: dict[str, str] = field(default_factory=dict)
    analytics: ChunkAnalytics = field(default_factory=ChunkAnalytics)

    def __post_init__(self):
        if self.created_at is not None:
            object.__setattr__(self, "created_at", parse_timestamp(self.created_at))

    @property
    def project_id(self) -> str | None:
        return self.entity_refs.get("project_id") or self.entity_refs.get("projectId")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Chunk:
        """Build a chunk from a JSON-style record (snake_case or camelCase keys)"""
        entity_refs = data.get("entity_refs", data.get("entityRefs", data.get("entities"))) or {}
        return cls(
            id=str(data["id"]),
            content=data.get("content") or "",
            content_type=data.get("content_type", data.get("contentType")) or "generic",
            created_at=parse_timestamp(data.get("created_at", data.get("createdAt"))),
            source_ids=tuple(str(s) for s in data.get("source_ids", data.get("sourceIds", ()))),
            level=int(data.get("level", 0)),
            entity_refs={str(k): str(v) for k, v in entity_refs.items()},
            analytics=ChunkAnalytics.from_dict(data.get("analytics")),
        )


@dataclass(frozen=True)
class RankedEntry:
    """One position in a channel ranking; rank is authoritative, score advisory"""

    chunk: Chunk
    rank: int
    score: float | None = None


RankedList = list[RankedEntry]


def ranked_list(scored: list[tuple[Chunk, float | None]]) -> RankedList:
    """Assign 1-based ranks to an already ordered list of (chunk, score) pairs"""
    return [
        RankedEntry(chunk=chunk, rank=position, score=score)
        for position, (chunk, score) in enumerate(scored, start=1)
    ]


@dataclass
class ScoredCandidate:
    """
    A chunk annotated with relevance scores during one pipeline run

    Exactly one ScoredCandidate exists per chunk id within a run.
    `rank` is assigned only after the terminal sort of a stage.
    """

    chunk: Chunk
    fused_score: float = 0.0
    rerank_score: float | None = None
    confidence: float = 0.5
    rank: int = 0
    channel_ranks: dict[str, int] = field(default_factory=dict)
    channel_scores: dict[str, float | None] = field(default_factory=dict)
    breakdown: dict[str, float] = field(default_factory=dict)
    explanation: str = ""

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def vector_score(self) -> float | None:
        return self.channel_scores.get(VECTOR_CHANNEL)

    @property
    def keyword_score(self) -> float | None:
        return self.channel_scores.get(KEYWORD_CHANNEL)

    @property
    def final_score(self) -> float:
        """Rerank score when reranked, otherwise the fused score"""
        return self.rerank_score if self.rerank_score is not None else self.fused_score


@dataclass(frozen=True)
class QueryProfile:
    """
    Externally classified query description

    complexity may be continuous (0-1) or one of COMPLEXITY_LEVELS.
    """

    domain: str = "general"
    complexity: float | str = "moderate"
    primary_intent: str = "general"
    expected_source_count: int = 0
    confidence: float = 0.5
    time_scope: str = "broad"

    @property
    def complexity_level(self) -> str:
        """Categorical complexity, bucketing continuous values into quarters"""
        if isinstance(self.complexity, str):
            return self.complexity
        value = float(self.complexity)
        if value < 0.25:
            return "simple"
        if value < 0.5:
            return "moderate"
        if value < 0.75:
            return "complex"
        return "analytical"


@dataclass(frozen=True)
class SelectionOptions:
    """Caller options for one source selection"""

    prioritize_cost: bool = False
    max_token_budget: int | None = None
    min_quality_threshold: float | None = None  # None -> settings default
    include_recent_bias: bool = False
    content_type_weights: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SignalWeights:
    """Per-signal weights used to order candidates during selection"""

    relevance: float = 0.4
    quality: float = 0.25
    freshness: float = 0.2
    diversity: float = 0.15

    @property
    def total(self) -> float:
        return self.relevance + self.quality + self.freshness + self.diversity

    def normalized(self) -> SignalWeights:
        total = self.total
        if total <= 0:
            return SignalWeights(0.25, 0.25, 0.25, 0.25)
        return SignalWeights(
            relevance=self.relevance / total,
            quality=self.quality / total,
            freshness=self.freshness / total,
            diversity=self.diversity / total,
        )


@dataclass(frozen=True)
class SelectionPolicy:
    """Selection configuration derived once per query; read-only during selection"""

    weights: SignalWeights
    min_sources: int
    optimal_sources: int
    max_sources: int
    min_quality_threshold: float
    max_token_budget: int | None
    content_type_weights: dict[str, float]
    complexity_level: str = "moderate"
    domain: str = "general"
    primary_intent: str = "general"
    freshness_half_life_days: float = 30.0
    prioritize_cost: bool = False
    recent_bias: bool = False
    uncertainty_boosted: bool = False


@dataclass(frozen=True)
class SelectionResult:
    """
    Terminal output of a pipeline run

    Holds plain chunks only; scoring annotations stay inside the pipeline.
    """

    chunks: tuple[Chunk, ...]
    estimated_tokens: int
    estimated_cost: float
    strategy_tags: tuple[str, ...]
    confidence: float
    total_available: int = 0
    budget_exhausted: bool = False

    @classmethod
    def empty(cls, strategy_tags: tuple[str, ...] = (), total_available: int = 0) -> SelectionResult:
        return cls(
            chunks=(),
            estimated_tokens=0,
            estimated_cost=0.0,
            strategy_tags=strategy_tags,
            confidence=0.0,
            total_available=total_available,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunks": [
                {
                    "id": c.id,
                    "content": c.content,
                    "content_type": c.content_type,
                    "created_at": c.created_at.isoformat() if c.created_at else None,
                    "level": c.level,
                }
                for c in self.chunks
            ],
            "estimated_tokens": self.estimated_tokens,
            "estimated_cost": self.estimated_cost,
            "strategy_tags": list(self.strategy_tags),
            "confidence": self.confidence,
            "total_available": self.total_available,
            "budget_exhausted": self.budget_exhausted,
        }


@dataclass(frozen=True)
class CandidateFilters:
    """Filters applied to the raw candidate set at pipeline entry"""

    levels: tuple[int, ...] | None = None
    project_ids: tuple[str, ...] | None = None
    after: datetime | None = None
    before: datetime | None = None

    def __post_init__(self):
        object.__setattr__(self, "after", parse_timestamp(self.after))
        object.__setattr__(self, "before", parse_timestamp(self.before))

    def matches(self, chunk: Chunk) -> bool:
        if self.levels is not None and chunk.level not in self.levels:
            return False
        if self.project_ids is not None and chunk.project_id not in self.project_ids:
            return False
        if chunk.created_at is not None:
            if self.after and chunk.created_at < self.after:
                return False
            if self.before and chunk.created_at > self.before:
                return False
        return True


@dataclass
class ScoreDistribution:
    """Bucket counts: high > 0.8, medium 0.4-0.8, low < 0.4"""

    high: int = 0
    medium: int = 0
    low: int = 0

    @classmethod
    def from_scores(cls, scores: list[float]) -> ScoreDistribution:
        dist = cls()
        for score in scores:
            if score > 0.8:
                dist.high += 1
            elif score >= 0.4:
                dist.medium += 1
            else:
                dist.low += 1
        return dist

    def as_dict(self) -> dict[str, int]:
        return {"high": self.high, "medium": self.medium, "low": self.low}
