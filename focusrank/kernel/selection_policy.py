"""
Selection Policy derivation for focusrank

Turns an externally classified QueryProfile plus caller options into the
read-only SelectionPolicy used by the source selector.

Static tables (complexity profiles, intent weight presets, domain
keyword and content-type maps) are read-only after import.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from focusrank.kernel.errors import InvalidConfigurationError
from focusrank.kernel.retrieval_config import SelectorSettings
from focusrank.kernel.types import (
    COMPLEXITY_LEVELS,
    DOMAINS,
    PRIMARY_INTENTS,
    TIME_SCOPES,
    QueryProfile,
    SelectionOptions,
    SelectionPolicy,
    SignalWeights,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComplexityProfile:
    min_sources: int
    optimal_sources: int
    max_sources: int
    token_budget: int


COMPLEXITY_PROFILES: dict[str, ComplexityProfile] = {
    "simple": ComplexityProfile(2, 3, 5, 2000),
    "moderate": ComplexityProfile(3, 5, 8, 4000),
    "complex": ComplexityProfile(5, 8, 12, 6000),
    "analytical": ComplexityProfile(8, 10, 15, 8000),
}

INTENT_WEIGHTS: dict[str, SignalWeights] = {
    "general": SignalWeights(relevance=0.4, quality=0.25, freshness=0.2, diversity=0.15),
    "count": SignalWeights(relevance=0.2, quality=0.35, freshness=0.35, diversity=0.1),
    "analysis": SignalWeights(relevance=0.2, quality=0.35, freshness=0.1, diversity=0.35),
    "comparison": SignalWeights(relevance=0.3, quality=0.2, freshness=0.1, diversity=0.4),
    "timeline": SignalWeights(relevance=0.3, quality=0.2, freshness=0.4, diversity=0.1),
}

DOMAIN_KEYWORDS: dict[str, tuple[str, ...]] = {
    "task": ("task", "todo", "assignment", "activity", "action", "complete", "finish"),
    "project": ("project", "milestone", "deliverable", "goal", "objective", "phase"),
    "productivity": ("productive", "focus", "distraction", "efficiency", "performance", "work"),
    "time": ("time", "hour", "minute", "day", "week", "month", "schedule", "calendar"),
}

DOMAIN_CONTENT_TYPE_RELEVANCE: dict[str, dict[str, float]] = {
    "task": {"task": 1.0, "project": 0.7, "session": 0.5, "document": 0.3},
    "project": {"project": 1.0, "task": 0.8, "session": 0.6, "document": 0.4},
    "productivity": {"session": 1.0, "task": 0.8, "project": 0.6, "document": 0.5},
    "time": {"session": 1.0, "task": 0.7, "project": 0.5, "document": 0.3},
}

LOW_CONFIDENCE_THRESHOLD = 0.7
UNCERTAINTY_SOURCE_MULTIPLIER = 1.3
RECENT_BIAS_FRESHNESS_BOOST = 0.15


def _validate_profile(profile: QueryProfile) -> None:
    if profile.domain not in DOMAINS:
        raise InvalidConfigurationError(f"Unknown query domain: {profile.domain!r}")
    if profile.primary_intent not in PRIMARY_INTENTS:
        raise InvalidConfigurationError(f"Unknown primary intent: {profile.primary_intent!r}")
    if profile.time_scope not in TIME_SCOPES:
        raise InvalidConfigurationError(f"Unknown time scope: {profile.time_scope!r}")
    if isinstance(profile.complexity, str):
        if profile.complexity not in COMPLEXITY_LEVELS:
            raise InvalidConfigurationError(f"Unknown complexity: {profile.complexity!r}")
    elif not 0.0 <= float(profile.complexity) <= 1.0:
        raise InvalidConfigurationError(f"Complexity must be within [0, 1], got {profile.complexity}")
    if not 0.0 <= profile.confidence <= 1.0:
        raise InvalidConfigurationError(f"Profile confidence must be within [0, 1], got {profile.confidence}")
    if profile.expected_source_count < 0:
        raise InvalidConfigurationError("expected_source_count must be non-negative")


def _validate_options(options: SelectionOptions) -> None:
    if options.max_token_budget is not None and options.max_token_budget <= 0:
        raise InvalidConfigurationError(
            f"max_token_budget must be positive, got {options.max_token_budget}",
        )
    if options.min_quality_threshold is not None and not 0.0 <= options.min_quality_threshold <= 1.0:
        raise InvalidConfigurationError(
            f"min_quality_threshold must be within [0, 1], got {options.min_quality_threshold}",
        )
    if any(weight < 0 for weight in options.content_type_weights.values()):
        raise InvalidConfigurationError("content_type_weights must be non-negative")


def derive_policy(
    profile: QueryProfile,
    options: SelectionOptions | None = None,
    settings: SelectorSettings | None = None,
    freshness_half_life_days: float = 30.0,
) -> SelectionPolicy:
    """
    Derive the selection policy for one query

    Args:
        profile: Classified query description
        options: Caller selection options
        settings: Selector settings (quality threshold default)
        freshness_half_life_days: Half-life for the freshness signal

    Returns:
        SelectionPolicy with normalized weights

    Raises:
        InvalidConfigurationError: unknown profile values or invalid options
    """
    options = options or SelectionOptions()
    settings = settings or SelectorSettings()
    _validate_profile(profile)
    _validate_options(options)

    level = profile.complexity_level
    base = COMPLEXITY_PROFILES[level]

    optimal = base.optimal_sources
    if profile.expected_source_count > 0:
        optimal = min(base.max_sources, max(base.min_sources, profile.expected_source_count))

    uncertainty_boosted = False
    if profile.confidence < LOW_CONFIDENCE_THRESHOLD:
        boosted = min(base.max_sources, math.ceil(optimal * UNCERTAINTY_SOURCE_MULTIPLIER))
        uncertainty_boosted = boosted > optimal
        optimal = boosted

    weights = INTENT_WEIGHTS.get(profile.primary_intent, INTENT_WEIGHTS["general"])
    recent_bias = options.include_recent_bias or profile.time_scope == "recent"
    if recent_bias:
        weights = SignalWeights(
            relevance=weights.relevance,
            quality=weights.quality,
            freshness=weights.freshness + RECENT_BIAS_FRESHNESS_BOOST,
            diversity=weights.diversity,
        )

    content_type_weights = dict(DOMAIN_CONTENT_TYPE_RELEVANCE.get(profile.domain, {}))
    content_type_weights.update(options.content_type_weights)

    threshold = options.min_quality_threshold
    if threshold is None:
        threshold = settings.default_min_quality_threshold

    policy = SelectionPolicy(
        weights=weights.normalized(),
        min_sources=base.min_sources,
        optimal_sources=optimal,
        max_sources=base.max_sources,
        min_quality_threshold=threshold,
        max_token_budget=(
            options.max_token_budget
            if options.max_token_budget is not None
            else base.token_budget
        ),
        content_type_weights=content_type_weights,
        complexity_level=level,
        domain=profile.domain,
        primary_intent=profile.primary_intent,
        freshness_half_life_days=freshness_half_life_days,
        prioritize_cost=options.prioritize_cost,
        recent_bias=recent_bias,
        uncertainty_boosted=uncertainty_boosted,
    )
    logger.debug(
        f"Policy: {level} complexity, {profile.domain} domain, "
        f"sources {policy.min_sources}/{policy.optimal_sources}/{policy.max_sources}, "
        f"weights={policy.weights}",
    )
    return policy
