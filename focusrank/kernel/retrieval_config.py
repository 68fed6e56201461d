"""
Retrieval Configuration for focusrank

Pydantic settings models for every ranking stage, plus a manager that
loads the `retrieval:` section of config/retrieval.yaml. Settings are
validated at the pipeline entry point with validate_settings(); a reload
builds a new settings object so running pipelines never see a change.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from focusrank.kernel.errors import InvalidConfigurationError


logger = logging.getLogger(__name__)


class FusionSettings(BaseModel):
    """Rank fusion stage"""

    model_config = ConfigDict(extra="forbid")

    rrf_k: float = 60
    vector_weight: float = 1.0
    keyword_weight: float = 1.0
    max_fused_results: int = 20
    content_type_boosts: dict[str, float] = Field(default_factory=dict)
    apply_boosts: bool = True
    recency_weight: float = 0.1
    recency_half_life_days: float = 30.0
    productivity_weight: float = 0.1
    diversify_groups: bool = False
    group_key: str = "project"


class LexicalSettings(BaseModel):
    """BM25 keyword channel"""

    model_config = ConfigDict(extra="forbid")

    enhanced: bool = False
    min_keyword_score: float = 0.0


class RerankerSettings(BaseModel):
    """Relevance reranker stage"""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    strategy: Literal["lexical", "semantic", "hybrid", "external-model"] = "hybrid"
    max_candidates: int = 50
    min_relevance_score: float = 0.1
    diversity_weight: float = 0.1
    half_life_days: float = 30.0
    content_type_weights: dict[str, float] = Field(default_factory=dict)
    external_model_name: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"


class SelectorSettings(BaseModel):
    """Adaptive source selector stage"""

    model_config = ConfigDict(extra="forbid")

    pricing_model: str = "gpt-4o-mini"
    # USD per input token
    token_prices: dict[str, float] = Field(
        default_factory=lambda: {
            "gpt-4o": 0.000005,
            "gpt-4o-mini": 0.00000015,
            "gpt-4": 0.00003,
        },
    )
    response_token_allowance: int = 150
    default_min_quality_threshold: float = 0.3
    relevance_mix: float = 0.6
    diversity_mix: float = 0.4


class PipelineSettings(BaseModel):
    """All stage settings for one pipeline"""

    model_config = ConfigDict(extra="forbid")

    fusion: FusionSettings = Field(default_factory=FusionSettings)
    lexical: LexicalSettings = Field(default_factory=LexicalSettings)
    reranker: RerankerSettings = Field(default_factory=RerankerSettings)
    selector: SelectorSettings = Field(default_factory=SelectorSettings)


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidConfigurationError(f"{name} must be within [0, 1], got {value}")


def validate_settings(settings: PipelineSettings) -> None:
    """
    Validate stage settings before any scoring happens

    Raises:
        InvalidConfigurationError: on the first invalid value found
    """
    fusion = settings.fusion
    if fusion.rrf_k <= 0:
        raise InvalidConfigurationError(f"fusion.rrf_k must be positive, got {fusion.rrf_k}")
    if fusion.vector_weight < 0 or fusion.keyword_weight < 0:
        raise InvalidConfigurationError("fusion channel weights must be non-negative")
    if fusion.vector_weight + fusion.keyword_weight <= 0:
        raise InvalidConfigurationError("fusion channel weights must sum to a positive value")
    if fusion.max_fused_results <= 0:
        raise InvalidConfigurationError("fusion.max_fused_results must be positive")
    if fusion.recency_half_life_days <= 0:
        raise InvalidConfigurationError("fusion.recency_half_life_days must be positive")
    if any(boost < 0 for boost in fusion.content_type_boosts.values()):
        raise InvalidConfigurationError("fusion.content_type_boosts must be non-negative")

    reranker = settings.reranker
    if reranker.max_candidates <= 0:
        raise InvalidConfigurationError("reranker.max_candidates must be positive")
    _check_unit_interval("reranker.min_relevance_score", reranker.min_relevance_score)
    if reranker.diversity_weight < 0:
        raise InvalidConfigurationError("reranker.diversity_weight must be non-negative")
    if reranker.half_life_days <= 0:
        raise InvalidConfigurationError("reranker.half_life_days must be positive")

    selector = settings.selector
    if selector.pricing_model not in selector.token_prices:
        raise InvalidConfigurationError(
            f"selector.pricing_model '{selector.pricing_model}' has no entry in token_prices",
        )
    if any(price < 0 for price in selector.token_prices.values()):
        raise InvalidConfigurationError("selector.token_prices must be non-negative")
    if selector.response_token_allowance < 0:
        raise InvalidConfigurationError("selector.response_token_allowance must be non-negative")
    _check_unit_interval(
        "selector.default_min_quality_threshold",
        selector.default_min_quality_threshold,
    )
    if selector.relevance_mix < 0 or selector.diversity_mix < 0:
        raise InvalidConfigurationError("selector mix weights must be non-negative")
    if selector.relevance_mix + selector.diversity_mix <= 0:
        raise InvalidConfigurationError("selector mix weights must sum to a positive value")


def load_settings(path: str | Path) -> PipelineSettings:
    """
    Load pipeline settings from the `retrieval:` section of a YAML file

    Raises:
        InvalidConfigurationError: unreadable file, bad YAML or invalid values
    """
    path = Path(path)
    if not path.exists():
        raise InvalidConfigurationError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidConfigurationError(f"YAML parsing failed: {e}") from e
    except OSError as e:
        raise InvalidConfigurationError(f"Failed to read file: {e}") from e

    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"Config root must be a mapping: {path}")

    try:
        settings = PipelineSettings.model_validate(data.get("retrieval") or {})
    except ValidationError as e:
        raise InvalidConfigurationError(f"Invalid retrieval config: {e}") from e

    validate_settings(settings)
    return settings


class RetrievalConfigManager:
    """
    Locates and loads config/retrieval.yaml

    Falls back to default settings when no file exists. reload() and
    check_and_reload_if_needed() replace the settings object rather than
    mutating it, so settings handed to a pipeline stay read-only.
    """

    DEFAULT_CONFIG_PATHS = [
        os.path.join("config", "retrieval.yaml"),
        os.path.join(os.path.dirname(__file__), "..", "..", "config", "retrieval.yaml"),
    ]

    def __init__(self, config_path: str | None = None) -> None:
        self.config_path = config_path or os.getenv("FOCUSRANK_CONFIG")
        self._settings = PipelineSettings()
        self._last_mtime: float | None = None
        self._load_config()

    def _find_path(self) -> str | None:
        """Find retrieval.yaml in explicit or default locations"""
        if self.config_path:
            return self.config_path
        for p in self.DEFAULT_CONFIG_PATHS:
            if os.path.exists(p):
                return p
        return None

    def _load_config(self) -> None:
        path = self._find_path()
        if not path or not os.path.exists(path):
            logger.debug("No retrieval config file found, using defaults")
            return

        self._settings = load_settings(path)
        self._last_mtime = os.path.getmtime(path)
        logger.debug(
            f"Loaded retrieval config from {path}: "
            f"rrf_k={self._settings.fusion.rrf_k}, "
            f"strategy={self._settings.reranker.strategy}, "
            f"pricing_model={self._settings.selector.pricing_model}",
        )

    def reload(self) -> None:
        """Reload settings from disk, logging what changed"""
        old = self._settings
        self._load_config()

        changes = []
        for section in ("fusion", "lexical", "reranker", "selector"):
            if getattr(old, section) != getattr(self._settings, section):
                changes.append(section)

        if changes:
            logger.info(f"Reloaded retrieval config: changed sections {', '.join(changes)}")
        else:
            logger.debug("Reloaded retrieval config (no changes)")

    def check_and_reload_if_needed(self) -> bool:
        """
        Reload when the config file's modification time changed

        Returns:
            True if a reload happened
        """
        path = self._find_path()
        if not path or not os.path.exists(path):
            return False

        current_mtime = os.path.getmtime(path)
        if self._last_mtime is None or current_mtime != self._last_mtime:
            self.reload()
            return True
        return False

    def get_settings(self) -> PipelineSettings:
        return self._settings


# Module-level singleton for shared access
_retrieval_config_manager: RetrievalConfigManager | None = None


def get_retrieval_config_manager() -> RetrievalConfigManager:
    """
    Get or create retrieval config manager singleton

    Returns:
        RetrievalConfigManager instance
    """
    global _retrieval_config_manager
    if _retrieval_config_manager is None:
        _retrieval_config_manager = RetrievalConfigManager()
    return _retrieval_config_manager


def reset_retrieval_config_manager() -> None:
    """Drop the singleton (tests)"""
    global _retrieval_config_manager
    _retrieval_config_manager = None
