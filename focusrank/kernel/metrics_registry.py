"""
Prometheus metrics registry with duplicate collector protection.

Provides a singleton registry with thread-safe initialization so that
pipeline collectors are registered exactly once per process, plus the
pipeline's own collectors (enabled with FOCUSRANK_METRICS=1).
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram


logger = logging.getLogger(__name__)

# Module-level state
_registry: CollectorRegistry | None = None
_registry_lock = threading.Lock()
_pipeline_metrics: PipelineMetrics | None = None

STAGE_BUCKETS = (0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)
SOURCE_COUNT_BUCKETS = (0, 1, 2, 3, 5, 8, 10, 12, 15, 20)


def metrics_enabled() -> bool:
    return os.getenv("FOCUSRANK_METRICS") == "1"


def get_metrics_registry() -> CollectorRegistry:
    """
    Get or create the global metrics registry.

    Thread-safe singleton pattern ensures only one registry is created
    even if called from multiple threads.

    Returns:
        CollectorRegistry instance (shared across all callers)
    """
    global _registry

    with _registry_lock:
        if _registry is None:
            _registry = CollectorRegistry(auto_describe=True)
            logger.debug("Created Prometheus metrics registry")
        return _registry


def reset_metrics_registry() -> None:
    """
    Reset the global metrics registry and drop pipeline collectors.

    USE WITH CAUTION: This is primarily for testing.
    """
    global _registry, _pipeline_metrics

    with _registry_lock:
        _registry = None
        _pipeline_metrics = None
        logger.debug("Reset metrics registry")


@dataclass
class PipelineMetrics:
    runs: Counter
    stage_seconds: Histogram
    selected_sources: Histogram
    budget_exhausted: Counter
    scoring_failures: Counter


def get_pipeline_metrics() -> PipelineMetrics | None:
    """
    Pipeline collectors, registered once on the shared registry

    Returns:
        PipelineMetrics, or None unless FOCUSRANK_METRICS=1
    """
    global _pipeline_metrics

    if not metrics_enabled():
        return None

    registry = get_metrics_registry()
    with _registry_lock:
        if _pipeline_metrics is None:
            _pipeline_metrics = PipelineMetrics(
                runs=Counter(
                    "focusrank_pipeline_runs_total",
                    "Ranking pipeline runs",
                    registry=registry,
                ),
                stage_seconds=Histogram(
                    "focusrank_stage_seconds",
                    "Time spent per pipeline stage",
                    ["stage"],
                    buckets=STAGE_BUCKETS,
                    registry=registry,
                ),
                selected_sources=Histogram(
                    "focusrank_selected_sources",
                    "Number of sources selected per run",
                    buckets=SOURCE_COUNT_BUCKETS,
                    registry=registry,
                ),
                budget_exhausted=Counter(
                    "focusrank_budget_exhausted_total",
                    "Runs where the token budget fit no candidate",
                    registry=registry,
                ),
                scoring_failures=Counter(
                    "focusrank_scoring_failures_total",
                    "Candidates whose rerank scoring failed",
                    registry=registry,
                ),
            )
            logger.debug("Registered focusrank pipeline metrics")
        return _pipeline_metrics
