"""
Tests for Prometheus metrics registry duplicate collector protection.

Verifies that the registry is a thread-safe singleton and that pipeline
collectors are registered once and only when FOCUSRANK_METRICS=1.
"""
import threading

import pytest


def test_metrics_registry_singleton():
    """Test that get_metrics_registry returns the same instance."""
    from focusrank.kernel.metrics_registry import get_metrics_registry

    registry1 = get_metrics_registry()
    registry2 = get_metrics_registry()

    assert registry1 is registry2, "Registry should be a singleton"


def test_metrics_registry_thread_safe():
    """Test that concurrent access to registry is thread-safe."""
    from focusrank.kernel.metrics_registry import get_metrics_registry, reset_metrics_registry

    reset_metrics_registry()

    registries = []

    def get_registry():
        reg = get_metrics_registry()
        registries.append(id(reg))

    threads = [threading.Thread(target=get_registry) for _ in range(10)]

    for t in threads:
        t.start()

    for t in threads:
        t.join()

    assert len(set(registries)) == 1, "All threads should get same registry"


def test_metrics_registry_reset():
    """Test that reset_metrics_registry clears the registry."""
    from focusrank.kernel.metrics_registry import get_metrics_registry, reset_metrics_registry

    registry1 = get_metrics_registry()
    reset_metrics_registry()
    registry2 = get_metrics_registry()

    assert registry1 is not registry2, "Reset should create new registry"


def test_pipeline_metrics_disabled_by_default():
    from focusrank.kernel.metrics_registry import get_pipeline_metrics

    assert get_pipeline_metrics() is None


def test_no_duplicate_collectors_on_double_init(monkeypatch):
    """Requesting pipeline metrics twice must not re-register collectors."""
    from focusrank.kernel.metrics_registry import get_pipeline_metrics

    monkeypatch.setenv("FOCUSRANK_METRICS", "1")

    try:
        first = get_pipeline_metrics()
        second = get_pipeline_metrics()
    except ValueError as e:
        pytest.fail(f"Duplicate collector error not prevented: {e}")

    assert first is not None
    assert first is second


def test_pipeline_metrics_reregister_after_reset(monkeypatch):
    from focusrank.kernel.metrics_registry import get_pipeline_metrics, reset_metrics_registry

    monkeypatch.setenv("FOCUSRANK_METRICS", "1")
    first = get_pipeline_metrics()
    reset_metrics_registry()
    second = get_pipeline_metrics()

    assert first is not second
