# conftest.py
"""
Pytest configuration and fixtures for focusrank tests.

Keeps process-wide singletons (metrics registry, retrieval config manager)
isolated between tests.
"""

import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "smoke: fast import health checks")
    config.addinivalue_line("markers", "unit: pure unit tests")


@pytest.fixture(autouse=True)
def _isolate_singletons(monkeypatch):
    """Reset module singletons and metrics/config env vars around each test."""
    from focusrank.kernel.metrics_registry import reset_metrics_registry
    from focusrank.kernel.retrieval_config import reset_retrieval_config_manager

    monkeypatch.delenv("FOCUSRANK_METRICS", raising=False)
    monkeypatch.delenv("FOCUSRANK_CONFIG", raising=False)
    reset_metrics_registry()
    reset_retrieval_config_manager()
    yield
    reset_metrics_registry()
    reset_retrieval_config_manager()
