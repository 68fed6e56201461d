"""
Test fixtures for focusrank test suite.

Provides time freezing, a fixed reference time for pure-function tests,
and the shared productivity corpus.
"""

import pytest
from freezegun import freeze_time

from tests.helpers import NOW, work_corpus


@pytest.fixture
def frozen_now():
    """
    Freeze time to a stable UTC timestamp for deterministic tests.

    Uses 2025-01-01T00:00:00Z as the frozen time.
    """
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def work_chunks():
    return work_corpus()
