"""Unit tests for text_utils module."""

from datetime import datetime, timedelta, timezone

import pytest

from focusrank.kernel.text_utils import (
    age_in_days,
    content_similarity,
    content_type_weight,
    estimate_tokens,
    extract_key_terms,
    half_life_decay,
    jaccard,
)


@pytest.mark.unit
def test_extract_key_terms_distinct_in_order():
    terms = extract_key_terms("Show me the Apollo release, apollo notes and the release plan")
    assert terms == ["apollo", "release", "notes", "plan"]


@pytest.mark.unit
def test_extract_key_terms_limit():
    assert extract_key_terms("alpha beta gamma delta", limit=2) == ["alpha", "beta"]


@pytest.mark.unit
def test_jaccard_empty_union_is_zero():
    assert jaccard(set(), set()) == 0.0


@pytest.mark.unit
def test_content_similarity():
    assert content_similarity("a b c", "a b c") == 1.0
    assert content_similarity("a b", "c d") == 0.0
    assert content_similarity("Apollo notes", "apollo review") == pytest.approx(1 / 3)


@pytest.mark.unit
@pytest.mark.parametrize("text,tokens", [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2), (None, 0)])
def test_estimate_tokens_rounds_up(text, tokens):
    assert estimate_tokens(text) == tokens


@pytest.mark.unit
def test_age_in_days(frozen_now):
    now = datetime.now(timezone.utc)
    assert age_in_days(now - timedelta(days=3), now) == pytest.approx(3.0)
    assert age_in_days(now + timedelta(days=1), now) == 0.0
    assert age_in_days(None, now) is None


@pytest.mark.unit
def test_age_in_days_naive_values_are_utc():
    aware_now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert age_in_days(datetime(2024, 12, 29), aware_now) == pytest.approx(3.0)
    assert age_in_days(datetime(2024, 12, 29, tzinfo=timezone.utc), datetime(2025, 1, 1)) == pytest.approx(3.0)


@pytest.mark.unit
def test_half_life_decay():
    assert half_life_decay(0, 30) == 1.0
    assert half_life_decay(30, 30) == pytest.approx(0.5)
    assert half_life_decay(60, 30) == pytest.approx(0.25)
    assert half_life_decay(10, 0) == 1.0


@pytest.mark.unit
def test_content_type_weight_prefers_exact_then_longest_key():
    weights = {"task": 1.0, "summary": 0.4, "task_summary": 0.2}
    assert content_type_weight("task_summary", weights) == 0.2
    assert content_type_weight("weekly_task_summary", weights) == 0.2
    assert content_type_weight("daily_summary", weights) == 0.4
    assert content_type_weight("generic", weights) == 0.5
    assert content_type_weight("generic", {}, default=0.3) == 0.3
