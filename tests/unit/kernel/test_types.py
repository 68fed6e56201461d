"""Unit tests for kernel value types."""

from datetime import datetime, timezone

import pytest

from focusrank.kernel.types import (
    CandidateFilters,
    Chunk,
    QueryProfile,
    ScoreDistribution,
    SelectionResult,
    SignalWeights,
    parse_timestamp,
)
from tests.helpers import NOW, make_chunk


@pytest.mark.unit
def test_chunk_from_camel_case_record():
    chunk = Chunk.from_dict(
        {
            "id": 7,
            "content": "Weekly summary",
            "contentType": "weekly_summary",
            "createdAt": "2024-12-30T09:00:00Z",
            "sourceIds": ["t1", "t2"],
            "level": 1,
            "entityRefs": {"projectId": "apollo"},
            "analytics": {"productivity": 0.7, "sessions": 3},
        },
    )
    assert chunk.id == "7"
    assert chunk.content_type == "weekly_summary"
    assert chunk.created_at == datetime(2024, 12, 30, 9, tzinfo=timezone.utc)
    assert chunk.source_ids == ("t1", "t2")
    assert chunk.project_id == "apollo"
    assert chunk.analytics.productivity_score == 0.7
    assert chunk.analytics.completeness() == 0.5


@pytest.mark.unit
def test_chunk_defaults():
    chunk = Chunk.from_dict({"id": "x"})
    assert chunk.content == ""
    assert chunk.content_type == "generic"
    assert chunk.created_at is None


@pytest.mark.unit
@pytest.mark.parametrize(
    "value,expected",
    [
        ("2025-01-01T00:00:00Z", NOW),
        ("2025-01-01T00:00:00", NOW),
        (NOW, NOW),
        ("", None),
        ("not a date", None),
        (None, None),
    ],
)
def test_parse_timestamp(value, expected):
    assert parse_timestamp(value) == expected


@pytest.mark.unit
def test_signal_weights_normalized():
    weights = SignalWeights(relevance=2, quality=1, freshness=1, diversity=0).normalized()
    assert weights.total == pytest.approx(1.0)
    assert weights.relevance == pytest.approx(0.5)
    assert SignalWeights(0, 0, 0, 0).normalized() == SignalWeights(0.25, 0.25, 0.25, 0.25)


@pytest.mark.unit
def test_query_profile_complexity_level():
    assert QueryProfile(complexity="complex").complexity_level == "complex"
    assert QueryProfile(complexity=0.2).complexity_level == "simple"
    assert QueryProfile(complexity=0.75).complexity_level == "analytical"


@pytest.mark.unit
def test_candidate_filters():
    chunk = make_chunk("a", "x", age_days=5, level=1, project="apollo")
    assert CandidateFilters().matches(chunk)
    assert CandidateFilters(levels=(1, 2)).matches(chunk)
    assert not CandidateFilters(levels=(0,)).matches(chunk)
    assert not CandidateFilters(project_ids=("hermes",)).matches(chunk)
    assert CandidateFilters(after=datetime(2024, 12, 1, tzinfo=timezone.utc)).matches(chunk)
    assert not CandidateFilters(after=NOW).matches(chunk)
    assert not CandidateFilters(before=datetime(2024, 12, 1, tzinfo=timezone.utc)).matches(chunk)
    assert CandidateFilters(after=datetime(2024, 12, 1)).matches(chunk)
    assert not CandidateFilters(before=datetime(2024, 12, 1)).matches(chunk)


@pytest.mark.unit
def test_chunk_naive_created_at_is_utc():
    chunk = Chunk(id="a", content="x", created_at=datetime(2024, 12, 1, 9, 30))
    assert chunk.created_at == datetime(2024, 12, 1, 9, 30, tzinfo=timezone.utc)


@pytest.mark.unit
def test_score_distribution_buckets():
    dist = ScoreDistribution.from_scores([0.95, 0.81, 0.8, 0.4, 0.39, 0.0])
    assert dist.as_dict() == {"high": 2, "medium": 2, "low": 2}


@pytest.mark.unit
def test_empty_selection_result():
    result = SelectionResult.empty(total_available=3)
    assert result.chunks == ()
    assert result.estimated_cost == 0.0
    assert result.to_dict()["total_available"] == 3
