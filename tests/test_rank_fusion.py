"""
Tests for Reciprocal Rank Fusion

Verifies:
- Weighted RRF math on the canonical vector/keyword example
- Completeness: fused ids equal the union of input ids
- Invalid configuration is rejected
- Boosts, group diversity and fusion analysis
"""

import pytest

from focusrank.kernel.errors import InvalidConfigurationError
from focusrank.kernel.rank_fusion import (
    RankingChannel,
    analyze_fusion,
    apply_fusion_boosts,
    diversify_by_group,
    fuse_vector_and_keyword,
    reciprocal_rank_fusion,
)
from focusrank.kernel.types import RankedEntry, ranked_list
from tests.helpers import NOW, make_chunk


A = make_chunk("A", "alpha")
B = make_chunk("B", "beta")
C = make_chunk("C", "gamma")
D = make_chunk("D", "delta")


def ranking(*chunks):
    return ranked_list([(chunk, None) for chunk in chunks])


class TestRRF:
    """Test RRF fusion math"""

    def test_worked_example(self):
        """Vector [A,B,C] + keyword [B,C,A] with k=60 -> B > A > C"""
        fused = fuse_vector_and_keyword(ranking(A, B, C), ranking(B, C, A), k=60)

        scores = {c.id: c.fused_score for c in fused}
        assert scores["A"] == pytest.approx(1 / 61 + 1 / 63)
        assert scores["B"] == pytest.approx(1 / 62 + 1 / 61)
        assert scores["C"] == pytest.approx(1 / 63 + 1 / 62)
        assert scores["A"] == pytest.approx(0.032266, abs=1e-6)
        assert scores["B"] == pytest.approx(0.032522, abs=1e-6)
        assert scores["C"] == pytest.approx(0.032002, abs=1e-6)

        assert [c.id for c in fused] == ["B", "A", "C"]
        assert [c.rank for c in fused] == [1, 2, 3]

    def test_channel_ranks_recorded(self):
        fused = fuse_vector_and_keyword(ranking(A, B), ranking(B, A))
        by_id = {c.id: c for c in fused}
        assert by_id["A"].channel_ranks == {"vector": 1, "keyword": 2}
        assert by_id["B"].channel_ranks == {"vector": 2, "keyword": 1}

    def test_completeness(self):
        """Chunks present in only one list still appear, scored from that list alone"""
        fused = fuse_vector_and_keyword(ranking(A, B), ranking(C, D))

        assert {c.id for c in fused} == {"A", "B", "C", "D"}
        scores = {c.id: c.fused_score for c in fused}
        assert scores["A"] == pytest.approx(1 / 61)
        assert scores["C"] == pytest.approx(1 / 61)

    def test_ties_broken_by_id(self):
        fused = fuse_vector_and_keyword(ranking(B), ranking(A))
        assert [c.id for c in fused] == ["A", "B"]

    def test_weights(self):
        fused = fuse_vector_and_keyword(
            ranking(A, B),
            ranking(B, A),
            vector_weight=2.0,
            keyword_weight=1.0,
        )
        assert fused[0].id == "A"
        assert fused[0].fused_score == pytest.approx(2 / 61 + 1 / 62)

    def test_empty_input(self):
        assert reciprocal_rank_fusion([]) == []
        assert fuse_vector_and_keyword([], []) == []

    def test_duplicate_in_channel_keeps_best_rank(self):
        entries = [RankedEntry(A, 1), RankedEntry(A, 3), RankedEntry(B, 2)]
        fused = reciprocal_rank_fusion([RankingChannel("vector", entries)])
        assert len(fused) == 2
        assert fused[0].fused_score == pytest.approx(1 / 61)

    def test_one_candidate_per_id(self):
        fused = reciprocal_rank_fusion(
            [
                RankingChannel("vector", ranking(A, B, C)),
                RankingChannel("keyword", ranking(C, B, A)),
                RankingChannel("graph", ranking(B)),
            ],
        )
        ids = [c.id for c in fused]
        assert len(ids) == len(set(ids)) == 3


class TestFusionValidation:
    @pytest.mark.parametrize("k", [0, -1])
    def test_non_positive_k(self, k):
        with pytest.raises(InvalidConfigurationError):
            fuse_vector_and_keyword(ranking(A), ranking(B), k=k)

    def test_negative_weight(self):
        with pytest.raises(InvalidConfigurationError):
            fuse_vector_and_keyword(ranking(A), ranking(B), vector_weight=-1.0)

    def test_zero_weight_sum(self):
        with pytest.raises(InvalidConfigurationError):
            fuse_vector_and_keyword(ranking(A), ranking(B), vector_weight=0.0, keyword_weight=0.0)

    def test_duplicate_channel_names(self):
        with pytest.raises(InvalidConfigurationError):
            reciprocal_rank_fusion(
                [RankingChannel("vector", ranking(A)), RankingChannel("vector", ranking(B))],
            )

    def test_zero_based_rank_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            reciprocal_rank_fusion([RankingChannel("vector", [RankedEntry(A, 0)])])


class TestFusionBoosts:
    def test_content_type_boost_flips_order(self):
        report = make_chunk("r", "report", content_type="weekly_summary")
        note = make_chunk("n", "note", content_type="generic")
        fused = fuse_vector_and_keyword(ranking(note, report), ranking(note, report))

        boosted = apply_fusion_boosts(
            fused,
            content_type_boosts={"weekly_summary": 1.5},
            recency_weight=0.0,
            productivity_weight=0.0,
            now=NOW,
        )
        assert [c.id for c in boosted] == ["r", "n"]
        assert [c.rank for c in boosted] == [1, 2]

    def test_recency_boost_halves_per_half_life(self):
        fresh = make_chunk("fresh", "x", age_days=0)
        old = make_chunk("old", "y", age_days=30)
        fused = reciprocal_rank_fusion([RankingChannel("vector", ranking(old, fresh))])

        boosted = {
            c.id: c.breakdown["recency_boost"]
            for c in apply_fusion_boosts(fused, recency_weight=0.1, half_life_days=30, now=NOW)
        }
        assert boosted["fresh"] == pytest.approx(0.1)
        assert boosted["old"] == pytest.approx(0.05)

    def test_inputs_untouched(self):
        fused = fuse_vector_and_keyword(ranking(A, B), ranking(A, B))
        before = [c.fused_score for c in fused]
        apply_fusion_boosts(fused, content_type_boosts={"generic": 2.0}, now=NOW)
        assert [c.fused_score for c in fused] == before

    def test_productivity_boost(self):
        busy = make_chunk("busy", "x", productivity=1.0)
        idle = make_chunk("idle", "y")
        fused = reciprocal_rank_fusion([RankingChannel("vector", ranking(idle, busy))])
        boosted = apply_fusion_boosts(fused, recency_weight=0.0, productivity_weight=0.1, now=NOW)
        assert boosted[0].id == "busy"


class TestGroupDiversity:
    def test_interleaves_projects(self):
        chunks = [
            make_chunk("a1", "x", project="apollo"),
            make_chunk("a2", "x", project="apollo"),
            make_chunk("a3", "x", project="apollo"),
            make_chunk("h1", "x", project="hermes"),
        ]
        fused = reciprocal_rank_fusion([RankingChannel("vector", ranking(*chunks))])
        diverse = diversify_by_group(fused)

        assert [c.id for c in diverse] == ["a1", "h1", "a2"]
        assert [c.rank for c in diverse] == [1, 2, 3]

    def test_ungrouped_interleaved(self):
        chunks = [
            make_chunk("a1", "x", project="apollo"),
            make_chunk("a2", "x", project="apollo"),
            make_chunk("u1", "x"),
        ]
        fused = reciprocal_rank_fusion([RankingChannel("vector", ranking(*chunks))])
        assert [c.id for c in diversify_by_group(fused)] == ["a1", "u1", "a2"]

    def test_no_groups_keeps_order(self):
        fused = fuse_vector_and_keyword(ranking(A, B, C), [])
        assert [c.id for c in diversify_by_group(fused)] == ["A", "B", "C"]


class TestFusionAnalysis:
    def test_channel_overlap(self):
        fused = fuse_vector_and_keyword(ranking(A, B), ranking(B, C))
        analysis = analyze_fusion(fused)

        assert analysis.total_results == 3
        assert analysis.vector_only == 1
        assert analysis.keyword_only == 1
        assert analysis.hybrid == 1
        assert analysis.max_score == pytest.approx(1 / 62 + 1 / 61)
        assert analysis.min_score == pytest.approx(1 / 62)

    def test_empty(self):
        assert analyze_fusion([]).total_results == 0
