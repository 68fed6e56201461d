"""
Tests for the adaptive source selector

Verifies:
- Selection bound: never more than min(target, qualified) sources
- Token budget respected; BudgetExhausted keeps one best-effort source
- Diversity greedy on identical content is deterministic by id
- Quality threshold, cost-priority target, token/cost estimates
"""

import threading

import pytest

from focusrank.kernel.retrieval_config import SelectorSettings
from focusrank.kernel.selection_policy import derive_policy
from focusrank.kernel.source_selector import (
    compute_target_count,
    diversity_greedy,
    quality_signal,
    relevance_signal,
    score_sources,
    select_sources,
)
from focusrank.kernel.text_utils import content_similarity, estimate_tokens
from focusrank.kernel.types import QueryProfile, SelectionOptions
from tests.helpers import NOW, make_candidate, make_chunk


WORDS = [
    "apollo", "hermes", "focus", "meeting", "review", "release", "bug", "design",
    "planning", "retro", "budget", "hiring", "launch", "roadmap", "sprint", "demo",
]


def varied_candidates(n, length=400):
    """n candidates with distinct vocabulary, each `length` characters long"""
    candidates = []
    for i in range(n):
        word = WORDS[i % len(WORDS)]
        content = (f"{word}{i} " * length)[:length]
        chunk = make_chunk(f"s{i:02d}", content, "task_summary", age_days=i)
        candidates.append(make_candidate(chunk, fused_score=1.0 / (61 + i), confidence=0.6))
    return candidates


def policy_for(expected=0, complexity="moderate", **options):
    profile = QueryProfile(
        complexity=complexity,
        expected_source_count=expected,
        confidence=0.9,
    )
    return profile, derive_policy(profile, SelectionOptions(**options))


class TestSelectionBound:
    @pytest.mark.parametrize("n", [1, 2, 3, 5, 8, 12])
    def test_never_exceeds_target_or_qualified(self, n):
        profile, policy = policy_for(min_quality_threshold=0.0)
        candidates = varied_candidates(n)
        outcome = select_sources("apollo focus", profile, candidates, policy, now=NOW)

        selected = len(outcome.result.chunks)
        assert selected <= min(outcome.target, outcome.qualified)
        assert selected == min(policy.optimal_sources, n)

    @pytest.mark.parametrize("budget", [300, 500, 800, 1200, 5000])
    def test_tokens_within_budget(self, budget):
        profile, policy = policy_for(max_token_budget=budget, min_quality_threshold=0.0)
        outcome = select_sources("apollo", profile, varied_candidates(10), policy, now=NOW)

        assert outcome.result.estimated_tokens <= budget
        assert not outcome.result.budget_exhausted
        assert len(outcome.result.chunks) >= 1

    def test_budget_truncates_prefix(self):
        profile, policy = policy_for(max_token_budget=500, min_quality_threshold=0.0)
        outcome = select_sources("apollo", profile, varied_candidates(10), policy, now=NOW)
        result = outcome.result

        # 500 - 2 query tokens - 150 allowance leaves room for three 100-token sources
        assert len(result.chunks) == 3
        assert result.estimated_tokens == 2 + 300 + 150
        assert "token-constrained" in result.strategy_tags


class TestBudgetExhausted:
    def test_keeps_single_best_effort_candidate(self):
        profile, policy = policy_for(max_token_budget=100, min_quality_threshold=0.0)
        candidates = varied_candidates(5)
        outcome = select_sources("apollo", profile, candidates, policy, now=NOW)
        result = outcome.result

        assert result.budget_exhausted
        assert len(result.chunks) == 1
        assert result.chunks[0].id == outcome.scores[0].id
        assert "budget-exhausted" in result.strategy_tags
        assert "budget_exhausted" in outcome.warnings

    def test_warning_logged(self, caplog):
        profile, policy = policy_for(max_token_budget=10, min_quality_threshold=0.0)
        with caplog.at_level("WARNING"):
            select_sources("apollo", profile, varied_candidates(2), policy, now=NOW)
        assert "Token budget" in caplog.text


class TestDiversityDedup:
    def test_identical_content_selects_target_by_id(self):
        chunks = [make_chunk(f"d{i}", "apollo focus session notes") for i in range(10)]
        candidates = [make_candidate(c, fused_score=0.5, confidence=0.6) for c in chunks]
        profile, policy = policy_for(expected=3, complexity="simple", min_quality_threshold=0.0)

        outcome = select_sources("apollo", profile, candidates, policy, now=NOW)
        picked = outcome.result.chunks

        assert outcome.target == 3
        assert [c.id for c in picked] == ["d0", "d1", "d2"]
        for i, chunk in enumerate(picked[1:], start=1):
            max_similarity = max(content_similarity(chunk.content, c.content) for c in picked[:i])
            assert 1 - max_similarity == 0

    def test_greedy_prefers_novel_content(self):
        chunks = [
            make_chunk("a", "apollo release notes drafted"),
            make_chunk("b", "apollo release notes drafted"),
            make_chunk("c", "hermes migration planning"),
        ]
        candidates = [make_candidate(c, fused_score=0.5) for c in chunks]
        _, policy = policy_for(min_quality_threshold=0.0)
        pool = score_sources(candidates, policy, NOW)

        picks = diversity_greedy(pool, 2)
        assert [p.id for p in picks] == ["a", "c"]

    def test_cancel_returns_first_pick(self):
        _, policy = policy_for(min_quality_threshold=0.0)
        pool = score_sources(varied_candidates(6), policy, NOW)
        cancel = threading.Event()
        cancel.set()

        picks = diversity_greedy(pool, 5, cancel_event=cancel)
        assert [p.id for p in picks] == [pool[0].id]

    def test_zero_target(self):
        _, policy = policy_for()
        pool = score_sources(varied_candidates(3), policy, NOW)
        assert diversity_greedy(pool, 0) == []


class TestTargetCount:
    def test_optimal_when_enough_qualified(self):
        _, policy = policy_for()
        assert compute_target_count(policy, 20) == policy.optimal_sources

    def test_reduced_when_few_qualified(self):
        _, policy = policy_for()
        assert compute_target_count(policy, 2) == 2

    def test_prioritize_cost(self):
        _, policy = policy_for(prioritize_cost=True)
        assert compute_target_count(policy, 20) == 4

    def test_prioritize_cost_not_below_min(self):
        _, policy = policy_for(complexity="simple", prioritize_cost=True)
        assert compute_target_count(policy, 20) == 3
        _, policy = policy_for(complexity="simple", expected=2, prioritize_cost=True)
        assert compute_target_count(policy, 20) == 2


class TestSelectResult:
    def test_no_candidates(self):
        profile, policy = policy_for()
        result = select_sources("apollo", profile, [], policy, now=NOW).result

        assert result.chunks == ()
        assert result.estimated_tokens == 0
        assert result.estimated_cost == 0.0
        assert result.confidence == 0.0

    def test_nothing_qualifies(self):
        profile, policy = policy_for(min_quality_threshold=0.99)
        result = select_sources("apollo", profile, varied_candidates(4), policy, now=NOW).result

        assert result.chunks == ()
        assert result.estimated_cost == 0.0
        assert result.total_available == 4

    def test_estimates(self):
        profile, policy = policy_for(expected=3, min_quality_threshold=0.0)
        settings = SelectorSettings(pricing_model="gpt-4o")
        outcome = select_sources(
            "how focused was I",
            profile,
            varied_candidates(3),
            policy,
            settings=settings,
            now=NOW,
        )
        result = outcome.result

        expected_tokens = estimate_tokens("how focused was I") + 3 * 100 + 150
        assert result.estimated_tokens == expected_tokens
        assert result.estimated_cost == pytest.approx(expected_tokens * 0.000005)
        assert result.confidence == pytest.approx((0.9 + 0.6) / 2)
        assert result.strategy_tags[:2] == ("moderate-complexity", "general-domain")
        assert result.strategy_tags[-1] == "diversity-greedy"

    def test_quality_prefers_longer_content(self):
        short = make_candidate(make_chunk("s", "apollo"), confidence=0.5)
        long = make_candidate(make_chunk("l", "apollo " * 100), confidence=0.5)
        assert quality_signal(long) > quality_signal(short)

    def test_rerank_score_drives_relevance(self):
        hi = make_candidate(make_chunk("hi", "apollo notes"), rerank_score=0.9)
        lo = make_candidate(make_chunk("lo", "apollo notes"), rerank_score=0.1)
        _, policy = policy_for(min_quality_threshold=0.0)
        pool = score_sources([lo, hi], policy, NOW)
        assert [s.id for s in pool] == ["hi", "lo"]


class TestContentTypeWeights:
    def relevance(self, weights, content_type="task_summary"):
        profile = QueryProfile(domain="task", confidence=0.9)
        policy = derive_policy(profile, SelectionOptions(content_type_weights=weights))
        candidate = make_candidate(make_chunk("t", "finish the apollo task", content_type), rerank_score=0.5)
        return relevance_signal(candidate, policy, 1.0)

    def test_caller_weight_overrides_domain_default(self):
        muted = self.relevance({"task_summary": 0.0})
        boosted = self.relevance({"task_summary": 1.0})
        assert boosted - muted == pytest.approx(0.1)

    def test_domain_default_applies_without_caller_weight(self):
        assert self.relevance({}) == pytest.approx(self.relevance({"task_summary": 1.0}))

    def test_unmatched_type_uses_neutral_weight(self):
        assert self.relevance({}, content_type="generic") == pytest.approx(
            self.relevance({"session": 1.0}, content_type="generic"),
        )
