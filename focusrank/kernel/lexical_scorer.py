"""
Lexical Scorer for focusrank

Okapi BM25 over the chunks of a single retrieval pass.

Features:
- Fixed parameters k1=1.2, b=0.75
- Per-chunk scores clamped at 0 (idf turns negative for terms present in
  more than half of the chunks; that is accepted, not reweighted)
- Deterministic keyword ranking (score desc, chunk id asc)
- Enhanced variant with position, proximity and title bonuses
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Sequence

from focusrank.kernel.text_utils import tokenize
from focusrank.kernel.types import Chunk, RankedList, ranked_list


logger = logging.getLogger(__name__)

K1 = 1.2
B = 0.75


def bm25_scores(query: str, chunks: Sequence[Chunk]) -> list[float]:
    """
    Score chunks against a query with BM25

    Args:
        query: Query text
        chunks: Chunks of the current retrieval pass

    Returns:
        One non-negative score per chunk, in input order. All zeros when
        the query tokenizes to no terms.
    """
    if not chunks:
        return []

    query_terms = tokenize(query)
    if not query_terms:
        logger.debug("BM25: query has no scorable terms")
        return [0.0] * len(chunks)

    doc_tokens = [tokenize(chunk.content) for chunk in chunks]
    term_freqs = [Counter(tokens) for tokens in doc_tokens]

    n_docs = len(chunks)
    avg_len = sum(len(tokens) for tokens in doc_tokens) / n_docs
    if avg_len == 0:
        return [0.0] * n_docs

    doc_freqs = {term: sum(1 for tf in term_freqs if tf[term] > 0) for term in set(query_terms)}

    scores = []
    for tokens, tf_map in zip(doc_tokens, term_freqs):
        doc_len = len(tokens)
        score = 0.0
        for term in query_terms:
            tf = tf_map[term]
            df = doc_freqs[term]
            if tf == 0 or df == 0:
                continue
            idf = math.log((n_docs - df + 0.5) / (df + 0.5))
            numerator = tf * (K1 + 1)
            denominator = tf + K1 * (1 - B + B * (doc_len / avg_len))
            score += idf * (numerator / denominator)
        scores.append(max(0.0, score))

    return scores


def enhanced_bm25_scores(
    query: str,
    chunks: Sequence[Chunk],
    position_weight: float = 0.1,
    proximity_weight: float = 0.1,
    title_boost: float = 1.5,
) -> list[float]:
    """
    BM25 with position, proximity and title bonuses

    - Position: each query term found adds
      position_weight * (len - first_position) / len
    - Proximity: when two or more terms occur, adds
      proximity_weight * max(0, 1 - span / len)
    - Title: short content (< 100 chars) containing ':' is multiplied by
      title_boost
    """
    base = bm25_scores(query, chunks)
    query_terms = tokenize(query)
    if not query_terms:
        return base

    enhanced = []
    for chunk, score in zip(chunks, base):
        tokens = tokenize(chunk.content)
        if tokens:
            positions = []
            for term in query_terms:
                if term in tokens:
                    first = tokens.index(term)
                    positions.append(first)
                    score += position_weight * (len(tokens) - first) / len(tokens)

            if len(query_terms) > 1 and len(positions) > 1:
                span = max(positions) - min(positions)
                score += proximity_weight * max(0.0, 1 - span / len(tokens))

        if len(chunk.content) < 100 and ":" in chunk.content:
            score *= title_boost

        enhanced.append(score)

    return enhanced


def rank_bm25(
    query: str,
    chunks: Sequence[Chunk],
    min_score: float | None = None,
    enhanced: bool = False,
) -> RankedList:
    """
    Build the keyword channel ranking

    Args:
        query: Query text
        chunks: Candidate chunks
        min_score: Keep only chunks scoring >= min_score (None keeps all)
        enhanced: Use enhanced_bm25_scores instead of plain BM25

    Returns:
        RankedList sorted by score desc, chunk id asc, with 1-based ranks
    """
    scores = enhanced_bm25_scores(query, chunks) if enhanced else bm25_scores(query, chunks)

    pairs = [
        (chunk, score)
        for chunk, score in zip(chunks, scores)
        if min_score is None or score >= min_score
    ]
    pairs.sort(key=lambda item: (-item[1], item[0].id))

    if pairs:
        logger.debug(
            f"BM25 ranked {len(pairs)} chunks, top scores: "
            f"{', '.join(f'{s:.3f}' for _, s in pairs[:3])}",
        )
    return ranked_list(pairs)
