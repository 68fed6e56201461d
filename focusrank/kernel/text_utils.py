"""
Text helpers shared by the scorers and the source selector

Static tables (stop words) are read-only after import.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone


_PUNCTUATION = re.compile(r"[^\w\s]")

# Stop words dropped by the lexical (BM25) tokenizer
BM25_STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
        "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
        "to", "was", "will", "with", "have", "had", "this", "these", "they",
        "been", "their", "said", "each", "which", "she", "do", "how", "his",
        "or", "but", "what", "some", "we", "can", "out", "other", "were",
        "all", "any", "your", "when", "up", "use", "word", "way", "about",
        "many", "then", "them", "would", "like", "so", "her", "long",
        "make", "thing", "see", "him", "two", "more", "go", "no", "could",
        "my", "than", "first", "water", "call", "who", "oil", "sit", "now",
        "find", "down", "day", "did", "get", "come", "made", "may", "part",
    }
)

# Stop words dropped when extracting key terms for reranking
KEY_TERM_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "how", "what", "when", "where", "why", "who",
        "which", "many", "much", "some", "any", "all", "my", "me", "i", "you",
        "he", "she", "it", "we", "they", "is", "are", "was", "were", "be",
        "been", "have", "has", "had", "do", "does", "did", "will", "would",
        "could", "should", "may", "might", "can", "tell", "show", "give",
        "please",
    }
)

MAX_QUERY_KEY_TERMS = 10
CHARS_PER_TOKEN = 4


def _normalize(text: str | None) -> str:
    if not text:
        return ""
    return _PUNCTUATION.sub(" ", text.lower())


def tokenize(text: str | None) -> list[str]:
    """
    Tokenize text for BM25

    Lowercases, replaces punctuation with spaces, drops tokens shorter
    than 2 characters and BM25 stop words.
    """
    return [
        token
        for token in _normalize(text).split()
        if len(token) >= 2 and token not in BM25_STOP_WORDS
    ]


def extract_key_terms(text: str | None, limit: int | None = None) -> list[str]:
    """
    Extract distinct key terms (length > 2, not stop words) in order of appearance

    Args:
        text: Source text
        limit: Optional cap on the number of terms returned

    Returns:
        Ordered list of distinct terms
    """
    terms: list[str] = []
    seen: set[str] = set()
    for token in _normalize(text).split():
        if len(token) <= 2 or token in KEY_TERM_STOP_WORDS or token in seen:
            continue
        seen.add(token)
        terms.append(token)
        if limit is not None and len(terms) >= limit:
            break
    return terms


def word_set(text: str | None) -> set[str]:
    """Lowercased whitespace-delimited word set"""
    return set((text or "").lower().split())


def jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def content_similarity(text1: str | None, text2: str | None) -> float:
    """Word-set Jaccard similarity of two texts"""
    return jaccard(word_set(text1), word_set(text2))


def estimate_tokens(text: str | None) -> int:
    """Approximate language-model tokens: characters / 4, rounded up"""
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def age_in_days(created_at: datetime | None, now: datetime) -> float | None:
    """Age in days, clamped at 0 for future-dated items; None when unknown"""
    if created_at is None:
        return None
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max(0.0, (now - created_at).total_seconds() / 86400.0)


def half_life_decay(age_days: float, half_life_days: float) -> float:
    """Exponential decay 2^(-age / half_life); 1.0 when half-life is disabled"""
    if half_life_days <= 0:
        return 1.0
    return 2 ** (-(age_days / half_life_days))


def content_type_weight(content_type: str, weights: dict[str, float], default: float = 0.5) -> float:
    """
    Weight for a content type: exact key first, else the longest key that
    occurs in the content type, else `default`
    """
    if content_type in weights:
        return weights[content_type]
    matches = [key for key in weights if key and key in content_type]
    if not matches:
        return default
    return weights[max(matches, key=lambda key: (len(key), key))]
