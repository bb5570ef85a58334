"""Lightweight description similarity: normalization, term frequencies, cosine, keyword boost"""

import re
from collections import Counter
from typing import Iterable

import numpy as np


STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "to", "for", "with", "of", "in", "on", "at",
    "is", "are", "am", "be", "i", "you", "we", "they", "it", "this", "that",
})

# Study-habit keywords, stored in normalized (lower-case, punctuation-free) form
STUDY_KEYWORDS = {
    "pomodoro": 0.25,
    "flashcards": 0.2,
    "past": 0.15,           # as in "past papers"
    "papers": 0.15,
    "whiteboard": 0.15,
    "mcq": 0.15,
    "proofs": 0.15,
    "feynman": 0.15,        # Feynman technique
    "pair": 0.15,           # as in pair programming
    "programming": 0.15,
    "drills": 0.15,
    "quiz": 0.15,
    "revision": 0.15,
    "streak": 0.1,
    "gpa": 0.2,
    "goal": 0.15,
    "exam": 0.2,
    "accountability": 0.2,
    # Letter grades; "B+" normalizes to "b". "a" is a stop word.
    "b": 0.2,
    "c": 0.2,
    "d": 0.2,
    "f": 0.2,
}

KEYWORD_BOOST_CAP = 0.8

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lower-case, drop punctuation, collapse whitespace"""
    text = _NON_ALNUM.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def tokenize(text: str | None) -> list[str]:
    """Normalize text and drop stop words. None and "" give an empty list."""
    if not text:
        return []
    return [t for t in normalize(text).split(" ") if t and t not in STOP_WORDS]


def term_frequencies(tokens: Iterable[str]) -> Counter:
    return Counter(tokens)


def cosine_similarity(tf_a: Counter, tf_b: Counter) -> float:
    """
    Cosine similarity of two term-frequency vectors

    Returns:
        Similarity in [0, 1]; 0.0 when either vector is empty
    """
    if not tf_a or not tf_b:
        return 0.0

    vocabulary = sorted(set(tf_a) | set(tf_b))
    vec_a = np.array([tf_a.get(term, 0) for term in vocabulary], dtype=float)
    vec_b = np.array([tf_b.get(term, 0) for term in vocabulary], dtype=float)

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = np.dot(vec_a, vec_b) / (norm_a * norm_b)

    # Clamp to handle numerical errors
    return float(np.clip(similarity, 0.0, 1.0))


def keyword_boost(tokens_a: Iterable[str], tokens_b: Iterable[str],
                  keywords: dict[str, float] = STUDY_KEYWORDS,
                  cap: float = KEYWORD_BOOST_CAP) -> float:
    """Sum bonuses for study keywords found in either description, capped"""
    union = set(tokens_a) | set(tokens_b)
    boost = sum(keywords.get(token, 0.0) for token in union)
    return min(boost, cap)
