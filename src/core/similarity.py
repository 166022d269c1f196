"""Text similarity used for repetition detection (core domain).

The score mixes word-set Jaccard similarity (weight 0.7) with normalized
Levenshtein similarity (weight 0.3). Identical inputs score 1.0, including
two empty strings; an empty string against a non-empty one scores 0.0.
"""

from __future__ import annotations

JACCARD_WEIGHT = 0.7
LEVENSHTEIN_WEIGHT = 0.3
MIN_WORD_LENGTH = 3


def _word_set(text: str) -> set[str]:
    return {word for word in text.split() if len(word) >= MIN_WORD_LENGTH}


def jaccard_similarity(a: str, b: str) -> float:
    words_a = _word_set(a)
    words_b = _word_set(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def levenshtein_distance(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def levenshtein_similarity(a: str, b: str) -> float:
    max_length = max(len(a), len(b))
    if max_length == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_length


def similarity(a: str, b: str) -> float:
    """Return a symmetric similarity score in [0, 1]."""

    a = a.casefold()
    b = b.casefold()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return jaccard_similarity(a, b) * JACCARD_WEIGHT + levenshtein_similarity(a, b) * LEVENSHTEIN_WEIGHT
