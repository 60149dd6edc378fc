"""Deterministic, symmetric string similarity over normalized text."""

from __future__ import annotations

import difflib
from enum import StrEnum

from storydedup.core.exceptions import ConfigError


class SimilarityMetric(StrEnum):
    """Supported similarity measures."""

    SEQUENCE = "sequence"
    JACCARD = "jaccard"

    @classmethod
    def parse(cls, value: str) -> SimilarityMetric:
        try:
            return cls(value)
        except ValueError as e:
            raise ConfigError(
                f"Unknown similarity metric: {value}",
                {"allowed": [m.value for m in cls]},
            ) from e


def sequence_ratio(a: str, b: str) -> float:
    """``difflib.SequenceMatcher`` ratio, made order-independent.

    The ratio can differ with argument order, so the pair is sorted first.
    """
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    first, second = sorted((a, b))
    return difflib.SequenceMatcher(None, first, second, autojunk=False).ratio()


def jaccard(a: str, b: str) -> float:
    """Word-set overlap: |A ∩ B| / |A ∪ B|."""
    words_a = set(a.split())
    words_b = set(b.split())
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def similarity(a: str, b: str, metric: SimilarityMetric = SimilarityMetric.SEQUENCE) -> float:
    """Similarity in [0, 1] between two already-normalized strings.

    Args:
        a: First normalized string.
        b: Second normalized string.
        metric: Which measure to use.

    Returns:
        1.0 for identical input, 0.0 when exactly one side is empty.
    """
    if a == b:
        return 1.0
    if metric == SimilarityMetric.JACCARD:
        return jaccard(a, b)
    return sequence_ratio(a, b)
