"""Vector similarity helpers shared by the semantic router and the plan cache."""

from __future__ import annotations

import math
from typing import Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors, clamped to [-1, 1].

    A zero vector has similarity 0.0 with everything.

    Raises:
        ValueError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")

    dot = math.fsum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def best_similarity(vector: Sequence[float], candidates: Sequence[Sequence[float]]) -> float:
    """Highest cosine similarity between `vector` and any candidate (-1.0 if none)."""
    best = -1.0
    for candidate in candidates:
        best = max(best, cosine_similarity(vector, candidate))
    return best
