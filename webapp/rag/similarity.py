"""Cosine similarity between embedding vectors."""

from typing import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of ``a`` and ``b``, clipped to [-1, 1].

    Returns 0.0 when either vector is empty, the lengths differ, or either
    norm is zero or non-finite. A context whose embedding is missing scores
    as irrelevant instead of failing the ranking.
    """
    if a is None or b is None or len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0 or not np.isfinite(norm_a) or not np.isfinite(norm_b):
        return 0.0

    score = float(np.dot(va, vb)) / (norm_a * norm_b)
    if not np.isfinite(score):
        return 0.0
    return float(np.clip(score, -1.0, 1.0))
