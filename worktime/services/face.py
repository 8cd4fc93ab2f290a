"""
Face verification matcher: cosine similarity against an enrolled template.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from worktime.core.config import settings


@dataclass(frozen=True)
class FaceMatch:
    score: float
    passed: bool


def as_embedding(values: Sequence[float]) -> np.ndarray:
    """Coerce *values* into a 1-D float vector."""
    return np.asarray(values, dtype=float).reshape(-1)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity over the shared prefix of *a* and *b*.

    A zero-norm vector (including an empty prefix) scores ``0.0``.
    """
    n = min(len(a), len(b))
    va = as_embedding(a[:n])
    vb = as_embedding(b[:n])
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def verify(
    enrolled: Sequence[float],
    live: Sequence[float],
    threshold: float | None = None,
) -> FaceMatch:
    """Compare a live sample against the enrolled one.

    The live vector is only read here; it is never persisted.
    """
    limit = settings.FACE_MATCH_THRESHOLD if threshold is None else threshold
    score = cosine_similarity(enrolled, live)
    return FaceMatch(score=score, passed=score >= limit)
