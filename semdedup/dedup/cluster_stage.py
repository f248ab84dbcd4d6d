"""Stage 3 of the dedup pipeline: greedy threshold clustering.

Single-linkage greedy assignment over one in-memory batch:

    for each item i in input order, if not yet assigned:
        i becomes the canonical of a new cluster
        every later unassigned item j with cosine(i, j) >= threshold joins it

The result depends on input order (the first unassigned item always becomes a
canonical); callers keep the order stable. Items live in a flat array for the
duration of one call and clusters reference them by index. The ``assigned``
mask is local to the call.

Cost is O(n^2) comparisons of O(d) each, which is why the number of messages
per run is bounded. When every vector has the same dimension the comparisons
are vectorised with numpy over unit-normalised rows; otherwise the pairwise
cosine_similarity() is used.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.92


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return dot(a, b) / (|a| * |b|).

    Returns 0.0 instead of raising or returning NaN when either vector is empty
    or has zero magnitude, when the dimensions differ, or when the result is
    not finite.
    """
    if len(a) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(va, vb)) / (norm_a * norm_b)
    if not math.isfinite(similarity):
        return 0.0
    return similarity


@dataclass
class Cluster:
    """Indices of one cluster's members; ``members[0]`` is the canonical."""

    canonical: int
    members: list[int] = field(default_factory=list)
    similarities: list[float] = field(default_factory=list)

    @property
    def avg_similarity(self) -> float:
        """Mean similarity of non-canonical members to the canonical, or 1.0."""
        others = self.similarities[1:]
        if not others:
            return 1.0
        return sum(others) / len(others)


def _unit_rows(vectors: Sequence[Sequence[float]]) -> np.ndarray | None:
    """Stack vectors into a row-normalised matrix, or None if dimensions differ."""
    dims = {len(v) for v in vectors}
    if len(dims) != 1 or 0 in dims:
        return None

    matrix = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    finite = np.isfinite(norms) & (norms > 0)
    unit = np.zeros_like(matrix)
    unit[finite] = matrix[finite] / norms[finite, None]
    return unit


def greedy_threshold_cluster(
    vectors: Sequence[Sequence[float]],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[Cluster]:
    """Partition *vectors* into clusters by greedy single-linkage assignment.

    Args:
        vectors:   Embedding vectors in a fixed order.
        threshold: Minimum cosine similarity to the canonical for membership.

    Returns:
        Clusters in order of their canonical's index. Every index appears in
        exactly one cluster.
    """
    n = len(vectors)
    unit = _unit_rows(vectors) if n else None
    assigned = np.zeros(n, dtype=bool)
    clusters: list[Cluster] = []

    for i in range(n):
        if assigned[i]:
            continue
        assigned[i] = True
        cluster = Cluster(canonical=i, members=[i], similarities=[1.0])

        candidates = np.flatnonzero(~assigned[i + 1:]) + i + 1
        if candidates.size:
            if unit is not None:
                scores = unit[candidates] @ unit[i]
            else:
                scores = np.array(
                    [cosine_similarity(vectors[i], vectors[j]) for j in candidates]
                )
            hits = scores >= threshold
            for j, score in zip(candidates[hits], scores[hits]):
                cluster.members.append(int(j))
                cluster.similarities.append(float(score))
            assigned[candidates[hits]] = True

        clusters.append(cluster)

    logger.info("clustering: %d clusters formed from %d vectors", len(clusters), n)
    return clusters
