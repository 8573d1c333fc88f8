"""Similarity scoring, top-k ranking and maximal marginal relevance selection."""

from __future__ import annotations

from typing import List

import numpy as np

from docrag.errors import InvalidConfigError


def _normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def similarity_matrix(left: np.ndarray, right: np.ndarray, metric: str = "cosine") -> np.ndarray:
    """Pairwise similarity between rows of ``left`` and rows of ``right``.

    Higher is always more similar: cosine similarity, raw dot product, or
    ``1 / (1 + distance)`` for euclidean.
    """
    left = np.atleast_2d(np.asarray(left, dtype="float32"))
    right = np.atleast_2d(np.asarray(right, dtype="float32"))
    if left.shape[1] != right.shape[1]:
        raise ValueError(f"Dimension mismatch: {left.shape[1]} != {right.shape[1]}")

    if metric == "cosine":
        return _normalize(left) @ _normalize(right).T
    if metric == "dotProduct":
        return left @ right.T
    if metric == "euclidean":
        distances = np.linalg.norm(left[:, None, :] - right[None, :, :], axis=-1)
        return 1.0 / (1.0 + distances)
    raise InvalidConfigError(f"Unsupported similarity metric {metric!r}")


def top_k_indices(scores: np.ndarray, k: int) -> List[int]:
    """Indices of the ``k`` highest scores, ties resolved by lower index."""
    if k <= 0 or scores.size == 0:
        return []
    order = np.argsort(-scores, kind="stable")
    return [int(i) for i in order[:k]]


def maximal_marginal_relevance(
    query_scores: np.ndarray,
    candidate_vectors: np.ndarray,
    *,
    k: int,
    lambda_mult: float = 0.5,
    metric: str = "cosine",
) -> List[int]:
    """Greedy MMR selection over a candidate pool.

    ``query_scores[i]`` is the similarity of candidate ``i`` to the query and
    candidates must be ordered by decreasing ``query_scores`` (insertion order
    among equal scores). At each step the candidate maximising
    ``lambda_mult * sim(c, q) - (1 - lambda_mult) * max(sim(c, s))`` over the
    already selected ``s`` is picked; ties go to the higher query similarity,
    then to the earlier candidate. Returns candidate positions in selection
    order, fewer than ``k`` when the pool runs out.
    """
    if not 0.0 <= lambda_mult <= 1.0:
        raise InvalidConfigError(f"lambda_mult must be within [0, 1], got {lambda_mult}")

    pool = len(query_scores)
    if pool == 0 or k <= 0:
        return []

    pairwise = similarity_matrix(candidate_vectors, candidate_vectors, metric)
    redundancy = np.zeros(pool, dtype="float64")
    remaining = list(range(pool))
    selected: List[int] = []

    while remaining and len(selected) < k:
        best = remaining[0]
        best_score = -np.inf
        for idx in remaining:
            score = lambda_mult * float(query_scores[idx]) - (1.0 - lambda_mult) * redundancy[idx]
            if score > best_score or (
                score == best_score and query_scores[idx] > query_scores[best]
            ):
                best, best_score = idx, score

        selected.append(best)
        remaining.remove(best)
        if len(selected) == 1:
            redundancy = pairwise[best].astype("float64")
        else:
            redundancy = np.maximum(redundancy, pairwise[best])
    return selected
