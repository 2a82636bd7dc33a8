"""Blended cosine / L2 similarity scoring over embedding vectors."""

from __future__ import annotations

import numpy as np

from text_vector_embeddings.models import SearchWeights, SimilarityCandidate


def blended_scores(
    query_embedding: list[float],
    embeddings: list[list[float]],
    weights: SearchWeights,
) -> np.ndarray:
    """Score each row against the query.

    score = cosine_weight * (1 - cosine_distance) + l2_weight * 1 / (1 + l2_distance)

    Returns a 1D array with one score per row, empty if there are no rows.
    """
    if not embeddings:
        return np.empty((0,))

    query = np.asarray(query_embedding, dtype=float)
    matrix = np.asarray(embeddings, dtype=float)

    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)

    # Avoid division by zero
    denominator = np.where(row_norms * query_norm == 0, 1, row_norms * query_norm)
    cosine = (matrix @ query) / denominator
    cosine = np.where(row_norms * query_norm == 0, 0.0, cosine)

    l2 = np.linalg.norm(matrix - query, axis=1)

    return weights.cosine_weight * cosine + weights.l2_weight * (1 / (1 + l2))


def rank_candidates(
    query_embedding: list[float],
    ids: list[str],
    embeddings: list[list[float]],
    threshold: float,
    top_k: int,
    weights: SearchWeights,
    exclude_id: str | None = None,
) -> list[SimilarityCandidate]:
    """Candidates scoring strictly above `threshold`, best first, capped at `top_k`."""
    if not ids:
        return []

    scores = blended_scores(query_embedding, embeddings, weights)
    candidates = [
        SimilarityCandidate(target_id=doc_id, score=float(score))
        for doc_id, score in zip(ids, scores)
        if doc_id != exclude_id and float(score) > threshold
    ]
    candidates.sort(key=lambda c: c.score, reverse=True)
    return candidates[:top_k]
