"""
Similarity scoring - normalized dot product between query and stored vectors.

Vectors are assumed to be L2-normalized upstream, so the dot product equals
cosine similarity. Nothing here normalizes; unnormalized inputs still rank
consistently within one query but scores are no longer bounded to [-1, 1].
"""

import numpy as np

from ..core.errors import DimensionMismatchError


class SimilarityScorer:
    """Dot-product scorer. Stateless and safe to share across threads."""

    def score(self, a: np.ndarray, b: np.ndarray) -> float:
        """Return the inner product of two equal-length vectors."""
        if len(a) != len(b):
            raise DimensionMismatchError(len(a), len(b), "similarity score")
        return float(np.dot(a, b))

    def score_block(self, query: np.ndarray, flat_vectors: np.ndarray,
                    num_vectors: int, dimensions: int) -> np.ndarray:
        """Score every document slice of a flat buffer against the query.

        Returns one score per document, in buffer order.
        """
        if len(query) != dimensions:
            raise DimensionMismatchError(dimensions, len(query), "block score")
        if num_vectors == 0:
            return np.zeros(0, dtype=np.float64)

        # Row i of the view is the slice [i*dimensions, (i+1)*dimensions)
        matrix = flat_vectors.reshape(num_vectors, dimensions)
        return matrix.astype(np.float64, copy=False) @ np.asarray(query, dtype=np.float64)


def rank_descending(scores: np.ndarray) -> np.ndarray:
    """Indices ordering scores high to low; equal scores keep their original order."""
    return np.argsort(-np.asarray(scores, dtype=np.float64), kind="stable")
