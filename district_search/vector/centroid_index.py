"""
Centroid index - stage 1 of the clustered search.
Scores every partition centroid against the query and selects the closest partitions.
"""

from typing import List, Optional, Sequence
import numpy as np

from ..core.errors import DimensionMismatchError, DuplicateClusterError, EmptyIndexError
from .scoring import SimilarityScorer, rank_descending
from .types import ClusterCentroid, ScoredCentroid
from util.logging import logger


class CentroidIndex:
    """In-memory, read-only collection of cluster centroids in insertion order."""

    def __init__(self, centroids: Sequence[ClusterCentroid], dimensions: int,
                 scorer: Optional[SimilarityScorer] = None):
        """
        Build the index.

        Args:
            centroids: One centroid per partition; cluster ids must be unique
            dimensions: Embedding dimensionality shared by every vector
            scorer: Similarity scorer (default: dot product)
        """
        if not centroids:
            raise EmptyIndexError("Centroid index cannot be built from an empty centroid collection")

        seen = set()
        rows = []
        for centroid in centroids:
            if centroid.cluster_id in seen:
                raise DuplicateClusterError(centroid.cluster_id)
            seen.add(centroid.cluster_id)

            if len(centroid.centroid) != dimensions:
                raise DimensionMismatchError(dimensions, len(centroid.centroid),
                                             f"centroid of cluster {centroid.cluster_id}")
            rows.append(np.asarray(centroid.centroid, dtype=np.float32))

        self.dimensions = dimensions
        self.scorer = scorer if scorer is not None else SimilarityScorer()
        self._centroids = list(centroids)

        # Centroids share one flat buffer, scanned like a cluster block
        self._flat = np.concatenate(rows)
        self._flat.flags.writeable = False

    def __len__(self) -> int:
        return len(self._centroids)

    @property
    def cluster_ids(self) -> List[str]:
        return [c.cluster_id for c in self._centroids]

    def find_top_clusters(self, query: np.ndarray, top_m: int) -> List[ScoredCentroid]:
        """Return the top_m centroids most similar to the query, best first."""
        if len(query) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(query), "query for centroid index")

        if top_m <= 0:
            logger.log_parameter_clamp("top_m_clusters", top_m, 1, "must be positive")
            top_m = 1
        if top_m > len(self._centroids):
            logger.log_parameter_clamp("top_m_clusters", top_m, len(self._centroids),
                                       "exceeds available centroids")
            top_m = len(self._centroids)

        scores = self.scorer.score_block(query, self._flat, len(self._centroids), self.dimensions)
        order = rank_descending(scores)[:top_m]

        return [
            ScoredCentroid(
                cluster_id=self._centroids[i].cluster_id,
                centroid=self._centroids[i].centroid,
                score=float(scores[i])
            )
            for i in order
        ]
