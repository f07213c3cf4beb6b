"""
Clustered search engine - two-stage approximate nearest-neighbour retrieval.

Stage 1 ranks partition centroids and keeps the top-M clusters. Stage 2 scans
each selected cluster linearly and keeps its top-K documents. Candidates are
merged, re-ranked and cut to the final top-N.

Results approximate the exact corpus-wide top-N: only documents inside the
selected partitions are ever considered, so recall depends on how well the
offline clustering places true neighbours in the clusters closest to the
query. With top-M equal to the number of clusters and top-K at least the
largest cluster size, the search is exact.
"""

import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import List, Mapping, Optional, Sequence
import numpy as np

from ..core import config
from ..core.errors import DimensionMismatchError, SearchTimeoutError
from .centroid_index import CentroidIndex
from .cluster_store import ClusterStore
from .scoring import SimilarityScorer
from .types import ClusterCentroid, ClusterRecord, SearchResult
from util.logging import logger


class ClusteredSearchEngine:
    """Read-only two-stage search over a clustered corpus.

    The centroid index and cluster store are built once here and shared by
    every caller. Nothing is written after construction, so concurrent
    searches need no locking.

    With max_workers > 1 the engine owns a thread pool for cluster scans.
    Call close() or use the engine as a context manager to shut it down.
    """

    def __init__(self, centroids: Sequence[ClusterCentroid], records: Mapping[str, ClusterRecord],
                 dimensions: int, max_workers: int = 1, scorer: Optional[SimilarityScorer] = None):
        """
        Initialize the engine.

        Args:
            centroids: Non-empty centroid collection, one per cluster
            records: Mapping of cluster id to its ClusterRecord
            dimensions: Embedding dimensionality D
            max_workers: Threads used to scan selected clusters (1 = sequential)
            scorer: Similarity scorer shared by both stages
        """
        if dimensions <= 0:
            raise ValueError(f"Embedding dimensions must be positive, got {dimensions}")

        self.dimensions = dimensions
        self.scorer = scorer if scorer is not None else SimilarityScorer()
        self.index = CentroidIndex(centroids, dimensions, self.scorer)
        self.store = ClusterStore(records, dimensions, self.scorer)

        self.max_workers = max(1, max_workers)
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers) if self.max_workers > 1 else None

        logger.info(
            f"ClusteredSearchEngine initialized with {len(self.index)} centroids and data for "
            f"{len(self.store)} clusters ({self.store.document_count} documents)"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        """Release the cluster scan worker pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _scan_cluster(self, query: np.ndarray, cluster_id: str, top_k: int) -> List[SearchResult]:
        if cluster_id not in self.store:
            logger.log_missing_cluster(cluster_id)
            return []
        return self.store.search_in_cluster(query, cluster_id, top_k)

    def search(self, query: Sequence[float], top_m_clusters: Optional[int] = None,
               top_k_per_cluster: Optional[int] = None, final_top_n: Optional[int] = None,
               timeout: Optional[float] = None) -> List[SearchResult]:
        """
        Two-stage search for the documents most similar to the query.

        Args:
            query: L2-normalized query embedding of length D
            top_m_clusters: Clusters to scan (clamped to [1, number of centroids])
            top_k_per_cluster: Documents kept per scanned cluster (clamped to >= 1)
            final_top_n: Results returned after merging; <= 0 returns nothing
            timeout: Deadline in seconds for the cluster scans

        Returns:
            Up to final_top_n SearchResult objects in non-increasing score order.
            Equal scores keep centroid rank order, then in-cluster order.

        Raises:
            DimensionMismatchError: query length differs from D
            SearchTimeoutError: the deadline passed before every cluster was scanned
        """
        start_time = time.perf_counter()
        query = np.asarray(query, dtype=np.float64)
        if query.ndim != 1 or len(query) != self.dimensions:
            received = len(query) if query.ndim == 1 else int(query.size)
            raise DimensionMismatchError(self.dimensions, received, "search query")

        defaults = config.get_search_defaults()
        top_m_clusters = defaults["top_m_clusters"] if top_m_clusters is None else top_m_clusters
        top_k_per_cluster = defaults["top_k_per_cluster"] if top_k_per_cluster is None else top_k_per_cluster
        final_top_n = defaults["final_top_n"] if final_top_n is None else final_top_n
        if timeout is None:
            timeout = config.get_search_timeout()

        # Stage 1: rank centroids
        selected = self.index.find_top_clusters(query, top_m_clusters)
        if not selected:
            return []
        cluster_ids = [c.cluster_id for c in selected]
        logger.debug(f"Selected clusters: {', '.join(cluster_ids)}")

        # Stage 2: scan selected clusters, gathered in centroid rank order
        deadline = None if timeout is None else start_time + timeout
        per_cluster: List[List[SearchResult]] = []

        if self._executor is not None and len(selected) > 1:
            futures = [
                self._executor.submit(self._scan_cluster, query, cluster_id, top_k_per_cluster)
                for cluster_id in cluster_ids
            ]
            for completed, future in enumerate(futures):
                remaining = None if deadline is None else max(0.0, deadline - time.perf_counter())
                try:
                    per_cluster.append(future.result(timeout=remaining))
                except FuturesTimeoutError:
                    for pending in futures:
                        pending.cancel()
                    raise SearchTimeoutError(timeout, completed, len(selected))
        else:
            for completed, cluster_id in enumerate(cluster_ids):
                if deadline is not None and time.perf_counter() > deadline:
                    raise SearchTimeoutError(timeout, completed, len(selected))
                per_cluster.append(self._scan_cluster(query, cluster_id, top_k_per_cluster))

        aggregated = [result for results in per_cluster for result in results]

        # sorted() is stable with reverse=True
        aggregated = sorted(aggregated, key=lambda r: r.score, reverse=True)
        final_results = aggregated[:max(final_top_n, 0)]

        logger.log_search(len(selected), top_k_per_cluster, final_top_n, cluster_ids,
                          len(final_results), start_time, time.perf_counter(),
                          requested_top_m=top_m_clusters)
        return final_results
