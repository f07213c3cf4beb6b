"""
Error taxonomy for corpus loading and two-stage search.
All errors are deterministic functions of their input; none are retried.
"""

from typing import Optional


class ClusteredSearchError(Exception):
    """Base exception for clustered search operations."""
    pass


class DimensionMismatchError(ClusteredSearchError, ValueError):
    """A vector's length disagrees with the engine dimensionality."""

    def __init__(self, expected: int, received: int, context: Optional[str] = None):
        self.expected = expected
        self.received = received
        self.context = context
        message = f"Dimension mismatch: expected {expected}, received {received}"
        if context:
            message += f" ({context})"
        super().__init__(message)


class EmptyIndexError(ClusteredSearchError):
    """Centroid index constructed without any centroids."""
    pass


class EmptyStoreError(ClusteredSearchError):
    """Cluster store constructed without any cluster records."""
    pass


class MalformedClusterDataError(ClusteredSearchError):
    """A cluster record violates the flat-buffer layout invariants."""

    def __init__(self, cluster_id: str, reason: str):
        self.cluster_id = cluster_id
        self.reason = reason
        super().__init__(f"Malformed data for cluster {cluster_id}: {reason}")


class DuplicateClusterError(MalformedClusterDataError):
    """The same cluster id appears more than once in the centroid index."""

    def __init__(self, cluster_id: str):
        super().__init__(cluster_id, "duplicate cluster id in centroid index")


class CorpusLoadError(ClusteredSearchError):
    """Corpus files are missing, unreadable or structurally invalid."""
    pass


class SearchTimeoutError(ClusteredSearchError):
    """The search did not complete before its deadline; no partial results are returned."""

    def __init__(self, timeout: float, completed_clusters: int, selected_clusters: int):
        self.timeout = timeout
        self.completed_clusters = completed_clusters
        self.selected_clusters = selected_clusters
        super().__init__(
            f"Search exceeded {timeout}s deadline after {completed_clusters}/{selected_clusters} clusters"
        )
