"""
Clustered corpus records - centroids, flat per-cluster embedding blocks and search results.
Built once at load time and treated as read-only afterwards.
"""

from typing import Any, Dict, List
import numpy as np
from dataclasses import dataclass, field


# id, text and arbitrary attributes of one document
DocumentMetadata = Dict[str, Any]


@dataclass(frozen=True)
class ClusterCentroid:
    """Represents the centroid vector of one corpus partition."""

    cluster_id: str
    """Unique identifier of the partition"""

    centroid: np.ndarray
    """L2-normalized centroid vector"""


@dataclass(frozen=True)
class ScoredCentroid:
    """Centroid annotated with its similarity to a query."""

    cluster_id: str
    centroid: np.ndarray
    score: float


@dataclass(frozen=True)
class ClusterEmbeddingBlock:
    """All document embeddings of one cluster in a single contiguous buffer.

    Document ``i`` occupies ``flat_vectors[i * dimensions:(i + 1) * dimensions]``.
    """

    cluster_id: str
    flat_vectors: np.ndarray
    num_vectors: int
    dimensions: int

    def vector_at(self, index: int) -> np.ndarray:
        """Return a view of the index-th document vector."""
        if index < 0 or index >= self.num_vectors:
            raise IndexError(f"Document index {index} out of range for cluster {self.cluster_id}")
        start = index * self.dimensions
        return self.flat_vectors[start:start + self.dimensions]

    def as_matrix(self) -> np.ndarray:
        """Return a (num_vectors, dimensions) view over the flat buffer."""
        return self.flat_vectors.reshape(self.num_vectors, self.dimensions)


@dataclass(frozen=True)
class ClusterRecord:
    """Unit of storage per partition: embedding block plus parallel metadata."""

    cluster_id: str
    embedding_block: ClusterEmbeddingBlock
    metadata: List[DocumentMetadata] = field(default_factory=list)

    @property
    def num_vectors(self) -> int:
        return self.embedding_block.num_vectors


@dataclass
class SearchResult:
    """Represents one document returned by a search."""

    id: str
    """Document identifier (e.g. CDS code)"""

    text: str
    """Original document text"""

    score: float
    """Dot-product similarity to the query"""

    metadata: DocumentMetadata
    """Full metadata of the matched document"""
