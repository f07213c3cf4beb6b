"""
Cluster store - per-partition embeddings and metadata, stage 2 of the clustered search.

Every record is validated once at construction. A store never holds a record
whose flat buffer, document count, dimensionality and metadata disagree.
"""

import copy
from typing import Dict, Iterator, List, Mapping, Optional
import numpy as np

from ..core.errors import DimensionMismatchError, EmptyStoreError, MalformedClusterDataError
from .scoring import SimilarityScorer, rank_descending
from .types import ClusterEmbeddingBlock, ClusterRecord, SearchResult
from util.logging import logger


def _validate_record(cluster_id: str, record: ClusterRecord, dimensions: int) -> ClusterRecord:
    """Check layout invariants and return a record backed by a read-only float32 copy."""
    if record.cluster_id != cluster_id:
        raise MalformedClusterDataError(
            cluster_id, f"record is labelled {record.cluster_id!r} but stored under {cluster_id!r}"
        )

    block = record.embedding_block
    if block.cluster_id != cluster_id:
        raise MalformedClusterDataError(
            cluster_id, f"embedding block is labelled {block.cluster_id!r}"
        )
    if block.dimensions != dimensions:
        raise MalformedClusterDataError(
            cluster_id, f"block dimensions {block.dimensions} do not match store dimensions {dimensions}"
        )
    if block.num_vectors < 0:
        raise MalformedClusterDataError(cluster_id, f"negative vector count {block.num_vectors}")
    if len(record.metadata) != block.num_vectors:
        raise MalformedClusterDataError(
            cluster_id, f"metadata count {len(record.metadata)} does not match vector count {block.num_vectors}"
        )

    flat = np.array(block.flat_vectors, dtype=np.float32).reshape(-1)
    expected = block.num_vectors * block.dimensions
    if flat.size != expected:
        raise MalformedClusterDataError(
            cluster_id,
            f"flat buffer holds {flat.size} values, expected {expected} "
            f"({block.num_vectors} vectors x {block.dimensions} dimensions)"
        )

    for position, entry in enumerate(record.metadata):
        if (not isinstance(entry, Mapping)
                or not isinstance(entry.get("id"), str)
                or not isinstance(entry.get("text"), str)):
            raise MalformedClusterDataError(
                cluster_id, f"metadata entry {position} lacks string 'id' and 'text' fields"
            )

    flat.flags.writeable = False
    return ClusterRecord(
        cluster_id=cluster_id,
        embedding_block=ClusterEmbeddingBlock(
            cluster_id=cluster_id,
            flat_vectors=flat,
            num_vectors=block.num_vectors,
            dimensions=block.dimensions
        ),
        metadata=[copy.deepcopy(dict(entry)) for entry in record.metadata]
    )


class ClusterStore:
    """Read-only mapping from cluster id to its validated ClusterRecord."""

    def __init__(self, records: Mapping[str, ClusterRecord], dimensions: int,
                 scorer: Optional[SimilarityScorer] = None):
        """
        Build the store, validating every record eagerly.

        Raises:
            EmptyStoreError: no records were supplied
            MalformedClusterDataError: a record violates the layout invariants
        """
        if not records:
            raise EmptyStoreError("Cluster store cannot be built from an empty record mapping")

        self.dimensions = dimensions
        self.scorer = scorer if scorer is not None else SimilarityScorer()
        self._records: Dict[str, ClusterRecord] = {
            cluster_id: _validate_record(cluster_id, record, dimensions)
            for cluster_id, record in records.items()
        }

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, cluster_id: str) -> bool:
        return cluster_id in self._records

    def __iter__(self) -> Iterator[ClusterRecord]:
        return iter(self._records.values())

    @property
    def document_count(self) -> int:
        return sum(r.num_vectors for r in self._records.values())

    def get(self, cluster_id: str) -> Optional[ClusterRecord]:
        """Get a cluster record, or None when the cluster is unknown."""
        return self._records.get(cluster_id)

    def search_in_cluster(self, query: np.ndarray, cluster_id: str, top_k: int) -> List[SearchResult]:
        """Linear scan of one cluster; returns up to top_k results, best first.

        An unknown cluster yields no results rather than an error.
        """
        if len(query) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(query), f"query for cluster {cluster_id}")

        record = self._records.get(cluster_id)
        if record is None:
            return []

        block = record.embedding_block
        if block.num_vectors == 0:
            return []

        if top_k <= 0:
            logger.log_parameter_clamp("top_k_per_cluster", top_k, 1, "must be positive")
            top_k = 1
        top_k = min(top_k, block.num_vectors)

        scores = self.scorer.score_block(query, block.flat_vectors, block.num_vectors, block.dimensions)
        order = rank_descending(scores)[:top_k]

        results = []
        for i in order:
            doc = record.metadata[i]
            results.append(SearchResult(
                id=doc["id"],
                text=doc["text"],
                score=float(scores[i]),
                metadata=copy.deepcopy(doc)
            ))
        return results
