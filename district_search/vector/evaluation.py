"""
Recall evaluation - measures how much of the exact top-N the two-stage search recovers.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence
import numpy as np

from .clustered_search import ClusteredSearchEngine
from .scoring import rank_descending


@dataclass
class RecallReport:
    """Recall of a set of queries at one search configuration."""
    top_m_clusters: int
    top_k_per_cluster: int
    final_top_n: int
    per_query: List[float] = field(default_factory=list)

    @property
    def queries(self) -> int:
        return len(self.per_query)

    @property
    def mean_recall(self) -> float:
        return float(np.mean(self.per_query)) if self.per_query else 0.0

    @property
    def min_recall(self) -> float:
        return float(min(self.per_query)) if self.per_query else 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "top_m_clusters": self.top_m_clusters,
            "top_k_per_cluster": self.top_k_per_cluster,
            "final_top_n": self.final_top_n,
            "queries": self.queries,
            "mean_recall": self.mean_recall,
            "min_recall": self.min_recall,
        }


def exhaustive_neighbor_ids(engine: ClusteredSearchEngine, query: np.ndarray, top_n: int) -> List[str]:
    """Ids of the top_n documents over every cluster, used as ground truth."""
    ids: List[str] = []
    scores: List[np.ndarray] = []
    for record in engine.store:
        block = record.embedding_block
        if block.num_vectors == 0:
            continue
        scores.append(engine.scorer.score_block(query, block.flat_vectors, block.num_vectors, block.dimensions))
        ids.extend(doc["id"] for doc in record.metadata)

    if not ids:
        return []
    order = rank_descending(np.concatenate(scores))[:max(top_n, 0)]
    return [ids[i] for i in order]


def evaluate_recall(engine: ClusteredSearchEngine, queries: Sequence[Sequence[float]],
                    top_m_clusters: int, top_k_per_cluster: int, final_top_n: int) -> RecallReport:
    """
    Compare two-stage results against exhaustive ranking for each query.

    Recall for one query is |approximate ids & exact ids| / |exact ids|.
    """
    report = RecallReport(top_m_clusters, top_k_per_cluster, final_top_n)
    for query in queries:
        query = np.asarray(query, dtype=np.float64)
        found = {r.id for r in engine.search(query, top_m_clusters, top_k_per_cluster, final_top_n)}
        truth = exhaustive_neighbor_ids(engine, query, final_top_n)
        if not truth:
            report.per_query.append(1.0)
            continue
        report.per_query.append(len(found.intersection(truth)) / len(truth))
    return report
