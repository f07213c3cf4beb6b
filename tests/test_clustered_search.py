"""
Tests for the two-stage clustered search engine.
"""

import time
import pytest
import numpy as np
from unittest.mock import MagicMock, patch

from district_search.core.errors import DimensionMismatchError, EmptyIndexError, EmptyStoreError, SearchTimeoutError
from district_search.vector.clustered_search import ClusteredSearchEngine
from district_search.vector.scoring import SimilarityScorer
from district_search.vector.types import ClusterCentroid, ClusterEmbeddingBlock, ClusterRecord


def make_record(cluster_id, vectors, dimensions, ids=None):
    flat = np.asarray(vectors, dtype=np.float32).reshape(-1)
    ids = ids or [f"{cluster_id}-d{i}" for i in range(len(vectors))]
    return ClusterRecord(
        cluster_id=cluster_id,
        embedding_block=ClusterEmbeddingBlock(cluster_id, flat, len(vectors), dimensions),
        metadata=[{"id": doc_id, "text": f"text {doc_id}", "cluster": cluster_id} for doc_id in ids]
    )


def unit(v):
    v = np.asarray(v, dtype=np.float64)
    return v / np.linalg.norm(v)


@pytest.fixture
def compass_engine():
    """4 clusters, D=2; c0 holds d1, c1 and c3 hold a few documents, c2 is empty."""
    centroids = [
        ClusterCentroid("c0", np.array([1.0, 0.0])),
        ClusterCentroid("c1", np.array([0.0, 1.0])),
        ClusterCentroid("c2", np.array([-1.0, 0.0])),
        ClusterCentroid("c3", np.array([0.0, -1.0])),
    ]
    records = {
        "c0": make_record("c0", [[1.0, 0.0]], 2, ids=["d1"]),
        "c1": make_record("c1", [unit([0.2, 1.0]), unit([-0.3, 1.0])], 2, ids=["n1", "n2"]),
        "c2": make_record("c2", [], 2),
        "c3": make_record("c3", [unit([0.1, -1.0])], 2, ids=["s1"]),
    }
    records["c0"].metadata[0]["text"] = "x"
    engine = ClusteredSearchEngine(centroids, records, dimensions=2)
    yield engine
    engine.close()


@pytest.fixture
def random_corpus():
    """Random unit vectors in 5 uneven clusters, one of them empty."""
    rng = np.random.default_rng(7)
    dimensions = 8
    sizes = [3, 7, 0, 5, 9]
    centroids = []
    records = {}
    for c, size in enumerate(sizes):
        cluster_id = f"c{c}"
        centre = unit(rng.normal(size=dimensions))
        vectors = [unit(centre + 0.5 * rng.normal(size=dimensions)) for _ in range(size)]
        centroids.append(ClusterCentroid(cluster_id, centre.astype(np.float32)))
        records[cluster_id] = make_record(cluster_id, vectors, dimensions)
    queries = [unit(rng.normal(size=dimensions)) for _ in range(10)]
    return centroids, records, dimensions, queries, max(sizes)


def exhaustive_ranking(records, query):
    """Every document ranked by exact score."""
    scored = []
    for record in records.values():
        block = record.embedding_block
        for i, doc in enumerate(record.metadata):
            scored.append((float(np.dot(block.vector_at(i).astype(np.float64), query)), doc["id"]))
    scored.sort(key=lambda s: s[0], reverse=True)
    return scored


def test_end_to_end_example(compass_engine):
    """Query near c0 finds its single document."""
    results = compass_engine.search([0.9, 0.1], top_m_clusters=1, top_k_per_cluster=1, final_top_n=1)

    assert len(results) == 1
    assert results[0].id == "d1"
    assert results[0].text == "x"
    assert results[0].score == pytest.approx(0.9)
    assert results[0].metadata["cluster"] == "c0"


def test_construction_requires_centroids_and_records():
    record = make_record("c0", [[1.0, 0.0]], 2)

    with pytest.raises(EmptyIndexError):
        ClusteredSearchEngine([], {"c0": record}, dimensions=2)
    with pytest.raises(EmptyStoreError):
        ClusteredSearchEngine([ClusterCentroid("c0", np.array([1.0, 0.0]))], {}, dimensions=2)
    with pytest.raises(ValueError):
        ClusteredSearchEngine([ClusterCentroid("c0", np.array([1.0, 0.0]))], {"c0": record}, dimensions=0)


def test_results_sorted_and_bounded(random_corpus):
    centroids, records, dimensions, queries, _ = random_corpus
    with ClusteredSearchEngine(centroids, records, dimensions) as engine:
        for query in queries:
            for final_top_n in (1, 4, 50):
                results = engine.search(query, 2, 3, final_top_n)

                assert len(results) <= final_top_n
                scores = [r.score for r in results]
                assert scores == sorted(scores, reverse=True)


def test_search_is_deterministic(random_corpus):
    centroids, records, dimensions, queries, _ = random_corpus
    with ClusteredSearchEngine(centroids, records, dimensions) as engine:
        for query in queries:
            first = engine.search(query, 3, 4, 6)
            second = engine.search(query, 3, 4, 6)

            assert [(r.id, r.score) for r in first] == [(r.id, r.score) for r in second]


def test_collapses_to_exact_search_at_limits(random_corpus):
    """All clusters and whole clusters make the approximation exact."""
    centroids, records, dimensions, queries, largest = random_corpus
    corpus_size = sum(r.num_vectors for r in records.values())
    with ClusteredSearchEngine(centroids, records, dimensions) as engine:
        for query in queries:
            results = engine.search(query, len(centroids), largest, corpus_size)
            exact = exhaustive_ranking(records, query)

            assert [r.id for r in results] == [doc_id for _, doc_id in exact]
            assert [r.score for r in results] == pytest.approx([score for score, _ in exact])


def test_tied_scores_keep_centroid_rank_order():
    """Equal document scores follow centroid rank, then in-cluster order."""
    centroids = [
        ClusterCentroid("far", np.array([0.0, 1.0])),
        ClusterCentroid("near", np.array([1.0, 0.0])),
    ]
    records = {
        "far": make_record("far", [[1.0, 0.0]], 2, ids=["far-doc"]),
        "near": make_record("near", [[1.0, 0.0], [1.0, 0.0]], 2, ids=["near-1", "near-2"]),
    }
    with ClusteredSearchEngine(centroids, records, dimensions=2) as engine:
        results = engine.search([1.0, 0.0], 2, 2, 3)

    assert [r.id for r in results] == ["near-1", "near-2", "far-doc"]


class TestParameterPolicies:
    """Clamping inside the stages, plain truncation at the end."""

    def test_zero_clusters_behaves_like_one(self, random_corpus):
        centroids, records, dimensions, queries, _ = random_corpus
        with ClusteredSearchEngine(centroids, records, dimensions) as engine:
            for query in queries:
                assert engine.search(query, 0, 4, 5) == engine.search(query, 1, 4, 5)

    def test_too_many_clusters_behaves_like_all(self, random_corpus):
        centroids, records, dimensions, queries, _ = random_corpus
        with ClusteredSearchEngine(centroids, records, dimensions) as engine:
            for query in queries:
                assert engine.search(query, 99, 4, 5) == engine.search(query, len(centroids), 4, 5)

    def test_final_top_n_zero_returns_empty(self, compass_engine):
        assert compass_engine.search([0.9, 0.1], 4, 2, 0) == []
        assert compass_engine.search([0.9, 0.1], 4, 2, -1) == []

    def test_search_log_reports_clusters_actually_scanned(self, compass_engine):
        with patch('district_search.vector.clustered_search.logger') as mock_logger:
            compass_engine.search([0.9, 0.1], 99, 2, 3)

        args, kwargs = mock_logger.log_search.call_args
        assert args[0] == 4
        assert kwargs["requested_top_m"] == 99

    def test_defaults_come_from_config(self, compass_engine):
        with patch('district_search.vector.clustered_search.config.get_search_defaults') as mock_defaults:
            mock_defaults.return_value = {"top_m_clusters": 4, "top_k_per_cluster": 5, "final_top_n": 2}
            results = compass_engine.search([0.9, 0.1])

        assert len(results) == 2
        assert results[0].id == "d1"


class TestDimensionMismatch:
    """Wrong-length queries fail before any scoring."""

    def test_longer_query_rejected(self, compass_engine):
        with pytest.raises(DimensionMismatchError) as exc_info:
            compass_engine.search([0.9, 0.1, 0.0], 1, 1, 1)

        assert exc_info.value.expected == 2
        assert exc_info.value.received == 3

    def test_no_partial_scoring(self):
        scorer = MagicMock(wraps=SimilarityScorer())
        engine = ClusteredSearchEngine(
            [ClusterCentroid("c0", np.array([1.0, 0.0]))],
            {"c0": make_record("c0", [[1.0, 0.0]], 2)},
            dimensions=2,
            scorer=scorer
        )
        scorer.reset_mock()

        with pytest.raises(DimensionMismatchError):
            engine.search([1.0, 0.0, 0.0], 1, 1, 1)

        scorer.score_block.assert_not_called()
        scorer.score.assert_not_called()


def test_empty_cluster_contributes_nothing(compass_engine):
    """The empty c2 cluster is scanned without error."""
    results = compass_engine.search([-1.0, 0.0], 1, 5, 5)

    assert results == []


def test_missing_cluster_is_skipped_and_logged():
    centroids = [
        ClusterCentroid("c0", np.array([1.0, 0.0])),
        ClusterCentroid("stale", np.array([0.0, 1.0])),
    ]
    records = {"c0": make_record("c0", [[0.0, 1.0], [1.0, 0.0]], 2, ids=["up", "right"])}

    with ClusteredSearchEngine(centroids, records, dimensions=2) as engine:
        with patch('district_search.vector.clustered_search.logger') as mock_logger:
            results = engine.search([0.0, 1.0], 2, 5, 5)

    assert [r.id for r in results] == ["up", "right"]
    mock_logger.log_missing_cluster.assert_called_once_with("stale")


def test_result_metadata_belongs_to_caller(compass_engine):
    first = compass_engine.search([1.0, 0.0], 1, 1, 1)
    first[0].metadata["text"] = "tampered"
    first[0].text = "tampered"

    second = compass_engine.search([1.0, 0.0], 1, 1, 1)

    assert second[0].text == "x"
    assert second[0].metadata["text"] == "x"


class TestParallelScan:
    """Fanning stage 2 out to worker threads does not change results."""

    def test_parallel_matches_sequential(self, random_corpus):
        centroids, records, dimensions, queries, _ = random_corpus
        sequential = ClusteredSearchEngine(centroids, records, dimensions, max_workers=1)
        parallel = ClusteredSearchEngine(centroids, records, dimensions, max_workers=4)
        try:
            for query in queries:
                assert parallel.search(query, 4, 3, 8) == sequential.search(query, 4, 3, 8)
        finally:
            sequential.close()
            parallel.close()

    def test_context_manager_releases_executor(self, random_corpus):
        centroids, records, dimensions, _, _ = random_corpus
        with ClusteredSearchEngine(centroids, records, dimensions, max_workers=2) as engine:
            assert engine._executor is not None

        assert engine._executor is None

    def test_close_releases_executor(self, random_corpus):
        centroids, records, dimensions, queries, _ = random_corpus
        engine = ClusteredSearchEngine(centroids, records, dimensions, max_workers=3)
        engine.close()

        # Falls back to the sequential scan once closed
        assert len(engine.search(queries[0], 3, 2, 4)) == 4


class TestDeadline:
    """A missed deadline fails the call instead of returning partial results."""

    @staticmethod
    def slow_scan(engine, delay):
        original = engine.store.search_in_cluster

        def scan(query, cluster_id, top_k):
            time.sleep(delay)
            return original(query, cluster_id, top_k)

        return patch.object(engine.store, 'search_in_cluster', side_effect=scan)

    def test_sequential_timeout(self, random_corpus):
        centroids, records, dimensions, queries, _ = random_corpus
        with ClusteredSearchEngine(centroids, records, dimensions) as engine:
            with self.slow_scan(engine, 0.1):
                with pytest.raises(SearchTimeoutError) as exc_info:
                    engine.search(queries[0], 3, 2, 4, timeout=0.05)

        assert exc_info.value.selected_clusters == 3
        assert exc_info.value.completed_clusters < 3

    def test_parallel_timeout(self, random_corpus):
        centroids, records, dimensions, queries, _ = random_corpus
        with ClusteredSearchEngine(centroids, records, dimensions, max_workers=3) as engine:
            with self.slow_scan(engine, 0.3):
                with pytest.raises(SearchTimeoutError):
                    engine.search(queries[0], 3, 2, 4, timeout=0.05)

    def test_generous_deadline_returns_full_results(self, random_corpus):
        centroids, records, dimensions, queries, _ = random_corpus
        with ClusteredSearchEngine(centroids, records, dimensions, max_workers=2) as engine:
            assert engine.search(queries[0], 3, 2, 4, timeout=30) == engine.search(queries[0], 3, 2, 4)
