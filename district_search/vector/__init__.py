# Package initialization for vector module
from .types import ClusterCentroid, ScoredCentroid, ClusterEmbeddingBlock, ClusterRecord, SearchResult, DocumentMetadata
from .scoring import SimilarityScorer
from .centroid_index import CentroidIndex
from .cluster_store import ClusterStore
from .clustered_search import ClusteredSearchEngine
from .loader import CorpusManifest, ManifestClusterEntry, LoadedCorpus, load_manifest, load_centroids, load_cluster_record, load_corpus, build_engine
from .validation import CorpusValidationReport, validate_corpus
from .evaluation import RecallReport, evaluate_recall

__all__ = [
    'ClusterCentroid',
    'ScoredCentroid',
    'ClusterEmbeddingBlock',
    'ClusterRecord',
    'SearchResult',
    'DocumentMetadata',
    'SimilarityScorer',
    'CentroidIndex',
    'ClusterStore',
    'ClusteredSearchEngine',
    'CorpusManifest',
    'ManifestClusterEntry',
    'LoadedCorpus',
    'load_manifest',
    'load_centroids',
    'load_cluster_record',
    'load_corpus',
    'build_engine',
    'CorpusValidationReport',
    'validate_corpus',
    'RecallReport',
    'evaluate_recall'
]
