"""
Corpus loader - reads the clustered embedding layout written by the offline pipeline.

Layout, relative to the manifest directory:
    manifest.json             model id, dimensions, k, centroids file, cluster entries
    centroids.json            [{"clusterId": 0, "centroid": [...]}, ...]
    cluster_<i>/embeddings.bin  little-endian float32, count * dimensions values
    cluster_<i>/metadata.json   [{"id": ..., "text": ..., ...}, ...] parallel to embeddings

Loading either fully succeeds or raises; a corpus with a missing or
inconsistent cluster is never handed to the engine.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.errors import CorpusLoadError, DimensionMismatchError, MalformedClusterDataError
from .clustered_search import ClusteredSearchEngine
from .types import ClusterCentroid, ClusterEmbeddingBlock, ClusterRecord
from util.logging import logger

ProgressCallback = Callable[[str, int, int], None]

EMBEDDING_DTYPE = np.dtype("<f4")


class ManifestClusterEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cluster_id: str = Field(validation_alias=AliasChoices("clusterId", "cluster_id"))
    count: int = Field(ge=0)
    embeddings_file: Optional[str] = Field(default=None, validation_alias=AliasChoices("embeddingsFile", "embeddings_file"))
    metadata_file: Optional[str] = Field(default=None, validation_alias=AliasChoices("metadataFile", "metadata_file"))

    @field_validator('cluster_id', mode='before')
    @classmethod
    def cluster_id_to_string(cls, v):
        # The pipeline writes numeric ids; the engine keys clusters by string
        if isinstance(v, bool) or not isinstance(v, (int, str)):
            raise ValueError('clusterId must be an integer or string')
        return str(v)


class CorpusManifest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str = Field(validation_alias=AliasChoices("model", "embeddingModelId", "model_id"))
    dimensions: int = Field(gt=0, validation_alias=AliasChoices("dimensions", "embeddingDimensions"))
    k: int = Field(gt=0, validation_alias=AliasChoices("k", "kValue"))
    centroids_file: str = Field(validation_alias=AliasChoices("centroidsFile", "centroids_file"))
    cluster_algorithm: Optional[str] = Field(default=None, validation_alias=AliasChoices("clusterAlgorithm", "cluster_algorithm"))
    clusters: List[ManifestClusterEntry]

    @field_validator('centroids_file')
    @classmethod
    def centroids_file_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('centroidsFile cannot be empty')
        return v


@dataclass
class LoadedCorpus:
    """Everything needed to construct a ClusteredSearchEngine."""
    manifest: CorpusManifest
    centroids: List[ClusterCentroid]
    records: Dict[str, ClusterRecord]

    @property
    def dimensions(self) -> int:
        return self.manifest.dimensions

    @property
    def model_id(self) -> str:
        return self.manifest.model_id

    @property
    def document_count(self) -> int:
        return sum(r.num_vectors for r in self.records.values())


def _read_json(path: Path, what: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise CorpusLoadError(f"{what} not found: {path}")
    except OSError as e:
        raise CorpusLoadError(f"{what} cannot be read ({path}): {e}")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorpusLoadError(f"{what} is not valid JSON ({path}): {e}")


def load_manifest(manifest_path: Union[str, Path]) -> CorpusManifest:
    """Read and validate manifest.json."""
    manifest_path = Path(manifest_path)
    raw = _read_json(manifest_path, "Manifest")
    try:
        manifest = CorpusManifest.model_validate(raw)
    except ValidationError as e:
        raise CorpusLoadError(f"Manifest {manifest_path} is invalid: {e}")

    logger.debug(f"Manifest loaded: model={manifest.model_id}, dimensions={manifest.dimensions}, k={manifest.k}")
    return manifest


def load_centroids(manifest: CorpusManifest, base_dir: Union[str, Path]) -> List[ClusterCentroid]:
    """Read centroids.json, checking every centroid against the manifest dimensions."""
    centroids_path = Path(base_dir) / manifest.centroids_file
    raw = _read_json(centroids_path, "Centroids file")
    if not isinstance(raw, list):
        raise CorpusLoadError(f"Centroids file {centroids_path} must contain a list")

    if len(raw) != manifest.k:
        logger.warning(
            f"Manifest k ({manifest.k}) does not match the number of centroids found ({len(raw)}). "
            f"Using the count from the centroids file."
        )

    centroids = []
    for position, entry in enumerate(raw):
        if not isinstance(entry, dict) or "clusterId" not in entry or not isinstance(entry.get("centroid"), list):
            raise CorpusLoadError(f"Centroid entry {position} in {centroids_path} is missing clusterId or centroid")

        cluster_id = str(entry["clusterId"])
        try:
            vector = np.asarray(entry["centroid"], dtype=np.float32)
        except (TypeError, ValueError):
            raise CorpusLoadError(f"Centroid of cluster {cluster_id} in {centroids_path} contains non-numeric values")
        if vector.ndim != 1:
            raise CorpusLoadError(f"Centroid of cluster {cluster_id} in {centroids_path} is not a flat list of numbers")
        if len(vector) != manifest.dimensions:
            raise DimensionMismatchError(manifest.dimensions, len(vector), f"centroid of cluster {cluster_id}")
        centroids.append(ClusterCentroid(cluster_id=cluster_id, centroid=vector))

    return centroids


def _empty_record(cluster_id: str, dimensions: int) -> ClusterRecord:
    return ClusterRecord(
        cluster_id=cluster_id,
        embedding_block=ClusterEmbeddingBlock(
            cluster_id=cluster_id,
            flat_vectors=np.zeros(0, dtype=np.float32),
            num_vectors=0,
            dimensions=dimensions
        ),
        metadata=[]
    )


def load_cluster_record(entry: ManifestClusterEntry, dimensions: int,
                        base_dir: Union[str, Path]) -> ClusterRecord:
    """Load embeddings and metadata for one cluster."""
    cluster_id = entry.cluster_id

    if entry.count == 0:
        logger.debug(f"Cluster {cluster_id} is empty. Skipping file loading.")
        return _empty_record(cluster_id, dimensions)

    if not entry.embeddings_file or not entry.metadata_file:
        raise CorpusLoadError(
            f"Missing metadata or embeddings file path for cluster {cluster_id}. "
            f"Metadata: {entry.metadata_file}, Embeddings: {entry.embeddings_file}"
        )

    base_dir = Path(base_dir)
    metadata = _read_json(base_dir / entry.metadata_file, f"Metadata for cluster {cluster_id}")
    if not isinstance(metadata, list):
        raise MalformedClusterDataError(cluster_id, "metadata file must contain a list")
    if len(metadata) != entry.count:
        raise MalformedClusterDataError(
            cluster_id, f"manifest count is {entry.count}, but metadata holds {len(metadata)} entries"
        )

    embeddings_path = base_dir / entry.embeddings_file
    try:
        flat = np.fromfile(embeddings_path, dtype=EMBEDDING_DTYPE)
    except FileNotFoundError:
        raise CorpusLoadError(f"Embeddings for cluster {cluster_id} not found: {embeddings_path}")
    except OSError as e:
        raise CorpusLoadError(f"Embeddings for cluster {cluster_id} cannot be read ({embeddings_path}): {e}")

    expected = entry.count * dimensions
    if flat.size != expected:
        raise MalformedClusterDataError(
            cluster_id,
            f"expected {expected} float values (count {entry.count} * dims {dimensions}), "
            f"found {flat.size} in {entry.embeddings_file}"
        )

    return ClusterRecord(
        cluster_id=cluster_id,
        embedding_block=ClusterEmbeddingBlock(
            cluster_id=cluster_id,
            flat_vectors=flat.astype(np.float32),
            num_vectors=entry.count,
            dimensions=dimensions
        ),
        metadata=metadata
    )


def load_corpus(manifest_path: Union[str, Path], expected_dimensions: Optional[int] = None,
                max_workers: int = 4, progress_callback: Optional[ProgressCallback] = None) -> LoadedCorpus:
    """
    Load manifest, centroids and every cluster.

    Args:
        manifest_path: Path to manifest.json
        expected_dimensions: Reject corpora whose dimensionality differs
        max_workers: Threads used to read cluster files
        progress_callback: Called with (message, loaded, total) as files load

    Raises:
        CorpusLoadError, MalformedClusterDataError, DimensionMismatchError
    """
    manifest_path = Path(manifest_path)
    base_dir = manifest_path.parent
    loaded = 0

    def report(message: str, total: int) -> None:
        if progress_callback:
            progress_callback(message, loaded, total)

    try:
        report("Loading manifest...", 0)
        manifest = load_manifest(manifest_path)
        loaded += 1

        if expected_dimensions is not None and manifest.dimensions != expected_dimensions:
            raise DimensionMismatchError(expected_dimensions, manifest.dimensions, f"manifest {manifest_path}")

        total = 2 + sum(1 for c in manifest.clusters if c.count > 0)
        report("Manifest loaded. Loading centroids...", total)

        centroids = load_centroids(manifest, base_dir)
        loaded += 1
        report(f"Centroids loaded. Loading {len(manifest.clusters)} clusters...", total)

        records: Dict[str, ClusterRecord] = {}
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            futures = [
                executor.submit(load_cluster_record, entry, manifest.dimensions, base_dir)
                for entry in manifest.clusters
            ]
            # Manifest order, first failure propagates
            for entry, future in zip(manifest.clusters, futures):
                record = future.result()
                if record.cluster_id in records:
                    raise MalformedClusterDataError(record.cluster_id, "cluster listed twice in manifest")
                records[record.cluster_id] = record
                if entry.count > 0:
                    loaded += 1
                    report(f"Loaded cluster {record.cluster_id}.", total)

    except Exception as e:
        logger.log_corpus_load(str(manifest_path), 0, 0, 0, status="failed", details={"error": str(e)})
        if progress_callback:
            progress_callback("Error loading corpus data.", loaded, 0)
        raise

    corpus = LoadedCorpus(manifest=manifest, centroids=centroids, records=records)
    logger.log_corpus_load(str(manifest_path), len(centroids), len(records), corpus.document_count)
    report("All corpus data loaded successfully.", total)
    return corpus


def build_engine(manifest_path: Union[str, Path], expected_dimensions: Optional[int] = None,
                 max_workers: int = 1, loader_max_workers: int = 4,
                 progress_callback: Optional[ProgressCallback] = None) -> ClusteredSearchEngine:
    """Load a corpus from disk and construct a ClusteredSearchEngine over it.

    The caller owns the returned engine and must close() it when max_workers > 1.
    """
    corpus = load_corpus(manifest_path, expected_dimensions=expected_dimensions,
                         max_workers=loader_max_workers, progress_callback=progress_callback)
    return ClusteredSearchEngine(corpus.centroids, corpus.records, corpus.dimensions, max_workers=max_workers)
