"""
Corpus validation - audits an on-disk clustered corpus without building an engine.

Unlike the loader, which stops at the first inconsistency, validation walks the
whole corpus and reports every finding: structure, counts, file sizes, NaN/Inf
values and vectors that drift from unit L2 norm.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
from pydantic import ValidationError

from ..core.config import NORMALIZATION_TOLERANCE
from .loader import EMBEDDING_DTYPE, CorpusManifest
from util.logging import logger


@dataclass
class CorpusValidationReport:
    """Findings of one corpus validation run."""
    manifest_path: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    clusters_checked: int = 0
    vectors_checked: int = 0
    issues: List[str] = None

    def __post_init__(self):
        if self.issues is None:
            self.issues = []

    @property
    def ok(self) -> bool:
        return not self.issues

    def add_issue(self, context: str, issue: str) -> None:
        self.issues.append(f"{context}: {issue}")
        logger.log_validation_issue(context, issue)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "manifest_path": self.manifest_path,
            "started_at": self.started_at.isoformat(),
            "clusters_checked": self.clusters_checked,
            "vectors_checked": self.vectors_checked,
            "issues": self.issues,
            "ok": self.ok
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


def _check_vectors(matrix: np.ndarray, context: str, tolerance: float,
                   report: CorpusValidationReport) -> None:
    """Report rows with NaN/Inf values or an L2 norm away from 1."""
    finite = np.isfinite(matrix).all(axis=1)
    for row in np.flatnonzero(~finite):
        report.add_issue(f"{context} vector {row}", "contains NaN or Infinity")

    norms = np.linalg.norm(matrix.astype(np.float64), axis=1)
    for row in np.flatnonzero(finite & (np.abs(norms - 1.0) >= tolerance)):
        report.add_issue(f"{context} vector {row}", f"is not L2 normalized (norm {norms[row]:.6f})")

    report.vectors_checked += len(matrix)


def _load_json(path: Path, context: str, report: CorpusValidationReport) -> Optional[Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        report.add_issue(context, f"cannot read {path.name}: {e}")
        return None


def validate_corpus(manifest_path: Union[str, Path], expected_model_id: Optional[str] = None,
                    expected_dimensions: Optional[int] = None,
                    tolerance: float = NORMALIZATION_TOLERANCE) -> CorpusValidationReport:
    """
    Validate a clustered corpus on disk.

    Args:
        manifest_path: Path to manifest.json
        expected_model_id: Report a manifest built with a different embedding model
        expected_dimensions: Report a manifest with a different dimensionality
        tolerance: Allowed deviation of each vector's L2 norm from 1

    Returns:
        CorpusValidationReport: every finding, in discovery order
    """
    manifest_path = Path(manifest_path)
    base_dir = manifest_path.parent
    report = CorpusValidationReport(manifest_path=str(manifest_path), started_at=datetime.now())

    # 1. Manifest
    raw_manifest = _load_json(manifest_path, "manifest", report)
    if raw_manifest is None:
        report.completed_at = datetime.now()
        return report
    try:
        manifest = CorpusManifest.model_validate(raw_manifest)
    except ValidationError as e:
        report.add_issue("manifest", f"invalid structure: {e.error_count()} error(s)")
        report.completed_at = datetime.now()
        return report

    if expected_model_id is not None and manifest.model_id != expected_model_id:
        report.add_issue("manifest", f"unexpected model id {manifest.model_id!r}, expected {expected_model_id!r}")
    if expected_dimensions is not None and manifest.dimensions != expected_dimensions:
        report.add_issue("manifest", f"unexpected dimensions {manifest.dimensions}, expected {expected_dimensions}")
    if len(manifest.clusters) != manifest.k:
        report.add_issue("manifest", f"clusters array length {len(manifest.clusters)} does not match k {manifest.k}")

    dimensions = manifest.dimensions

    # 2. Centroids
    centroids = _load_json(base_dir / manifest.centroids_file, "centroids", report)
    if centroids is not None:
        if not isinstance(centroids, list):
            report.add_issue("centroids", "file does not contain a list")
        else:
            if len(centroids) != manifest.k:
                report.add_issue("centroids", f"found {len(centroids)} centroids, manifest k is {manifest.k}")
            for position, entry in enumerate(centroids):
                context = f"centroid {position}"
                if not isinstance(entry, dict) or "clusterId" not in entry or not isinstance(entry.get("centroid"), list):
                    report.add_issue(context, "invalid structure")
                    continue
                context = f"centroid {position} (cluster {entry['clusterId']})"
                if len(entry["centroid"]) != dimensions:
                    report.add_issue(context, f"has {len(entry['centroid'])} dimensions, expected {dimensions}")
                    continue
                try:
                    vector = np.asarray([entry["centroid"]], dtype=np.float64)
                except (TypeError, ValueError):
                    vector = None
                if vector is None or vector.ndim != 2:
                    report.add_issue(context, "contains non-numeric values")
                    continue
                _check_vectors(vector, context, tolerance, report)

    # 3. Clusters
    for entry in manifest.clusters:
        context = f"cluster {entry.cluster_id}"
        report.clusters_checked += 1

        if entry.count == 0:
            if entry.embeddings_file is not None or entry.metadata_file is not None:
                report.add_issue(context, "count is 0 but file paths are not null")
            continue

        if not entry.embeddings_file or not entry.metadata_file:
            report.add_issue(context, "count > 0 but file paths are missing")
            continue

        metadata = _load_json(base_dir / entry.metadata_file, context, report)
        if metadata is not None:
            if not isinstance(metadata, list):
                report.add_issue(context, "metadata is not a list")
            else:
                if len(metadata) != entry.count:
                    report.add_issue(context, f"metadata holds {len(metadata)} entries, manifest count is {entry.count}")
                for position, doc in enumerate(metadata):
                    if not isinstance(doc, dict) or not isinstance(doc.get("id"), str) or not isinstance(doc.get("text"), str):
                        report.add_issue(f"{context} metadata {position}", "missing string 'id' or 'text'")

        embeddings_path = base_dir / entry.embeddings_file
        try:
            byte_size = embeddings_path.stat().st_size
        except OSError as e:
            report.add_issue(context, f"cannot read {entry.embeddings_file}: {e}")
            continue

        expected_bytes = entry.count * dimensions * EMBEDDING_DTYPE.itemsize
        if byte_size != expected_bytes:
            report.add_issue(context, f"embeddings file is {byte_size} bytes, expected {expected_bytes}")
            continue

        try:
            flat = np.fromfile(embeddings_path, dtype=EMBEDDING_DTYPE)
        except OSError as e:
            report.add_issue(context, f"cannot read {entry.embeddings_file}: {e}")
            continue
        _check_vectors(flat.reshape(entry.count, dimensions), context, tolerance, report)

    report.completed_at = datetime.now()
    logger.log_operation("corpus.validate", "success" if report.ok else "issues_found", {
        "manifest_path": str(manifest_path),
        "clusters_checked": report.clusters_checked,
        "vectors_checked": report.vectors_checked,
        "issue_count": len(report.issues)
    })
    return report
