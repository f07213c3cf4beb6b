"""
Search configuration - single point of control for corpus location and search defaults.
Values are read from the environment; defaults match the published district corpus.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

# Corpus configuration
CORPUS_MANIFEST_PATH = os.getenv("CORPUS_MANIFEST_PATH", "./data/embeddings/school_districts/manifest.json")
EMBEDDING_MODEL_ID = os.getenv("EMBEDDING_MODEL_ID", "Snowflake/snowflake-arctic-embed-xs")
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "384"))
NORMALIZATION_TOLERANCE = float(os.getenv("NORMALIZATION_TOLERANCE", "1e-5"))
LOADER_MAX_WORKERS = int(os.getenv("LOADER_MAX_WORKERS", "4"))

# Two-stage search defaults
TOP_M_CLUSTERS = int(os.getenv("TOP_M_CLUSTERS", "3"))
TOP_K_DOCS_PER_CLUSTER = int(os.getenv("TOP_K_DOCS_PER_CLUSTER", "5"))
FINAL_TOP_N_DOCS = int(os.getenv("FINAL_TOP_N_DOCS", "5"))

# Stage 2 fan-out (1 = sequential scan of selected clusters)
SEARCH_MAX_WORKERS = int(os.getenv("SEARCH_MAX_WORKERS", "1"))
SEARCH_TIMEOUT_SEC = os.getenv("SEARCH_TIMEOUT_SEC")  # unset = no deadline

# Debug flag
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_search_defaults() -> Dict[str, int]:
    """Get default top-M, top-K and final top-N search parameters."""
    return {
        "top_m_clusters": TOP_M_CLUSTERS,
        "top_k_per_cluster": TOP_K_DOCS_PER_CLUSTER,
        "final_top_n": FINAL_TOP_N_DOCS,
    }


def get_search_timeout() -> Optional[float]:
    """Get the search deadline in seconds, or None when no deadline is configured."""
    if SEARCH_TIMEOUT_SEC is None or SEARCH_TIMEOUT_SEC.strip() == "":
        return None
    return float(SEARCH_TIMEOUT_SEC)


def get_manifest_path() -> Path:
    """Get the configured corpus manifest path."""
    return Path(CORPUS_MANIFEST_PATH)


def validate_search_config() -> List[str]:
    """Validate search configuration and return any issues."""
    issues = []

    if EMBEDDING_DIMENSIONS < 1:
        issues.append("EMBEDDING_DIMENSIONS must be >= 1")

    if TOP_M_CLUSTERS < 1:
        issues.append("TOP_M_CLUSTERS must be >= 1")

    if TOP_K_DOCS_PER_CLUSTER < 1:
        issues.append("TOP_K_DOCS_PER_CLUSTER must be >= 1")

    if FINAL_TOP_N_DOCS < 1:
        issues.append("FINAL_TOP_N_DOCS must be >= 1")

    if SEARCH_MAX_WORKERS < 1:
        issues.append("SEARCH_MAX_WORKERS must be >= 1")

    if LOADER_MAX_WORKERS < 1:
        issues.append("LOADER_MAX_WORKERS must be >= 1")

    if NORMALIZATION_TOLERANCE <= 0:
        issues.append("NORMALIZATION_TOLERANCE must be > 0")

    try:
        timeout = get_search_timeout()
        if timeout is not None and timeout <= 0:
            issues.append("SEARCH_TIMEOUT_SEC must be > 0 when set")
    except ValueError:
        issues.append(f"Invalid SEARCH_TIMEOUT_SEC: {SEARCH_TIMEOUT_SEC}")

    return issues


def get_search_engine():
    """Build a search engine from the configured corpus manifest.

    The caller owns the engine; close() it, or use it in a with block, to stop
    its scan workers when SEARCH_MAX_WORKERS > 1.
    """
    from ..vector.loader import build_engine

    return build_engine(
        get_manifest_path(),
        expected_dimensions=EMBEDDING_DIMENSIONS,
        max_workers=SEARCH_MAX_WORKERS,
        loader_max_workers=LOADER_MAX_WORKERS,
    )
