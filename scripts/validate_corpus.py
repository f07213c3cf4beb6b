#!/usr/bin/env python3
"""
Corpus Validation Utility
Checks a clustered embedding corpus on disk before it is deployed behind the search engine.
"""

import argparse
import json
import sys
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from district_search.core.config import (
    CORPUS_MANIFEST_PATH,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MODEL_ID,
    NORMALIZATION_TOLERANCE,
)
from district_search.vector.validation import validate_corpus


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate a clustered embedding corpus")
    parser.add_argument(
        "--manifest",
        default=CORPUS_MANIFEST_PATH,
        help=f"Path to manifest.json (default: {CORPUS_MANIFEST_PATH})"
    )
    parser.add_argument(
        "--model-id",
        default=EMBEDDING_MODEL_ID,
        help=f"Expected embedding model id (default: {EMBEDDING_MODEL_ID})"
    )
    parser.add_argument(
        "--dimensions",
        type=int,
        default=EMBEDDING_DIMENSIONS,
        help=f"Expected embedding dimensions (default: {EMBEDDING_DIMENSIONS})"
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=NORMALIZATION_TOLERANCE,
        help=f"Allowed deviation from unit L2 norm (default: {NORMALIZATION_TOLERANCE})"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON"
    )
    return parser


def main(argv=None) -> int:
    """Validate the corpus and return a process exit code."""
    args = build_parser().parse_args(argv)

    print(f"Starting validation of corpus: {args.manifest}")
    report = validate_corpus(
        args.manifest,
        expected_model_id=args.model_id,
        expected_dimensions=args.dimensions,
        tolerance=args.tolerance
    )

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"Checked {report.clusters_checked} clusters, {report.vectors_checked} vectors")
        for issue in report.issues:
            print(f"  ✗ {issue}")

    if report.ok:
        print("✓ Corpus validation passed")
        return 0

    print(f"✗ Corpus validation failed with {len(report.issues)} issue(s)")
    return 1


if __name__ == "__main__":
    sys.exit(main())
