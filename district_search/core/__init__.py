# Package initialization for core module
from .errors import (
    ClusteredSearchError,
    DimensionMismatchError,
    EmptyIndexError,
    EmptyStoreError,
    MalformedClusterDataError,
    DuplicateClusterError,
    CorpusLoadError,
    SearchTimeoutError,
)

__all__ = [
    'ClusteredSearchError',
    'DimensionMismatchError',
    'EmptyIndexError',
    'EmptyStoreError',
    'MalformedClusterDataError',
    'DuplicateClusterError',
    'CorpusLoadError',
    'SearchTimeoutError',
]
