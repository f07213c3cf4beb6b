"""
District search - clustered approximate semantic search over district and school records.
"""

from .core.config import VERSION as __version__
from .vector import ClusteredSearchEngine, SearchResult, build_engine

__all__ = ['ClusteredSearchEngine', 'SearchResult', 'build_engine', '__version__']
