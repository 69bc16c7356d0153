"""Search over the persisted graph."""

from .engine import NodeWithRelationships, SearchEngine, SearchMetadata, SearchResult, VaultQueries

__all__ = [
    "NodeWithRelationships",
    "SearchEngine",
    "SearchMetadata",
    "SearchResult",
    "VaultQueries",
]
