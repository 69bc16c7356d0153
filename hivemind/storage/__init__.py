"""Persistent storage for the knowledge graph and the indexing pipeline."""

from .database import GraphSnapshot, GraphStore
from .vault_index import VaultIndexStorage

__all__ = [
    "GraphSnapshot",
    "GraphStore",
    "VaultIndexStorage",
]
