"""
Paged Graph

Per-user knowledge graph storage where every entity and relation is its own
document: partial reads, bounded breadth-first traversal and an asynchronously
maintained summary index.
"""

from .errors import (
    CascadeDeleteError,
    DocumentStoreError,
    GraphValidationError,
    IndexMaintenanceError,
    PagedGraphError,
    StoreConnectionError,
    TraversalTimeoutError,
)
from .graph.storage import PagedGraphStorage
from .models import Entity, GraphSummary, KnowledgeGraph, Relation

__version__ = "0.1.0"

__all__ = [
    "PagedGraphStorage",
    "Entity",
    "Relation",
    "KnowledgeGraph",
    "GraphSummary",
    "PagedGraphError",
    "DocumentStoreError",
    "StoreConnectionError",
    "GraphValidationError",
    "IndexMaintenanceError",
    "CascadeDeleteError",
    "TraversalTimeoutError",
]
