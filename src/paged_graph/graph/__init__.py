"""Paged knowledge graph: entity/relation stores, traversal and summary index."""

from .entities import EntityStore
from .relations import RelationStore, relation_id_for
from .schema import Collections, index_specs
from .storage import PagedGraphStorage
from .summary import SummaryIndex, SummaryRefresher
from .traversal import AdjacencySource, GraphTraversal, StoreAdjacency

__all__ = [
    "AdjacencySource",
    "Collections",
    "EntityStore",
    "GraphTraversal",
    "PagedGraphStorage",
    "RelationStore",
    "StoreAdjacency",
    "SummaryIndex",
    "SummaryRefresher",
    "index_specs",
    "relation_id_for",
]
