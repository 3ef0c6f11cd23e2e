"""Bounded breadth-first expansion over the entity and relation stores.

The walk is level-synchronous: every node of a BFS level is fetched with one
entity query and (below the depth limit) one relation query. The resulting
sets are the same as expanding one dequeued node at a time:

- a node is visited at most once, at the smallest depth it is reached;
- edges are emitted only while expanding a node below ``depth``, so edges
  between two nodes at the maximum depth are never included, while the edge
  leading into such a node from the level above is.

There is no snapshot isolation: writes landing between two level fetches may
be partially reflected.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Sequence

from ..errors import GraphValidationError, TraversalTimeoutError
from ..models import Entity, KnowledgeGraph, Relation
from .entities import EntityStore, check_user
from .relations import RelationStore

logger = logging.getLogger(__name__)


class AdjacencySource(Protocol):
    """What the traversal needs to know about the graph."""

    async def fetch_entities(self, user_id: str, entity_ids: Sequence[str]) -> list[Entity]: ...

    async def fetch_relations(self, user_id: str, entity_ids: Sequence[str]) -> list[Relation]: ...


class StoreAdjacency:
    def __init__(self, entities: EntityStore, relations: RelationStore):
        self.entities = entities
        self.relations = relations

    async def fetch_entities(self, user_id: str, entity_ids: Sequence[str]) -> list[Entity]:
        return await self.entities.get_entities_batch(user_id, entity_ids)

    async def fetch_relations(self, user_id: str, entity_ids: Sequence[str]) -> list[Relation]:
        return await self.relations.get_relations_for(user_id, entity_ids)


class GraphTraversal:
    def __init__(self, source: AdjacencySource, *, timeout: float | None = None):
        self.source = source
        self.timeout = timeout

    async def get_connected_entities(
        self,
        user_id: str,
        start_entity_id: str,
        depth: int = 1,
        *,
        timeout: float | None = None,
    ) -> KnowledgeGraph:
        """Entities within ``depth`` hops of ``start_entity_id`` plus the edges used to reach them.

        Exceeding ``timeout`` seconds raises :class:`TraversalTimeoutError`;
        partial results are dropped either way.
        """
        check_user(user_id)
        if depth < 0:
            raise GraphValidationError(f"depth must be >= 0, got {depth}")

        limit = self.timeout if timeout is None else timeout
        if limit is None:
            return await self._walk(user_id, start_entity_id, depth)
        try:
            return await asyncio.wait_for(self._walk(user_id, start_entity_id, depth), timeout=limit)
        except asyncio.TimeoutError as e:
            logger.warning("Traversal from %s/%s exceeded %.3fs", user_id, start_entity_id, limit)
            raise TraversalTimeoutError(
                f"traversal from {start_entity_id!r} (depth {depth}) exceeded {limit}s"
            ) from e

    async def _walk(self, user_id: str, start_entity_id: str, depth: int) -> KnowledgeGraph:
        visited: set[str] = set()
        entities: list[Entity] = []
        relations: list[Relation] = []
        seen_edges: set[tuple[str, str]] = set()

        frontier = [start_entity_id]
        level = 0
        while frontier and level <= depth:
            visited.update(frontier)

            found = {e.entity_id: e for e in await self.source.fetch_entities(user_id, frontier)}
            entities.extend(found[eid] for eid in frontier if eid in found)

            if level == depth:
                break

            next_frontier: dict[str, None] = {}
            edges = await self.source.fetch_relations(user_id, frontier)
            # Emit edges node by node in frontier order, as a FIFO walk would.
            members = set(frontier)
            for node in frontier:
                for rel in edges:
                    if node not in (rel.from_entity_id, rel.to_entity_id):
                        continue
                    edge_key = (rel.from_entity_id, rel.to_entity_id)
                    if edge_key not in seen_edges:
                        seen_edges.add(edge_key)
                        relations.append(rel)
                    neighbour = rel.to_entity_id if rel.from_entity_id == node else rel.from_entity_id
                    if neighbour not in visited and neighbour not in members:
                        next_frontier.setdefault(neighbour, None)

            frontier = list(next_frontier)
            level += 1

        return KnowledgeGraph(entities=entities, relations=relations)
