"""
Paged graph storage facade.

Composes the entity store, relation store, summary index and traversal behind
the per-user ``save_for_user`` / ``load_for_user`` / ``exists_for_user`` /
``clear_for_user`` / ``list_users`` contract that storage-selection code
expects, and re-exposes the fine-grained operations.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from ..db.base import DocumentStore
from ..errors import GraphValidationError
from ..models import Entity, GraphSummary, KnowledgeGraph, Relation
from ..settings import PagedGraphSettings, settings as default_settings
from .entities import EntityStore, check_user
from .relations import RelationStore
from .schema import DEFAULT_USER, Collections, index_specs
from .summary import SummaryIndex, SummaryRefresher
from .traversal import GraphTraversal, StoreAdjacency

logger = logging.getLogger(__name__)


class PagedGraphStorage:
    """Knowledge graph stored as one document per entity and per relation.

    The document store is owned by the caller (or by :meth:`from_settings`) and
    injected; nothing here reaches for global connection state.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        collection_prefix: str = "mcp_memory",
        cfg: PagedGraphSettings | None = None,
    ):
        cfg = cfg or default_settings
        self.store = store
        self.cols = Collections.with_prefix(collection_prefix)

        self.summaries = SummaryIndex(
            store,
            self.cols,
            recent_limit=cfg.summary_recent_limit,
            term_limit=cfg.summary_term_limit,
            term_sample=cfg.summary_term_sample,
        )
        self.refresher = SummaryRefresher(self.summaries.update_summary_index, maxsize=cfg.summary_queue_size)
        self.summaries.on_miss = self.refresher.schedule

        self.relations = RelationStore(store, self.cols, on_change=self.refresher.schedule)
        self.entities = EntityStore(
            store,
            self.cols,
            on_change=self.refresher.schedule,
            cascade=self.relations.delete_relations_touching,
            search_limit=cfg.search_default_limit,
        )
        self.traversal = GraphTraversal(StoreAdjacency(self.entities, self.relations), timeout=cfg.traversal_timeout)

    @classmethod
    def from_settings(cls, cfg: PagedGraphSettings | None = None) -> "PagedGraphStorage":
        from ..db.factory import build_document_store

        cfg = cfg or default_settings
        cols = Collections.with_prefix(cfg.collection_prefix)
        store = build_document_store(cfg, collections=cols.all(), indexes=index_specs(cols))
        return cls(store, collection_prefix=cfg.collection_prefix, cfg=cfg)

    # Lifecycle

    async def connect(self) -> None:
        self.refresher.open()
        await self.store.connect()

    async def close(self) -> None:
        await self.refresher.close()
        await self.store.close()

    async def __aenter__(self) -> "PagedGraphStorage":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # Entity operations

    async def save_entity(self, user_id: str, entity: Entity | Mapping[str, Any]) -> Entity:
        return await self.entities.save_entity(user_id, entity)

    async def get_entity(self, user_id: str, entity_id: str) -> Entity | None:
        return await self.entities.get_entity(user_id, entity_id)

    async def search_entities(self, user_id: str, query: str, limit: int | None = None) -> list[Entity]:
        return await self.entities.search_entities(user_id, query, limit)

    async def delete_entity(self, user_id: str, entity_id: str) -> bool:
        return await self.entities.delete_entity(user_id, entity_id)

    async def save_entities_batch(self, user_id: str, entities: Iterable[Entity | Mapping[str, Any]]) -> list[Entity]:
        return await self.entities.save_entities_batch(user_id, entities)

    async def get_entities_batch(self, user_id: str, entity_ids: Iterable[str]) -> list[Entity]:
        return await self.entities.get_entities_batch(user_id, entity_ids)

    # Relation operations

    async def save_relation(self, user_id: str, relation: Relation | Mapping[str, Any]) -> Relation:
        return await self.relations.save_relation(user_id, relation)

    async def get_relations(self, user_id: str, entity_id: str) -> list[Relation]:
        return await self.relations.get_relations(user_id, entity_id)

    async def delete_relation(self, user_id: str, from_entity_id: str, to_entity_id: str) -> bool:
        return await self.relations.delete_relation(user_id, from_entity_id, to_entity_id)

    # Graph operations

    async def get_connected_entities(
        self, user_id: str, entity_id: str, depth: int = 1, *, timeout: float | None = None
    ) -> KnowledgeGraph:
        return await self.traversal.get_connected_entities(user_id, entity_id, depth, timeout=timeout)

    async def get_user_summary(self, user_id: str) -> GraphSummary:
        return await self.summaries.get_user_summary(user_id)

    async def update_summary_index(self, user_id: str) -> GraphSummary | None:
        return await self.summaries.update_summary_index(user_id)

    # Per-user lifecycle

    async def save_for_user(self, user_id: str, graph: KnowledgeGraph | Mapping[str, Any]) -> None:
        if not isinstance(graph, KnowledgeGraph):
            try:
                graph = KnowledgeGraph.model_validate(graph)
            except ValidationError as e:
                raise GraphValidationError(f"invalid knowledge graph: {e}") from e
        await self.entities.save_entities_batch(user_id, graph.entities)
        for relation in graph.relations:
            await self.relations.save_relation(user_id, relation)

    async def load_for_user(self, user_id: str) -> KnowledgeGraph:
        entities, relations = await asyncio.gather(
            self.entities.list_entities(user_id),
            self.relations.list_relations(user_id),
        )
        return KnowledgeGraph(entities=entities, relations=relations)

    async def exists_for_user(self, user_id: str) -> bool:
        return await self.entities.count_entities(user_id) > 0

    async def clear_for_user(self, user_id: str) -> None:
        """Delete entities, relations and the summary as three independent operations."""
        check_user(user_id)
        flt = {"user_id": user_id}
        results = await asyncio.gather(
            self.store.delete_many(self.cols.entities, flt),
            self.store.delete_many(self.cols.relations, flt),
            self.summaries.delete_summary(user_id),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        for err in errors:
            logger.error("Clearing data for user %s partially failed: %s", user_id, err)
        if errors:
            raise errors[0]

    async def list_users(self) -> list[str]:
        return sorted(await self.store.distinct(self.cols.entities, "user_id"))

    # Single-tenant shims bound to the default user

    async def save(self, graph: KnowledgeGraph | Mapping[str, Any]) -> None:
        await self.save_for_user(DEFAULT_USER, graph)

    async def load(self) -> KnowledgeGraph:
        return await self.load_for_user(DEFAULT_USER)

    async def exists(self) -> bool:
        return await self.exists_for_user(DEFAULT_USER)

    async def clear(self) -> None:
        await self.clear_for_user(DEFAULT_USER)

    # Maintenance

    async def cleanup(self) -> int:
        """Drop relations whose endpoints no longer exist and refresh every summary.

        Returns the number of relations removed.
        """
        users = set(await self.store.distinct(self.cols.entities, "user_id"))
        users.update(await self.store.distinct(self.cols.relations, "user_id"))
        removed = 0
        for user_id in sorted(users):
            entity_ids = await self.store.distinct(self.cols.entities, "entity_id", {"user_id": user_id})
            removed += await self.relations.delete_orphans(user_id, entity_ids)
            await self.summaries.update_summary_index(user_id)
        return removed
