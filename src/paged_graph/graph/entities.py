from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from ..db.base import Document, DocumentStore
from ..errors import CascadeDeleteError, DocumentStoreError, GraphValidationError
from ..models import Entity, utcnow
from .schema import Collections

logger = logging.getLogger(__name__)

RefreshHook = Callable[[str], None]


def coerce_entity(entity: Entity | Mapping[str, Any]) -> Entity:
    """Validate caller input before anything reaches the store."""
    try:
        if isinstance(entity, Entity):
            return Entity.model_validate(entity.model_dump())
        return Entity.model_validate(entity)
    except ValidationError as e:
        raise GraphValidationError(f"invalid entity: {e}") from e


def check_user(user_id: str) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise GraphValidationError("user_id must be a non-blank string")
    return user_id


class EntityStore:
    """Per-user entity documents: upsert, point/batch reads, search and delete.

    ``on_change`` is called with the user id after every mutation; it must not
    block (the summary refresher just enqueues).
    """

    def __init__(
        self,
        store: DocumentStore,
        cols: Collections,
        *,
        on_change: RefreshHook | None = None,
        cascade: Callable[[str, str], Any] | None = None,
        search_limit: int = 20,
    ):
        self.store = store
        self.cols = cols
        self._on_change = on_change or (lambda _user_id: None)
        self._cascade = cascade
        self.search_limit = search_limit

    def _entity_to_doc(self, user_id: str, entity: Entity, existing: Document | None) -> Document:
        now = utcnow()
        meta = entity.metadata.model_copy(update={"updated_at": now})
        if meta.created_at is None:
            meta.created_at = now
        doc = {
            "user_id": user_id,
            **entity.model_dump(mode="json", exclude={"metadata", "search_text"}),
            "metadata": meta.model_dump(mode="json", exclude_none=True),
            "search_text": entity.compute_search_text(),
        }
        if existing and existing.get("metadata", {}).get("created_at"):
            doc["metadata"]["created_at"] = existing["metadata"]["created_at"]
        return doc

    @staticmethod
    def _doc_to_entity(doc: Document) -> Entity:
        return Entity.model_validate({k: v for k, v in doc.items() if k != "user_id"})

    async def save_entity(self, user_id: str, entity: Entity | Mapping[str, Any]) -> Entity:
        check_user(user_id)
        entity = coerce_entity(entity)
        key = {"user_id": user_id, "entity_id": entity.entity_id}

        existing = await self.store.find_one(self.cols.entities, key)
        doc = self._entity_to_doc(user_id, entity, existing)
        await self.store.replace_one(self.cols.entities, key, doc)

        self._on_change(user_id)
        return self._doc_to_entity(doc)

    async def get_entity(self, user_id: str, entity_id: str) -> Entity | None:
        doc = await self.store.find_one(self.cols.entities, {"user_id": check_user(user_id), "entity_id": entity_id})
        return self._doc_to_entity(doc) if doc else None

    async def search_entities(self, user_id: str, query: str, limit: int | None = None) -> list[Entity]:
        check_user(user_id)
        limit = self.search_limit if limit is None else limit
        if not query or not query.strip() or limit <= 0:
            return []
        hits = await self.store.text_search(
            self.cols.entities, "search_text", query, {"user_id": user_id}, limit=limit
        )
        return [self._doc_to_entity(doc) for doc, _score in hits]

    async def delete_entity(self, user_id: str, entity_id: str) -> bool:
        """Delete an entity, then every relation touching it.

        No transaction spans the two steps: if the relation cleanup fails the
        entity stays deleted and :class:`CascadeDeleteError` is raised.
        """
        check_user(user_id)
        removed = await self.store.delete_one(self.cols.entities, {"user_id": user_id, "entity_id": entity_id})
        try:
            if self._cascade is not None:
                await self._cascade(user_id, entity_id)
        except DocumentStoreError as e:
            logger.error("Cascade delete failed for %s/%s: %s", user_id, entity_id, e)
            raise CascadeDeleteError(user_id, entity_id, str(e)) from e
        finally:
            self._on_change(user_id)
        return removed > 0

    async def save_entities_batch(self, user_id: str, entities: Iterable[Entity | Mapping[str, Any]]) -> list[Entity]:
        check_user(user_id)
        # Last occurrence of an id wins.
        batch = {e.entity_id: e for e in (coerce_entity(x) for x in entities)}
        if not batch:
            return []

        existing = await self.store.find(
            self.cols.entities, {"user_id": user_id, "entity_id": {"$in": list(batch)}}
        )
        by_id = {doc["entity_id"]: doc for doc in existing}
        docs = [self._entity_to_doc(user_id, e, by_id.get(eid)) for eid, e in batch.items()]
        await self.store.bulk_replace(
            self.cols.entities,
            [({"user_id": user_id, "entity_id": doc["entity_id"]}, doc) for doc in docs],
        )

        self._on_change(user_id)
        return [self._doc_to_entity(doc) for doc in docs]

    async def get_entities_batch(self, user_id: str, entity_ids: Iterable[str]) -> list[Entity]:
        check_user(user_id)
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return []
        docs = await self.store.find(self.cols.entities, {"user_id": user_id, "entity_id": {"$in": ids}})
        return [self._doc_to_entity(doc) for doc in docs]

    async def list_entities(self, user_id: str) -> list[Entity]:
        docs = await self.store.find(self.cols.entities, {"user_id": check_user(user_id)})
        return [self._doc_to_entity(doc) for doc in docs]

    async def count_entities(self, user_id: str) -> int:
        return await self.store.count(self.cols.entities, {"user_id": check_user(user_id)})
