from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from ..db.base import Document, DocumentStore
from ..errors import GraphValidationError
from ..models import Relation, isoformat_utc, utcnow
from .entities import check_user
from .schema import Collections

logger = logging.getLogger(__name__)


def relation_id_for(from_entity_id: str, relation_type: str, to_entity_id: str) -> str:
    return f"{from_entity_id}-{relation_type}-{to_entity_id}"


def coerce_relation(relation: Relation | Mapping[str, Any]) -> Relation:
    try:
        if isinstance(relation, Relation):
            return Relation.model_validate(relation.model_dump())
        return Relation.model_validate(relation)
    except ValidationError as e:
        raise GraphValidationError(f"invalid relation: {e}") from e


def _touching(user_id: str, entity_ids: list[str]) -> dict[str, Any]:
    if len(entity_ids) == 1:
        (entity_id,) = entity_ids
        ends: list[dict[str, Any]] = [{"from_entity_id": entity_id}, {"to_entity_id": entity_id}]
    else:
        ends = [{"from_entity_id": {"$in": entity_ids}}, {"to_entity_id": {"$in": entity_ids}}]
    return {"user_id": user_id, "$or": ends}


class RelationStore:
    """Directed, typed edges stored one document per ordered endpoint pair.

    The stored key is ``(from_entity_id, to_entity_id)`` alone: saving another
    relation type between the same pair replaces the edge, and so does saving
    the same pair for a different user.
    """

    def __init__(self, store: DocumentStore, cols: Collections, *, on_change: Callable[[str], None] | None = None):
        self.store = store
        self.cols = cols
        self._on_change = on_change or (lambda _user_id: None)

    @staticmethod
    def _doc_to_relation(doc: Document) -> Relation:
        return Relation.model_validate({k: v for k, v in doc.items() if k != "user_id"})

    async def save_relation(self, user_id: str, relation: Relation | Mapping[str, Any]) -> Relation:
        check_user(user_id)
        relation = coerce_relation(relation)
        key = {"from_entity_id": relation.from_entity_id, "to_entity_id": relation.to_entity_id}

        existing = await self.store.find_one(self.cols.relations, key)
        meta = relation.metadata.model_dump(mode="json", exclude_none=True)
        if existing and existing.get("metadata", {}).get("created_at"):
            meta["created_at"] = existing["metadata"]["created_at"]
        elif "created_at" not in meta:
            meta["created_at"] = isoformat_utc(utcnow())

        doc = {
            "user_id": user_id,
            "relation_id": relation_id_for(relation.from_entity_id, relation.relation_type, relation.to_entity_id),
            "from_entity_id": relation.from_entity_id,
            "to_entity_id": relation.to_entity_id,
            "relation_type": relation.relation_type,
            "strength": relation.strength,
            "metadata": meta,
        }
        await self.store.replace_one(self.cols.relations, key, doc)

        self._on_change(user_id)
        return self._doc_to_relation(doc)

    async def get_relations(self, user_id: str, entity_id: str) -> list[Relation]:
        docs = await self.store.find(self.cols.relations, _touching(check_user(user_id), [entity_id]))
        return [self._doc_to_relation(doc) for doc in docs]

    async def get_relations_for(self, user_id: str, entity_ids: Iterable[str]) -> list[Relation]:
        """Relations with either endpoint in ``entity_ids`` (one query)."""
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return []
        docs = await self.store.find(self.cols.relations, _touching(check_user(user_id), ids))
        return [self._doc_to_relation(doc) for doc in docs]

    async def delete_relation(self, user_id: str, from_entity_id: str, to_entity_id: str) -> bool:
        check_user(user_id)
        removed = await self.store.delete_one(
            self.cols.relations,
            {"user_id": user_id, "from_entity_id": from_entity_id, "to_entity_id": to_entity_id},
        )
        if removed:
            self._on_change(user_id)
        return removed > 0

    async def delete_relations_touching(self, user_id: str, entity_id: str) -> int:
        return await self.store.delete_many(self.cols.relations, _touching(check_user(user_id), [entity_id]))

    async def delete_orphans(self, user_id: str, entity_ids: Iterable[str]) -> int:
        """Remove relations of ``user_id`` with an endpoint outside ``entity_ids``."""
        ids = list(entity_ids)
        removed = await self.store.delete_many(
            self.cols.relations,
            {
                "user_id": check_user(user_id),
                "$or": [{"from_entity_id": {"$nin": ids}}, {"to_entity_id": {"$nin": ids}}],
            },
        )
        if removed:
            logger.info("Removed %d orphaned relations for user %s", removed, user_id)
        return removed

    async def list_relations(self, user_id: str) -> list[Relation]:
        docs = await self.store.find(self.cols.relations, {"user_id": check_user(user_id)})
        return [self._doc_to_relation(doc) for doc in docs]

    async def count_relations(self, user_id: str) -> int:
        return await self.store.count(self.cols.relations, {"user_id": check_user(user_id)})
