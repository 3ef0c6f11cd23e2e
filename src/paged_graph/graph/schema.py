from __future__ import annotations

from dataclasses import dataclass
from typing import List

from ..db.base import IndexSpec

DEFAULT_USER = "default"


@dataclass(frozen=True)
class Collections:
    """Names of the three collections backing one graph store."""

    entities: str
    relations: str
    index: str

    @classmethod
    def with_prefix(cls, prefix: str = "mcp_memory") -> "Collections":
        return cls(
            entities=f"{prefix}_entities",
            relations=f"{prefix}_relations",
            index=f"{prefix}_index",
        )

    def all(self) -> List[str]:
        return [self.entities, self.relations, self.index]


def index_specs(cols: Collections) -> List[IndexSpec]:
    """Indexes every engine with secondary indexes should carry.

    The relation uniqueness constraint covers the endpoint pair only, without
    the relation type or the user.
    """
    return [
        IndexSpec(cols.entities, ("user_id", "entity_id"), "user_id_entity_id_unique", unique=True),
        IndexSpec(cols.entities, ("user_id", "entity_type"), "user_id_entity_type"),
        IndexSpec(cols.entities, ("user_id", "metadata.updated_at"), "user_id_updated_at"),
        IndexSpec(cols.relations, ("user_id", "from_entity_id"), "user_id_from_entity_id"),
        IndexSpec(cols.relations, ("user_id", "to_entity_id"), "user_id_to_entity_id"),
        IndexSpec(cols.relations, ("user_id", "relation_type"), "user_id_relation_type"),
        IndexSpec(cols.relations, ("from_entity_id", "to_entity_id"), "from_to_unique", unique=True),
        IndexSpec(cols.index, ("user_id",), "user_id_unique", unique=True),
    ]
