from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    """Fixed-width ISO-8601 so that stored timestamps sort lexically."""
    return as_utc(value).isoformat(timespec="microseconds")


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc), PlainSerializer(isoformat_utc, when_used="json")]
NonBlankStr = Annotated[str, AfterValidator(_not_blank)]


class EntityMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None
    relation_count: int | None = None
    source: str | None = None


class RelationMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    created_at: UtcDatetime | None = None
    source: str | None = None
    confidence: float | None = None


class Entity(BaseModel):
    """A named, typed node with free-text observations.

    ``search_text`` is derived on every save; whatever the caller puts there is
    discarded.
    """

    entity_id: NonBlankStr
    name: NonBlankStr
    entity_type: str = ""
    observations: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    metadata: EntityMetadata = Field(default_factory=EntityMetadata)
    search_text: str | None = None

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    def compute_search_text(self) -> str:
        parts = [self.name, self.entity_type, *self.observations, *self.tags]
        return " ".join(parts).lower()


class Relation(BaseModel):
    """A directed, typed edge. ``relation_id`` is always re-derived on save."""

    relation_id: str | None = None
    from_entity_id: NonBlankStr
    to_entity_id: NonBlankStr
    relation_type: NonBlankStr
    strength: float = 1.0
    metadata: RelationMetadata = Field(default_factory=RelationMetadata)

    @field_validator("strength", mode="before")
    @classmethod
    def _default_strength(cls, v: Any) -> Any:
        return 1.0 if v is None else v


class KnowledgeGraph(BaseModel):
    entities: list[Entity] = Field(default_factory=list)
    relations: list[Relation] = Field(default_factory=list)


class SearchIndex(BaseModel):
    frequent_terms: list[str] = Field(default_factory=list)
    entity_names: list[str] = Field(default_factory=list)


class GraphSummary(BaseModel):
    user_id: str
    total_entities: int = 0
    total_relations: int = 0
    entity_types: dict[str, int] = Field(default_factory=dict)
    recent_entities: list[str] = Field(default_factory=list)
    search_index: SearchIndex = Field(default_factory=SearchIndex)
    updated_at: UtcDatetime = Field(default_factory=utcnow)
