from __future__ import annotations

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..errors import (
    CascadeDeleteError,
    DocumentStoreError,
    GraphValidationError,
    StoreConnectionError,
    TraversalTimeoutError,
)
from ..graph.storage import PagedGraphStorage
from ..models import Entity, GraphSummary, KnowledgeGraph, Relation
from .auth import api_key_guard


class EntityLookupIn(BaseModel):
    entity_ids: list[str] = Field(default_factory=list)


class SaveGraphOut(BaseModel):
    ok: bool = True
    entities: int
    relations: int


def install_error_handlers(app: FastAPI) -> None:
    """Map store errors onto HTTP status codes."""

    def _handler(status_code: int):
        async def handle(_request: Request, exc: Exception) -> JSONResponse:
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

        return handle

    app.add_exception_handler(GraphValidationError, _handler(422))
    app.add_exception_handler(StoreConnectionError, _handler(503))
    app.add_exception_handler(TraversalTimeoutError, _handler(504))
    app.add_exception_handler(CascadeDeleteError, _handler(500))
    app.add_exception_handler(DocumentStoreError, _handler(502))


def build_graph_router(storage: PagedGraphStorage, *, api_key: str | None = None) -> APIRouter:
    r = APIRouter(prefix="/v1/graph", tags=["graph"], dependencies=[Depends(api_key_guard(api_key))])

    @r.get("/users")
    async def list_users():
        return {"users": await storage.list_users()}

    # Whole-graph lifecycle

    @r.get("/users/{user_id}", response_model=KnowledgeGraph)
    async def load_graph(user_id: str):
        return await storage.load_for_user(user_id)

    @r.put("/users/{user_id}", response_model=SaveGraphOut)
    async def save_graph(user_id: str, payload: KnowledgeGraph):
        await storage.save_for_user(user_id, payload)
        return SaveGraphOut(entities=len(payload.entities), relations=len(payload.relations))

    @r.delete("/users/{user_id}")
    async def clear_graph(user_id: str):
        await storage.clear_for_user(user_id)
        return {"ok": True}

    @r.get("/users/{user_id}/exists")
    async def exists(user_id: str):
        return {"exists": await storage.exists_for_user(user_id)}

    @r.get("/users/{user_id}/summary", response_model=GraphSummary)
    async def summary(user_id: str):
        return await storage.get_user_summary(user_id)

    # Entities

    @r.post("/users/{user_id}/entities", response_model=Entity)
    async def save_entity(user_id: str, payload: Entity):
        return await storage.save_entity(user_id, payload)

    @r.post("/users/{user_id}/entities/batch", response_model=list[Entity])
    async def save_entities(user_id: str, payload: list[Entity]):
        return await storage.save_entities_batch(user_id, payload)

    @r.post("/users/{user_id}/entities/lookup", response_model=list[Entity])
    async def lookup_entities(user_id: str, payload: EntityLookupIn):
        return await storage.get_entities_batch(user_id, payload.entity_ids)

    @r.get("/users/{user_id}/entities/{entity_id}", response_model=Entity)
    async def get_entity(user_id: str, entity_id: str):
        entity = await storage.get_entity(user_id, entity_id)
        if entity is None:
            raise HTTPException(status_code=404, detail="not found")
        return entity

    @r.delete("/users/{user_id}/entities/{entity_id}")
    async def delete_entity(user_id: str, entity_id: str):
        return {"deleted": await storage.delete_entity(user_id, entity_id)}

    @r.get("/users/{user_id}/entities/{entity_id}/relations", response_model=list[Relation])
    async def entity_relations(user_id: str, entity_id: str):
        return await storage.get_relations(user_id, entity_id)

    @r.get("/users/{user_id}/entities/{entity_id}/connected", response_model=KnowledgeGraph)
    async def connected(user_id: str, entity_id: str, depth: int = Query(default=1, ge=0, le=10)):
        return await storage.get_connected_entities(user_id, entity_id, depth)

    @r.get("/users/{user_id}/search")
    async def search(user_id: str, q: str, limit: int = Query(default=20, ge=1, le=200)):
        results = await storage.search_entities(user_id, q, limit)
        return {"query": q, "count": len(results), "results": [e.model_dump(mode="json") for e in results]}

    # Relations

    @r.post("/users/{user_id}/relations", response_model=Relation)
    async def save_relation(user_id: str, payload: Relation):
        return await storage.save_relation(user_id, payload)

    @r.delete("/users/{user_id}/relations")
    async def delete_relation(user_id: str, from_entity_id: str, to_entity_id: str):
        return {"deleted": await storage.delete_relation(user_id, from_entity_id, to_entity_id)}

    return r
