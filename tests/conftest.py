from __future__ import annotations

import pytest
import pytest_asyncio

from paged_graph.db.memory import MemoryDocumentStore
from paged_graph.graph.storage import PagedGraphStorage
from paged_graph.settings import PagedGraphSettings


@pytest.fixture
def cfg() -> PagedGraphSettings:
    return PagedGraphSettings(backend="memory", api_key=None, traversal_timeout=None)


@pytest.fixture
def doc_store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest_asyncio.fixture
async def storage(doc_store, cfg):
    s = PagedGraphStorage(doc_store, cfg=cfg)
    await s.connect()
    yield s
    await s.close()


def entity(entity_id: str, name: str | None = None, entity_type: str = "concept", **extra) -> dict:
    return {"entity_id": entity_id, "name": name or entity_id.upper(), "entity_type": entity_type, **extra}


def relation(src: str, dst: str, relation_type: str = "relates_to", **extra) -> dict:
    return {"from_entity_id": src, "to_entity_id": dst, "relation_type": relation_type, **extra}
