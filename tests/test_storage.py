"""Tests for the storage facade: whole-graph lifecycle and maintenance."""

import pytest

from conftest import entity, relation
from paged_graph import GraphValidationError, KnowledgeGraph, PagedGraphStorage
from paged_graph.db.memory import MemoryDocumentStore
from paged_graph.errors import DocumentStoreError


def sample_graph():
    return {
        "entities": [entity("a", "Alpha"), entity("b", "Beta"), entity("c", "Gamma")],
        "relations": [relation("a", "b", "knows", relation_id="stale"), relation("b", "c", "owns")],
    }


class TestUserLifecycle:
    async def test_save_then_load(self, storage):
        await storage.save_for_user("alice", sample_graph())
        graph = await storage.load_for_user("alice")

        assert sorted(e.entity_id for e in graph.entities) == ["a", "b", "c"]
        assert sorted(r.relation_id for r in graph.relations) == ["a-knows-b", "b-owns-c"]

    async def test_load_is_not_depth_limited(self, storage):
        chain = {
            "entities": [entity(f"n{i}") for i in range(6)],
            "relations": [relation(f"n{i}", f"n{i + 1}") for i in range(5)],
        }
        await storage.save_for_user("alice", chain)
        graph = await storage.load_for_user("alice")
        assert len(graph.entities) == 6
        assert len(graph.relations) == 5

    async def test_accepts_model(self, storage):
        await storage.save_for_user("alice", KnowledgeGraph.model_validate(sample_graph()))
        assert await storage.exists_for_user("alice")

    async def test_invalid_graph(self, storage):
        with pytest.raises(GraphValidationError):
            await storage.save_for_user("alice", {"entities": "nope"})
        with pytest.raises(GraphValidationError):
            await storage.save_for_user("alice", {"entities": [{"entity_id": "x"}]})
        assert not await storage.exists_for_user("alice")

    async def test_exists(self, storage):
        assert await storage.exists_for_user("alice") is False
        await storage.save_relation("alice", relation("a", "b"))
        assert await storage.exists_for_user("alice") is False
        await storage.save_entity("alice", entity("a"))
        assert await storage.exists_for_user("alice") is True

    async def test_clear_removes_everything_for_user(self, storage):
        await storage.save_for_user("alice", sample_graph())
        await storage.save_for_user("bob", {"entities": [entity("z")], "relations": [relation("z", "y")]})
        await storage.refresher.drain()

        await storage.clear_for_user("alice")

        assert await storage.load_for_user("alice") == KnowledgeGraph()
        assert await storage.store.find_one(storage.cols.index, {"user_id": "alice"}) is None
        assert await storage.exists_for_user("bob")
        assert len((await storage.load_for_user("bob")).relations) == 1

    async def test_list_users(self, storage):
        assert await storage.list_users() == []
        await storage.save_entity("carol", entity("x"))
        await storage.save_entity("alice", entity("x"))
        await storage.save_relation("dave", relation("p", "q"))
        assert await storage.list_users() == ["alice", "carol"]


class FailingRelationsDelete(MemoryDocumentStore):
    async def delete_many(self, collection, flt):
        if collection.endswith("_relations"):
            raise DocumentStoreError("relations unavailable")
        return await super().delete_many(collection, flt)


class TestClearPartialFailure:
    async def test_other_deletes_still_run(self, cfg):
        storage = PagedGraphStorage(FailingRelationsDelete(), cfg=cfg)
        await storage.save_for_user("alice", sample_graph())
        await storage.refresher.drain()

        with pytest.raises(DocumentStoreError):
            await storage.clear_for_user("alice")

        assert not await storage.exists_for_user("alice")
        assert await storage.store.find_one(storage.cols.index, {"user_id": "alice"}) is None
        assert await storage.relations.count_relations("alice") == 2
        await storage.close()


class TestDefaultUser:
    async def test_legacy_shims_use_default_user(self, storage):
        assert await storage.exists() is False
        await storage.save(sample_graph())

        assert await storage.exists() is True
        assert await storage.list_users() == ["default"]
        assert len((await storage.load()).entities) == 3

        await storage.clear()
        assert await storage.exists() is False


class TestCleanup:
    async def test_removes_orphans_and_refreshes(self, storage, doc_store):
        await storage.save_for_user("alice", sample_graph())
        await storage.save_relation("alice", relation("a", "ghost"))
        await storage.save_relation("bob", relation("p", "q"))
        # Remove an entity without the cascade.
        await doc_store.delete_one(storage.cols.entities, {"user_id": "alice", "entity_id": "c"})

        removed = await storage.cleanup()

        assert removed == 3
        remaining = await storage.relations.list_relations("alice")
        assert [r.relation_id for r in remaining] == ["a-knows-b"]
        assert await storage.relations.count_relations("bob") == 0

        summary = await storage.get_user_summary("alice")
        assert summary.total_entities == 2
        assert summary.total_relations == 1


class TestLifecycle:
    async def test_async_context_manager(self, cfg):
        async with PagedGraphStorage(MemoryDocumentStore(), cfg=cfg) as storage:
            await storage.save_entity("alice", entity("a"))
        assert storage.refresher.pending == frozenset()

    async def test_from_settings_memory(self, cfg):
        storage = PagedGraphStorage.from_settings(cfg)
        assert isinstance(storage.store, MemoryDocumentStore)
        assert storage.cols.entities == "mcp_memory_entities"
        await storage.close()

    async def test_refresh_resumes_after_reconnect(self, storage):
        async with storage:
            await storage.save_entity("alice", entity("a"))
        async with storage:
            await storage.save_entity("alice", entity("b"))
            await storage.refresher.drain()
            summary = await storage.get_user_summary("alice")

        assert summary.total_entities == 2
        assert sorted(summary.recent_entities) == ["a", "b"]

    async def test_collection_prefix(self, cfg):
        storage = PagedGraphStorage(MemoryDocumentStore(), collection_prefix="kg", cfg=cfg)
        assert storage.cols.all() == ["kg_entities", "kg_relations", "kg_index"]
        await storage.close()


class TestEndToEnd:
    async def test_visit_traverse_delete(self, storage):
        await storage.save_entity("u1", entity("A", "Alice", "person"))
        await storage.save_entity("u1", entity("B", "Berlin", "place"))
        await storage.save_relation("u1", relation("A", "B", "visited"))

        graph = await storage.get_connected_entities("u1", "A", 1)
        assert sorted(e.entity_id for e in graph.entities) == ["A", "B"]
        assert [(r.from_entity_id, r.relation_type, r.to_entity_id) for r in graph.relations] == [
            ("A", "visited", "B")
        ]

        assert await storage.delete_entity("u1", "B") is True
        assert await storage.get_relations("u1", "A") == []
        assert await storage.get_entity("u1", "B") is None
