"""Tests for the per-user entity store."""

from datetime import datetime, timezone

import pytest

from conftest import entity, relation
from paged_graph import CascadeDeleteError, Entity, GraphValidationError
from paged_graph.db.memory import MemoryDocumentStore
from paged_graph.errors import DocumentStoreError


class TestSaveEntity:
    async def test_roundtrip_derives_search_text(self, storage):
        saved = await storage.save_entity(
            "alice",
            entity("e1", "Ada Lovelace", "person", observations=["Wrote the first PROGRAM"], tags=["math"]),
        )
        assert saved.search_text == "ada lovelace person wrote the first program math"

        loaded = await storage.get_entity("alice", "e1")
        assert loaded is not None
        assert loaded.name == "Ada Lovelace"
        assert loaded.observations == ["Wrote the first PROGRAM"]
        assert loaded.search_text == saved.search_text

    async def test_caller_search_text_is_discarded(self, storage):
        saved = await storage.save_entity("alice", entity("e1", "Turing", search_text="bogus"))
        assert saved.search_text == "turing concept"

    async def test_upsert_preserves_created_at_and_bumps_updated_at(self, storage):
        first = await storage.save_entity("alice", entity("e1", "Old"))
        second = await storage.save_entity("alice", entity("e1", "New"))

        assert second.name == "New"
        assert second.metadata.created_at == first.metadata.created_at
        assert second.metadata.updated_at >= first.metadata.updated_at
        assert await storage.entities.count_entities("alice") == 1

    async def test_caller_created_at_used_for_new_entity(self, storage):
        ts = datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        saved = await storage.save_entity("alice", entity("e1", metadata={"created_at": ts.isoformat()}))
        assert saved.metadata.created_at == ts

    async def test_extra_metadata_survives(self, storage):
        await storage.save_entity("alice", entity("e1", metadata={"source": "import", "color": "red"}))
        loaded = await storage.get_entity("alice", "e1")
        assert loaded.metadata.source == "import"
        assert loaded.metadata.model_extra == {"color": "red"}

    async def test_tags_are_deduplicated(self, storage):
        saved = await storage.save_entity("alice", entity("e1", tags=["a", "b", "a"]))
        assert saved.tags == ["a", "b"]

    @pytest.mark.parametrize(
        "payload",
        [
            {"entity_id": "", "name": "x"},
            {"entity_id": "e1", "name": "   "},
            {"entity_id": "e1"},
            {"entity_id": "e1", "name": "x", "observations": "not a list"},
        ],
    )
    async def test_invalid_entity_rejected_before_store(self, storage, doc_store, payload):
        with pytest.raises(GraphValidationError):
            await storage.save_entity("alice", payload)
        assert await doc_store.count(storage.cols.entities, {}) == 0

    async def test_blank_user_rejected(self, storage):
        with pytest.raises(GraphValidationError):
            await storage.save_entity(" ", entity("e1"))

    async def test_accepts_model_instances(self, storage):
        saved = await storage.save_entity("alice", Entity(entity_id="e1", name="Model"))
        assert saved.entity_type == ""
        assert saved.search_text == "model "


class TestUserIsolation:
    async def test_same_id_for_two_users(self, storage):
        await storage.save_entity("alice", entity("e1", "Alice's"))
        await storage.save_entity("bob", entity("e1", "Bob's"))

        assert (await storage.get_entity("alice", "e1")).name == "Alice's"
        assert (await storage.get_entity("bob", "e1")).name == "Bob's"

    async def test_get_missing_returns_none(self, storage):
        await storage.save_entity("alice", entity("e1"))
        assert await storage.get_entity("bob", "e1") is None
        assert await storage.get_entity("alice", "nope") is None


class TestSearch:
    async def test_ranked_by_term_occurrences(self, storage):
        await storage.save_entities_batch(
            "alice",
            [
                entity("once", "Graph", observations=["nothing else"]),
                entity("thrice", "Graph", observations=["graph theory", "graph coloring"]),
                entity("none", "Tree"),
            ],
        )
        results = await storage.search_entities("alice", "GRAPH")
        assert [e.entity_id for e in results] == ["thrice", "once"]

    async def test_multiple_terms_sum(self, storage):
        await storage.save_entities_batch(
            "alice",
            [entity("a", "alpha"), entity("ab", "alpha beta")],
        )
        results = await storage.search_entities("alice", "alpha beta")
        assert [e.entity_id for e in results] == ["ab", "a"]

    async def test_limit_and_user_scope(self, storage):
        await storage.save_entities_batch("alice", [entity(f"e{i}", "widget") for i in range(5)])
        await storage.save_entity("bob", entity("b1", "widget"))

        assert len(await storage.search_entities("alice", "widget", limit=3)) == 3
        assert all(e.entity_id != "b1" for e in await storage.search_entities("alice", "widget"))

    @pytest.mark.parametrize("query,limit", [("", None), ("   ", None), ("widget", 0), ("widget", -1)])
    async def test_empty_results(self, storage, query, limit):
        await storage.save_entity("alice", entity("e1", "widget"))
        assert await storage.search_entities("alice", query, limit) == []


class TestBatch:
    async def test_save_batch_last_wins(self, storage):
        saved = await storage.save_entities_batch("alice", [entity("e1", "First"), entity("e1", "Second")])
        assert [e.name for e in saved] == ["Second"]
        assert (await storage.get_entity("alice", "e1")).name == "Second"

    async def test_empty_batch(self, storage):
        assert await storage.save_entities_batch("alice", []) == []
        assert storage.refresher.pending == frozenset()

    async def test_invalid_item_rejects_whole_batch(self, storage):
        with pytest.raises(GraphValidationError):
            await storage.save_entities_batch("alice", [entity("e1"), {"entity_id": "e2"}])
        assert await storage.get_entity("alice", "e1") is None

    async def test_get_batch_returns_only_existing(self, storage):
        await storage.save_entities_batch("alice", [entity("e1"), entity("e2")])
        found = await storage.get_entities_batch("alice", ["e2", "missing", "e1", "e2"])
        assert sorted(e.entity_id for e in found) == ["e1", "e2"]
        assert await storage.get_entities_batch("alice", []) == []

    async def test_batch_preserves_created_at(self, storage):
        first = await storage.save_entity("alice", entity("e1"))
        (again,) = await storage.save_entities_batch("alice", [entity("e1", "renamed")])
        assert again.metadata.created_at == first.metadata.created_at


class FailingDeleteMany(MemoryDocumentStore):
    async def delete_many(self, collection, flt):
        raise DocumentStoreError("relations collection unavailable")


class TestDelete:
    async def test_delete_cascades_relations(self, storage):
        await storage.save_entities_batch("alice", [entity("a"), entity("b"), entity("c")])
        await storage.save_relation("alice", relation("a", "b"))
        await storage.save_relation("alice", relation("c", "a"))
        await storage.save_relation("alice", relation("b", "c"))

        assert await storage.delete_entity("alice", "a") is True
        assert await storage.get_entity("alice", "a") is None
        assert await storage.get_relations("alice", "a") == []
        remaining = await storage.relations.list_relations("alice")
        assert [(r.from_entity_id, r.to_entity_id) for r in remaining] == [("b", "c")]

    async def test_delete_missing_is_noop(self, storage):
        assert await storage.delete_entity("alice", "nope") is False

    async def test_cascade_failure_keeps_entity_deleted(self, cfg):
        from paged_graph import PagedGraphStorage

        storage = PagedGraphStorage(FailingDeleteMany(), cfg=cfg)
        await storage.save_entity("alice", entity("a"))

        with pytest.raises(CascadeDeleteError) as info:
            await storage.delete_entity("alice", "a")

        assert info.value.entity_id == "a"
        assert await storage.get_entity("alice", "a") is None
        await storage.close()
