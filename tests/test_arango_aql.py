"""AQL generation tests for the ArangoDB engine (no server needed)."""

import pytest

from paged_graph.db.arango import ArangoDocumentStore, _Binds, compile_filter, compile_sort


class TestCompileFilter:
    def test_equality_and_in(self):
        binds = _Binds()
        expr = compile_filter({"user_id": "alice", "entity_id": {"$in": ["a", "b"]}}, binds)
        assert expr == "d.user_id == @p0 AND d.entity_id IN @p1"
        assert binds.vars == {"p0": "alice", "p1": ["a", "b"]}

    def test_or_and_nin(self):
        binds = _Binds()
        expr = compile_filter(
            {"user_id": "u", "$or": [{"from_entity_id": {"$nin": ["x"]}}, {"to_entity_id": "y"}]},
            binds,
        )
        assert expr == "d.user_id == @p0 AND (d.from_entity_id NOT IN @p1 OR d.to_entity_id == @p2)"

    def test_dotted_path(self):
        assert compile_filter({"metadata.source": "x"}, _Binds()) == "d.metadata.source == @p0"

    def test_empty_filter(self):
        assert compile_filter({}, _Binds()) == "true"

    def test_rejects_injection(self):
        with pytest.raises(ValueError):
            compile_filter({"user_id == 1 OR true": "x"}, _Binds())


def test_compile_sort():
    assert compile_sort([("metadata.updated_at", -1), ("name", 1)]) == "SORT d.metadata.updated_at DESC, d.name ASC"
    assert compile_sort(None) == ""


@pytest.fixture
def captured(monkeypatch):
    store = ArangoDocumentStore(collections=["c"])
    calls = []

    async def fake_query(query, bind_vars):
        calls.append((query, bind_vars))
        if "COLLECT WITH COUNT" in query or "LENGTH(removed)" in query:
            return [4]
        if "value: v" in query:
            return [{"value": "person", "count": 2}]
        if "score:" in query:
            return [{"doc": {"entity_id": "a"}, "score": 3}]
        return []

    monkeypatch.setattr(store, "_query", fake_query)
    return store, calls


class TestQueries:
    async def test_find_with_sort_and_limit(self, captured):
        store, calls = captured
        await store.find("c", {"user_id": "u"}, sort=[("name", 1)], limit=5)
        query, binds = calls[0]
        assert query == 'FOR d IN @@col FILTER d.user_id == @p1 SORT d.name ASC LIMIT @p2 RETURN UNSET(d, "_key", "_id", "_rev")'
        assert binds == {"@col": "c", "p1": "u", "p2": 5}

    async def test_replace_one_upserts_on_filter_keys(self, captured):
        store, calls = captured
        await store.replace_one("c", {"from_entity_id": "a", "to_entity_id": "b"}, {"x": 1})
        query, binds = calls[0]
        assert query == "UPSERT { from_entity_id: @p2, to_entity_id: @p3 } INSERT @p1 REPLACE @p1 IN @@col"
        assert binds["p1"] == {"x": 1}

    async def test_replace_one_rejects_operator_filters(self, captured):
        store, _calls = captured
        with pytest.raises(ValueError):
            await store.replace_one("c", {"entity_id": {"$in": ["a"]}}, {})

    async def test_bulk_replace_single_query(self, captured):
        store, calls = captured
        await store.bulk_replace("c", [({"k": 1}, {"k": 1}), ({"k": 2}, {"k": 2})])
        assert len(calls) == 1
        assert calls[0][0].startswith("FOR item IN @items UPSERT { k: item.f.k }")
        assert await store.bulk_replace("c", []) is None
        assert len(calls) == 1

    async def test_bulk_replace_requires_uniform_keys(self, captured):
        store, _calls = captured
        with pytest.raises(ValueError):
            await store.bulk_replace("c", [({"k": 1}, {}), ({"j": 1}, {})])

    async def test_delete_counts(self, captured):
        store, calls = captured
        assert await store.delete_one("c", {"k": 1}) == 4
        assert "LIMIT 1 REMOVE d IN @@col" in calls[0][0]
        await store.delete_many("c", {"k": 1})
        assert "LIMIT" not in calls[1][0]

    async def test_count_and_count_by(self, captured):
        store, _calls = captured
        assert await store.count("c", {}) == 4
        assert await store.count_by("c", "entity_type", {}) == {"person": 2}

    async def test_text_search(self, captured):
        store, calls = captured
        hits = await store.text_search("c", "search_text", "Foo foo bar", {"user_id": "u"}, limit=3)
        assert hits == [({"entity_id": "a"}, 3)]
        _query, binds = calls[0]
        assert ["foo", "bar"] in binds.values()
        assert await store.text_search("c", "search_text", "   ", {}, limit=3) == []
        assert len(calls) == 1
