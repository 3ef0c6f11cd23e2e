"""
ArangoDB implementation of the paged graph document store.

Entities, relations and summaries live in plain document collections; every
operation is a single AQL query. python-arango is synchronous, so queries run
on a worker thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from arango import ArangoClient
from arango.database import StandardDatabase
from arango.exceptions import ArangoError, IndexCreateError, ServerConnectionError

from ..errors import DocumentStoreError, StoreConnectionError
from .base import (
    Document,
    DocumentStore,
    Filter,
    IndexSpec,
    Sort,
    check_field,
    split_terms,
    validate_filter,
)
from .connection import ConnectionGate, TransientConnectionError

logger = logging.getLogger(__name__)

_SYSTEM_ATTRS = '"_key", "_id", "_rev"'


class _Binds:
    def __init__(self) -> None:
        self.vars: Dict[str, Any] = {}

    def add(self, value: Any) -> str:
        name = f"p{len(self.vars)}"
        self.vars[name] = value
        return f"@{name}"


def compile_filter(flt: Filter, binds: _Binds, var: str = "d") -> str:
    """Translate a filter dictionary into an AQL boolean expression."""
    clauses: List[str] = []
    for key, cond in flt.items():
        if key == "$or":
            alternatives = [compile_filter(sub, binds, var) for sub in cond]
            clauses.append("(" + " OR ".join(alternatives) + ")")
            continue
        path = f"{var}.{check_field(key)}"
        if isinstance(cond, dict):
            if "$in" in cond:
                clauses.append(f"{path} IN {binds.add(list(cond['$in']))}")
            if "$nin" in cond:
                clauses.append(f"{path} NOT IN {binds.add(list(cond['$nin']))}")
        else:
            clauses.append(f"{path} == {binds.add(cond)}")
    if not clauses:
        return "true"
    return " AND ".join(clauses) if len(clauses) > 1 else clauses[0]


def compile_sort(sort: Optional[Sort], var: str = "d") -> str:
    if not sort:
        return ""
    keys = [f"{var}.{check_field(field)} {'DESC' if direction < 0 else 'ASC'}" for field, direction in sort]
    return "SORT " + ", ".join(keys)


def _upsert_keys(flt: Filter) -> List[str]:
    keys = list(flt)
    for key in keys:
        if key.startswith("$") or "." in key or isinstance(flt[key], dict):
            raise ValueError(f"upsert filters must be plain equality on top-level fields, got {key!r}")
        check_field(key)
    return keys


class ArangoDocumentStore(DocumentStore):
    """
    ArangoDB document store.

    Features:
    - Lazy, connect-once initialisation with bounded retry
    - Database, collections and persistent indexes created on first connect
    - UPSERT-based replace for idempotent writes
    """

    def __init__(
        self,
        url: str = "http://localhost:8529",
        username: str = "root",
        password: str = "",
        database: str = "paged_graph",
        *,
        collections: Sequence[str] = (),
        indexes: Sequence[IndexSpec] = (),
        connect_attempts: int = 5,
        backoff_initial: float = 0.5,
        backoff_max: float = 10.0,
        backoff_jitter: float = 1.0,
    ):
        self.url = url
        self.username = username
        self.password = password
        self.database_name = database
        self.collections = list(dict.fromkeys([*collections, *(spec.collection for spec in indexes)]))
        self.indexes = list(indexes)

        self._client: Optional[ArangoClient] = None
        self._gate: ConnectionGate[StandardDatabase] = ConnectionGate(
            self._open,
            attempts=connect_attempts,
            initial=backoff_initial,
            max_wait=backoff_max,
            jitter=backoff_jitter,
        )

    # Connection lifecycle

    async def connect(self) -> None:
        await self._gate.get()

    async def _open(self) -> StandardDatabase:
        try:
            db = await asyncio.to_thread(self._open_database)
        except (ServerConnectionError, OSError) as e:
            logger.warning("ArangoDB at %s not reachable yet: %s", self.url, e)
            raise TransientConnectionError(str(e)) from e
        except ArangoError as e:
            logger.error("Failed to connect to ArangoDB: %s", e)
            raise StoreConnectionError(f"failed to open database {self.database_name!r}: {e}") from e
        logger.info("Connected to ArangoDB at %s (database %s)", self.url, self.database_name)
        return db

    def _open_database(self) -> StandardDatabase:
        client = ArangoClient(hosts=self.url)
        sys_db = client.db("_system", username=self.username, password=self.password)
        if not sys_db.has_database(self.database_name):
            sys_db.create_database(self.database_name)

        db = client.db(self.database_name, username=self.username, password=self.password)
        for name in self.collections:
            if not db.has_collection(name):
                db.create_collection(name)
        self._create_indexes(db)
        self._client = client
        return db

    def _create_indexes(self, db: StandardDatabase) -> None:
        for spec in self.indexes:
            try:
                db.collection(spec.collection).add_index(
                    {
                        "type": "persistent",
                        "fields": list(spec.fields),
                        "unique": spec.unique,
                        "name": spec.name,
                    }
                )
            except IndexCreateError as e:
                logger.warning("Index %s on %s not created, skipping: %s", spec.name, spec.collection, e)

    async def close(self) -> None:
        self._gate.reset()
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Disconnected from ArangoDB")

    # Query plumbing

    async def _query(self, query: str, bind_vars: Dict[str, Any]) -> List[Any]:
        db = await self._gate.get()

        def run() -> List[Any]:
            return list(db.aql.execute(query, bind_vars=bind_vars))

        try:
            return await asyncio.to_thread(run)
        except (ArangoError, OSError) as e:
            logger.error("AQL query failed: %s", e)
            raise DocumentStoreError(str(e)) from e

    def _scan(self, collection: str, flt: Filter, binds: _Binds) -> str:
        validate_filter(flt)
        binds.vars["@col"] = collection
        return f"FOR d IN @@col FILTER {compile_filter(flt, binds)}"

    # DocumentStore operations

    async def find_one(self, collection: str, flt: Filter) -> Optional[Document]:
        binds = _Binds()
        query = f"{self._scan(collection, flt, binds)} LIMIT 1 RETURN UNSET(d, {_SYSTEM_ATTRS})"
        rows = await self._query(query, binds.vars)
        return rows[0] if rows else None

    async def find(
        self,
        collection: str,
        flt: Filter,
        *,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        binds = _Binds()
        parts = [self._scan(collection, flt, binds), compile_sort(sort)]
        if limit is not None:
            parts.append(f"LIMIT {binds.add(max(int(limit), 0))}")
        parts.append(f"RETURN UNSET(d, {_SYSTEM_ATTRS})")
        return await self._query(" ".join(p for p in parts if p), binds.vars)

    async def replace_one(self, collection: str, flt: Filter, document: Document, *, upsert: bool = True) -> None:
        binds = _Binds()
        binds.vars["@col"] = collection
        doc = binds.add(document)
        if upsert:
            search = ", ".join(f"{key}: {binds.add(flt[key])}" for key in _upsert_keys(flt))
            query = f"UPSERT {{ {search} }} INSERT {doc} REPLACE {doc} IN @@col"
        else:
            query = f"{self._scan(collection, flt, binds)} LIMIT 1 REPLACE d WITH {doc} IN @@col"
        await self._query(query, binds.vars)

    async def bulk_replace(self, collection: str, items: Sequence[Tuple[Filter, Document]]) -> None:
        if not items:
            return
        keys = _upsert_keys(items[0][0])
        if any(list(flt) != keys for flt, _doc in items):
            raise ValueError("bulk_replace filters must all use the same keys")
        search = ", ".join(f"{key}: item.f.{key}" for key in keys)
        query = f"FOR item IN @items UPSERT {{ {search} }} INSERT item.doc REPLACE item.doc IN @@col"
        bind_vars = {"@col": collection, "items": [{"f": flt, "doc": doc} for flt, doc in items]}
        await self._query(query, bind_vars)

    async def _remove(self, collection: str, flt: Filter, limit: Optional[int]) -> int:
        binds = _Binds()
        scan = self._scan(collection, flt, binds)
        cap = f" LIMIT {limit}" if limit is not None else ""
        query = f"LET removed = ({scan}{cap} REMOVE d IN @@col RETURN 1) RETURN LENGTH(removed)"
        rows = await self._query(query, binds.vars)
        return int(rows[0]) if rows else 0

    async def delete_one(self, collection: str, flt: Filter) -> int:
        return await self._remove(collection, flt, 1)

    async def delete_many(self, collection: str, flt: Filter) -> int:
        return await self._remove(collection, flt, None)

    async def count(self, collection: str, flt: Filter) -> int:
        binds = _Binds()
        query = f"{self._scan(collection, flt, binds)} COLLECT WITH COUNT INTO n RETURN n"
        rows = await self._query(query, binds.vars)
        return int(rows[0]) if rows else 0

    async def distinct(self, collection: str, field: str, flt: Optional[Filter] = None) -> List[Any]:
        binds = _Binds()
        path = f"d.{check_field(field)}"
        query = f"{self._scan(collection, flt or {}, binds)} FILTER {path} != null COLLECT v = {path} RETURN v"
        return await self._query(query, binds.vars)

    async def count_by(self, collection: str, field: str, flt: Filter) -> Dict[Any, int]:
        binds = _Binds()
        path = f"d.{check_field(field)}"
        query = (
            f"{self._scan(collection, flt, binds)} "
            f"COLLECT v = {path} WITH COUNT INTO n RETURN {{ value: v, count: n }}"
        )
        rows = await self._query(query, binds.vars)
        return {row["value"]: int(row["count"]) for row in rows}

    async def text_search(
        self,
        collection: str,
        field: str,
        query: str,
        flt: Filter,
        *,
        limit: int = 20,
    ) -> List[Tuple[Document, int]]:
        terms = split_terms(query)
        if not terms or limit <= 0:
            return []
        binds = _Binds()
        path = f"d.{check_field(field)}"
        scan = self._scan(collection, flt, binds)
        aql = (
            f"{scan} LET t = LOWER(TO_STRING({path})) "
            f"LET score = SUM(FOR term IN {binds.add(terms)} RETURN LENGTH(SPLIT(t, term)) - 1) "
            f"FILTER score > 0 SORT score DESC, d._key ASC LIMIT {binds.add(int(limit))} "
            f"RETURN {{ doc: UNSET(d, {_SYSTEM_ATTRS}), score: score }}"
        )
        rows = await self._query(aql, binds.vars)
        return [(row["doc"], int(row["score"])) for row in rows]
