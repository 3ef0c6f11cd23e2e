"""In-process document store.

Keeps every collection as an insertion-ordered list of documents and applies
the same filter, sort and text-scoring rules as the server-backed engines. It
is the default backend for tests and local development.
"""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .base import Document, DocumentStore, Filter, Sort, score_text, split_terms, validate_filter

logger = logging.getLogger(__name__)

_MISSING = object()


def get_path(doc: Document, path: str) -> Any:
    cur: Any = doc
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def matches(doc: Document, flt: Filter) -> bool:
    for key, cond in flt.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
            continue
        value = get_path(doc, key)
        if isinstance(cond, dict):
            if "$in" in cond and value not in cond["$in"]:
                return False
            if "$nin" in cond and value in cond["$nin"]:
                return False
        elif value is _MISSING or value != cond:
            return False
    return True


def _sort_key(value: Any) -> Tuple[int, Any]:
    # Missing/None sort before everything else, like the server engines do.
    if value is _MISSING or value is None:
        return (0, "")
    return (1, value)


class MemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._collections: Dict[str, List[Document]] = defaultdict(list)
        self._connected = False

    async def connect(self) -> None:
        if not self._connected:
            self._connected = True
            logger.info("Using in-memory document store")

    async def close(self) -> None:
        self._connected = False

    def _select(self, collection: str, flt: Filter) -> List[Document]:
        validate_filter(flt)
        return [d for d in self._collections[collection] if matches(d, flt)]

    async def find_one(self, collection: str, flt: Filter) -> Optional[Document]:
        await self.connect()
        found = self._select(collection, flt)
        return copy.deepcopy(found[0]) if found else None

    async def find(
        self,
        collection: str,
        flt: Filter,
        *,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        await self.connect()
        docs = self._select(collection, flt)
        # Stable sorts applied last-key-first give a multi-key ordering.
        for field, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: _sort_key(get_path(d, field)), reverse=direction < 0)
        if limit is not None:
            docs = docs[: max(limit, 0)]
        return copy.deepcopy(docs)

    def _replace(self, collection: str, flt: Filter, document: Document, upsert: bool) -> None:
        validate_filter(flt)
        docs = self._collections[collection]
        for i, existing in enumerate(docs):
            if matches(existing, flt):
                docs[i] = copy.deepcopy(document)
                return
        if upsert:
            docs.append(copy.deepcopy(document))

    async def replace_one(self, collection: str, flt: Filter, document: Document, *, upsert: bool = True) -> None:
        await self.connect()
        self._replace(collection, flt, document, upsert)

    async def bulk_replace(self, collection: str, items: Sequence[Tuple[Filter, Document]]) -> None:
        await self.connect()
        for flt, document in items:
            self._replace(collection, flt, document, True)

    async def delete_one(self, collection: str, flt: Filter) -> int:
        await self.connect()
        validate_filter(flt)
        docs = self._collections[collection]
        for i, existing in enumerate(docs):
            if matches(existing, flt):
                del docs[i]
                return 1
        return 0

    async def delete_many(self, collection: str, flt: Filter) -> int:
        await self.connect()
        validate_filter(flt)
        docs = self._collections[collection]
        kept = [d for d in docs if not matches(d, flt)]
        removed = len(docs) - len(kept)
        self._collections[collection] = kept
        return removed

    async def count(self, collection: str, flt: Filter) -> int:
        await self.connect()
        return len(self._select(collection, flt))

    async def distinct(self, collection: str, field: str, flt: Optional[Filter] = None) -> List[Any]:
        await self.connect()
        values: Dict[Any, None] = {}
        for doc in self._select(collection, flt or {}):
            value = get_path(doc, field)
            if value is not _MISSING and value is not None:
                values.setdefault(value, None)
        return list(values)

    async def count_by(self, collection: str, field: str, flt: Filter) -> Dict[Any, int]:
        await self.connect()
        counts: Dict[Any, int] = {}
        for doc in self._select(collection, flt):
            value = get_path(doc, field)
            key = None if value is _MISSING else value
            counts[key] = counts.get(key, 0) + 1
        return counts

    async def text_search(
        self,
        collection: str,
        field: str,
        query: str,
        flt: Filter,
        *,
        limit: int = 20,
    ) -> List[Tuple[Document, int]]:
        await self.connect()
        terms = split_terms(query)
        if not terms or limit <= 0:
            return []
        scored = []
        for doc in self._select(collection, flt):
            text = get_path(doc, field)
            score = score_text(text if isinstance(text, str) else "", terms)
            if score > 0:
                scored.append((doc, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [(copy.deepcopy(doc), score) for doc, score in scored[:limit]]
