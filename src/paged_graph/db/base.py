"""
Document store abstractions for the paged graph.

The graph layer only needs a small document-store capability: upsert by
filter, point and range reads, deletes, distinct values, a group-by count and
a scoped free-text search. Engines implement :class:`DocumentStore`; the graph
layer never sees which one it talks to.

Filters are Mongo-style dictionaries limited to:

- ``{"field": value}`` equality (dotted paths reach into sub-documents)
- ``{"field": {"$in": [...]}}`` and ``{"field": {"$nin": [...]}}``
- ``{"$or": [filter, ...]}`` at any level

Sorts are lists of ``(field, 1)`` / ``(field, -1)`` pairs.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

Document = Dict[str, Any]
Filter = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]

_FIELD_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_OPERATORS = {"$in", "$nin"}


def check_field(path: str) -> str:
    """Reject anything that is not a plain (dotted) field path."""
    if not _FIELD_PATH.match(path):
        raise ValueError(f"invalid field path: {path!r}")
    return path


def split_terms(query: str) -> List[str]:
    """Distinct lowercase terms of a free-text query, in first-seen order."""
    return list(dict.fromkeys(t for t in query.lower().split() if t))


def score_text(text: str, terms: Sequence[str]) -> int:
    """Total occurrences of ``terms`` inside ``text``.

    Both engines rank text search with this measure so results do not depend on
    the backend.
    """
    text = (text or "").lower()
    return sum(text.count(t) for t in terms)


def validate_filter(flt: Filter) -> None:
    for key, value in flt.items():
        if key == "$or":
            if not isinstance(value, list) or not value:
                raise ValueError("$or expects a non-empty list of filters")
            for sub in value:
                validate_filter(sub)
            continue
        check_field(key)
        if isinstance(value, dict):
            unknown = set(value) - _OPERATORS
            if unknown or len(value) != 1:
                raise ValueError(f"unsupported operator(s) for {key!r}: {sorted(value)}")


@dataclass(frozen=True)
class IndexSpec:
    """An index the graph layer wants on a collection.

    Engines without secondary indexes may ignore these.
    """

    collection: str
    fields: Tuple[str, ...]
    name: str
    unique: bool = False


class DocumentStore(ABC):
    """Abstract base class for document store engines.

    Every operation connects lazily, so callers never have to call
    :meth:`connect` themselves.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection (idempotent, safe under concurrent callers)."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""

    @abstractmethod
    async def find_one(self, collection: str, flt: Filter) -> Optional[Document]:
        """Return the first document matching ``flt`` or ``None``."""

    @abstractmethod
    async def find(
        self,
        collection: str,
        flt: Filter,
        *,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        """Return matching documents, optionally sorted and capped."""

    @abstractmethod
    async def replace_one(self, collection: str, flt: Filter, document: Document, *, upsert: bool = True) -> None:
        """Replace the document matching ``flt`` (an equality-only filter), inserting when absent."""

    @abstractmethod
    async def bulk_replace(self, collection: str, items: Sequence[Tuple[Filter, Document]]) -> None:
        """Upsert many documents in one round trip. All filters must use the same keys."""

    @abstractmethod
    async def delete_one(self, collection: str, flt: Filter) -> int:
        """Delete the first matching document; return the number removed (0 or 1)."""

    @abstractmethod
    async def delete_many(self, collection: str, flt: Filter) -> int:
        """Delete every matching document; return the number removed."""

    @abstractmethod
    async def count(self, collection: str, flt: Filter) -> int:
        """Count matching documents."""

    @abstractmethod
    async def distinct(self, collection: str, field: str, flt: Optional[Filter] = None) -> List[Any]:
        """Distinct non-null values of ``field`` among matching documents."""

    @abstractmethod
    async def count_by(self, collection: str, field: str, flt: Filter) -> Dict[Any, int]:
        """Group matching documents by ``field`` and count each group."""

    @abstractmethod
    async def text_search(
        self,
        collection: str,
        field: str,
        query: str,
        flt: Filter,
        *,
        limit: int = 20,
    ) -> List[Tuple[Document, int]]:
        """Ranked free-text match of ``query`` over ``field``, scoped by ``flt``.

        Returns ``(document, score)`` pairs, best first; only positive scores.
        """
