"""Per-user summary index.

The summary is a derived, eventually consistent view: writers hand the user id
to :class:`SummaryRefresher` and return immediately; a single background task
recomputes and stores the summary. Reads fall back to a synchronous
computation when nothing has been stored yet.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from typing import Any, Awaitable, Callable, Iterable

from ..db.base import Document, DocumentStore
from ..errors import DocumentStoreError, IndexMaintenanceError
from ..models import GraphSummary, SearchIndex, utcnow
from .entities import check_user
from .schema import Collections

logger = logging.getLogger(__name__)

_TERM = re.compile(r"[a-z0-9][a-z0-9_\-']*")

STOP_WORDS = frozenset(
    """
    the and for are but not you all any can had her was one our out has him his how its may new now
    old see two who did get let put say she too use with this that from they have were been will
    into than then them these those what when where which while would could should about there
    their also just only some such very more most other over under after before being does each
    """.split()
)


def frequent_terms(texts: Iterable[str], limit: int) -> list[str]:
    counts: Counter[str] = Counter()
    for text in texts:
        counts.update(t for t in _TERM.findall((text or "").lower()) if len(t) >= 3 and t not in STOP_WORDS)
    return [term for term, _n in counts.most_common(limit)]


class SummaryIndex:
    def __init__(
        self,
        store: DocumentStore,
        cols: Collections,
        *,
        recent_limit: int = 10,
        term_limit: int = 20,
        term_sample: int = 500,
        on_miss: Callable[[str], None] | None = None,
    ):
        self.store = store
        self.cols = cols
        self.recent_limit = recent_limit
        self.term_limit = term_limit
        self.term_sample = term_sample
        self.on_miss = on_miss

    async def compute_summary(self, user_id: str) -> GraphSummary:
        """Aggregate the user's current entities and relations."""
        flt = {"user_id": user_id}
        sample = max(self.recent_limit, self.term_sample if self.term_limit else 0)
        total_entities, total_relations, types, latest = await asyncio.gather(
            self.store.count(self.cols.entities, flt),
            self.store.count(self.cols.relations, flt),
            self.store.count_by(self.cols.entities, "entity_type", flt),
            self.store.find(self.cols.entities, flt, sort=[("metadata.updated_at", -1)], limit=sample),
        )
        recent = latest[: self.recent_limit]
        return GraphSummary(
            user_id=user_id,
            total_entities=total_entities,
            total_relations=total_relations,
            entity_types={("" if k is None else str(k)): n for k, n in types.items()},
            recent_entities=[d["entity_id"] for d in recent],
            search_index=SearchIndex(
                frequent_terms=frequent_terms((d.get("search_text", "") for d in latest), self.term_limit),
                entity_names=[d.get("name", "") for d in recent],
            ),
            updated_at=utcnow(),
        )

    @staticmethod
    def _summary_to_doc(summary: GraphSummary) -> Document:
        data = summary.model_dump(mode="json")
        return {
            "user_id": data["user_id"],
            "summary": {
                "total_entities": data["total_entities"],
                "total_relations": data["total_relations"],
                "entity_types": data["entity_types"],
            },
            "recent_entities": data["recent_entities"],
            "search_index": data["search_index"],
            "updated_at": data["updated_at"],
        }

    @staticmethod
    def _doc_to_summary(doc: Document) -> GraphSummary:
        return GraphSummary.model_validate(
            {
                "user_id": doc["user_id"],
                **doc.get("summary", {}),
                "recent_entities": doc.get("recent_entities", []),
                "search_index": doc.get("search_index", {}),
                "updated_at": doc["updated_at"],
            }
        )

    async def refresh(self, user_id: str) -> GraphSummary:
        """Recompute and store the summary; raises :class:`IndexMaintenanceError`."""
        try:
            summary = await self.compute_summary(user_id)
            await self.store.replace_one(self.cols.index, {"user_id": user_id}, self._summary_to_doc(summary))
        except DocumentStoreError as e:
            raise IndexMaintenanceError(user_id, str(e)) from e
        return summary

    async def update_summary_index(self, user_id: str) -> GraphSummary | None:
        """Refresh the stored summary. Failures are logged, never raised."""
        try:
            return await self.refresh(user_id)
        except IndexMaintenanceError as e:
            logger.error("%s", e)
            return None

    async def get_user_summary(self, user_id: str) -> GraphSummary:
        check_user(user_id)
        doc = await self.store.find_one(self.cols.index, {"user_id": user_id})
        if doc:
            return self._doc_to_summary(doc)

        summary = await self.compute_summary(user_id)
        if self.on_miss is not None:
            self.on_miss(user_id)
        return summary

    async def delete_summary(self, user_id: str) -> int:
        return await self.store.delete_many(self.cols.index, {"user_id": check_user(user_id)})


class SummaryRefresher:
    """Bounded queue of user ids with one dedicated consumer task.

    A user already waiting in the queue is not queued twice; a user whose
    refresh is running is queued again, so the last write is always followed
    by a refresh that observes it.
    """

    def __init__(self, update: Callable[[str], Awaitable[Any]], *, maxsize: int = 1024):
        self._update = update
        self._maxsize = maxsize
        self._queue: asyncio.Queue[str] | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending: set[str] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._pending)

    def _current(self) -> bool:
        try:
            return self._loop is asyncio.get_running_loop()
        except RuntimeError:
            return False

    def _ensure_worker(self) -> asyncio.Queue[str]:
        loop = asyncio.get_running_loop()
        queue = self._queue
        if queue is None or self._loop is not loop:
            # A queue and its consumer belong to one event loop.
            queue = self._queue = asyncio.Queue(self._maxsize)
            self._loop = loop
            self._task = None
            self._pending.clear()
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._run(queue), name="summary-refresher")
        return queue

    def open(self) -> None:
        """Accept refresh requests again after :meth:`close`."""
        self._closed = False

    def schedule(self, user_id: str) -> None:
        """Request a refresh for ``user_id``. Never blocks, never raises."""
        if self._closed:
            return
        try:
            queue = self._ensure_worker()
        except RuntimeError:
            logger.warning("No running event loop; summary refresh for user %s skipped", user_id)
            return
        if user_id in self._pending:
            return
        try:
            queue.put_nowait(user_id)
        except asyncio.QueueFull:
            logger.warning("Summary refresh queue full; dropping refresh for user %s", user_id)
            return
        self._pending.add(user_id)

    async def _run(self, queue: asyncio.Queue[str]) -> None:
        while True:
            user_id = await queue.get()
            self._pending.discard(user_id)
            try:
                await self._update(user_id)
            except Exception:
                logger.exception("Summary refresh for user %s crashed", user_id)
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every refresh scheduled so far has been applied."""
        if self._current() and self._queue is not None and self._task is not None and not self._task.done():
            await self._queue.join()

    async def close(self, *, drain: bool = True) -> None:
        if drain:
            await self.drain()
        self._closed = True
        task, self._task = self._task, None
        if task is not None and self._current():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
