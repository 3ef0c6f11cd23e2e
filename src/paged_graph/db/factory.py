from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..settings import PagedGraphSettings, settings as default_settings
from .base import DocumentStore, IndexSpec
from .memory import MemoryDocumentStore

logger = logging.getLogger(__name__)

BACKENDS = ("memory", "arango")


def build_document_store(
    cfg: Optional[PagedGraphSettings] = None,
    *,
    collections: Sequence[str] = (),
    indexes: Sequence[IndexSpec] = (),
) -> DocumentStore:
    """Build the engine named by ``cfg.backend``.

    Selection is explicit; there is no fallback from one engine to another.
    """
    cfg = cfg or default_settings
    backend = (cfg.backend or "").strip().lower()

    if backend == "memory":
        return MemoryDocumentStore()

    if backend == "arango":
        from .arango import ArangoDocumentStore

        logger.info("Using ArangoDB document store at %s", cfg.arango_url)
        return ArangoDocumentStore(
            cfg.arango_url,
            cfg.arango_username,
            cfg.arango_password,
            cfg.arango_database,
            collections=collections,
            indexes=indexes,
            connect_attempts=cfg.connect_attempts,
            backoff_initial=cfg.connect_backoff_initial,
            backoff_max=cfg.connect_backoff_max,
            backoff_jitter=cfg.connect_backoff_jitter,
        )

    raise ValueError(f"Unknown storage backend {cfg.backend!r}; expected one of {', '.join(BACKENDS)}")
