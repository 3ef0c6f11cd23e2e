"""Error taxonomy for the paged graph store.

Absence is never an error: ``get_*`` operations return ``None`` or an empty
list when nothing matches.
"""

from __future__ import annotations


class PagedGraphError(Exception):
    """Base class for every error raised by this package."""


class DocumentStoreError(PagedGraphError):
    """A document store operation failed."""


class StoreConnectionError(DocumentStoreError):
    """The document store could not be reached after bounded retries."""


class GraphValidationError(PagedGraphError, ValueError):
    """An entity or relation was rejected before reaching the store."""


class IndexMaintenanceError(PagedGraphError):
    """Refreshing a user's summary index failed."""

    def __init__(self, user_id: str, message: str):
        super().__init__(f"summary refresh failed for user {user_id!r}: {message}")
        self.user_id = user_id


class CascadeDeleteError(PagedGraphError):
    """Relations of a deleted entity could not be removed.

    The entity itself stays deleted.
    """

    def __init__(self, user_id: str, entity_id: str, message: str):
        super().__init__(
            f"entity {entity_id!r} of user {user_id!r} was deleted but its relations were not: {message}"
        )
        self.user_id = user_id
        self.entity_id = entity_id


class TraversalTimeoutError(PagedGraphError, TimeoutError):
    """A graph traversal exceeded its time budget; partial results are discarded."""
