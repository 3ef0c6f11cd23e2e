"""Document store engines."""

from .base import DocumentStore, IndexSpec
from .connection import ConnectionGate
from .factory import build_document_store
from .memory import MemoryDocumentStore

__all__ = [
    "DocumentStore",
    "IndexSpec",
    "ConnectionGate",
    "MemoryDocumentStore",
    "build_document_store",
]
