"""Persistence for project snapshots (document store keyed by project id)."""

from narration_sync.storage.documents import (
    DocumentStore,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    validate_snapshot,
)

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "JsonFileDocumentStore",
    "validate_snapshot",
]
