"""DocumentStore Protocol + InMemoryDocumentStore.

The document store is the system of record for per-user application data:
one JSON document per user (table ``app_data``, keyed by ``user_id``). The
vault only reads the whole document and upserts it back after merging its own
``_secureSecrets`` field; everything else in the document is opaque here.

Layout:
    store.py          — DocumentStore Protocol + InMemoryDocumentStore
    supabase_store.py — SupabaseDocumentStore (PostgREST, service-role key)
    sqlite_store.py   — LocalSQLiteDocumentStore (aiosqlite, local development)
    factory.py        — create_document_store() — backend selection from Config

Unlike a fire-and-forget log sink, store failures propagate: implementations
raise StoreError (or ConfigError when credentials are missing).
"""

from __future__ import annotations

import copy
from typing import Any, Protocol, runtime_checkable

from gatekeeper.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class DocumentStore(Protocol):
    """Pluggable per-user document store interface."""

    async def initialize(self) -> None:
        """Open connections / create clients. Called once at startup."""
        ...

    async def read(self, user_id: str) -> dict[str, Any]:
        """Return the user's document, or {} when none exists.

        Raises StoreError on backend failure.
        """
        ...

    async def upsert(self, user_id: str, data: dict[str, Any]) -> None:
        """Insert or replace the user's document (keyed by user_id).

        Raises StoreError on backend failure.
        """
        ...

    async def health_check(self) -> bool:
        """Returns True if the backend is operational. Must not raise."""
        ...

    async def close(self) -> None:
        """Release connections. Called during graceful shutdown."""
        ...


class InMemoryDocumentStore:
    """Dict-backed DocumentStore for tests and throwaway local runs.

    Documents are deep-copied on the way in and out so callers can never
    mutate stored state without an upsert, matching a real backend.
    """

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self.reads = 0
        self.writes = 0

    async def initialize(self) -> None:
        logger.info("document_store_initialized", backend="memory")

    async def read(self, user_id: str) -> dict[str, Any]:
        self.reads += 1
        return copy.deepcopy(self._documents.get(user_id, {}))

    async def upsert(self, user_id: str, data: dict[str, Any]) -> None:
        self.writes += 1
        self._documents[user_id] = copy.deepcopy(data)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        logger.debug("document_store_closed", backend="memory")


assert isinstance(InMemoryDocumentStore(), DocumentStore), (
    "InMemoryDocumentStore does not satisfy DocumentStore protocol — implementation error"
)
