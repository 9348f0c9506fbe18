"""Document store factory — backend selection and initialization.

Backend selection (config.store.backend / GATEKEEPER_STORE_BACKEND):
  - "supabase" (default) → SupabaseDocumentStore(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
  - "sqlite"             → LocalSQLiteDocumentStore(GATEKEEPER_SQLITE_PATH)
  - "memory"             → InMemoryDocumentStore (data lost on restart)
"""

from __future__ import annotations

from gatekeeper.config import Config
from gatekeeper.vault.store import DocumentStore, InMemoryDocumentStore
from gatekeeper.utils.logger import get_logger

logger = get_logger(__name__)


async def create_document_store(config: Config) -> DocumentStore:
    """Create and initialize the configured document store.

    Raises:
      RuntimeError: If the local SQLite schema version is incompatible.
      ConfigError:  If Supabase credentials are present but the client cannot be built.
    """
    backend = config.store.backend

    if backend == "sqlite":
        from gatekeeper.vault.sqlite_store import LocalSQLiteDocumentStore

        store: DocumentStore = LocalSQLiteDocumentStore(db_path=config.store.sqlite_path)
    elif backend == "memory":
        logger.warning("document_store_in_memory", message="secrets are lost on restart")
        store = InMemoryDocumentStore()
    else:
        from gatekeeper.vault.supabase_store import SupabaseDocumentStore

        store = SupabaseDocumentStore(
            url=config.supabase.url,
            service_role_key=config.supabase.service_role_key,
        )

    await store.initialize()
    logger.info("document_store_selected", backend=backend)
    return store
