"""LocalSQLiteDocumentStore — aiosqlite-backed app_data documents.

For local development without a Supabase project. Mirrors the Supabase table:
one row per user_id holding the JSON document and an updated_at timestamp.

Features:
  - WAL mode: PRAGMA journal_mode=WAL
  - Schema version guard: PRAGMA user_version=1 — RuntimeError on mismatch
  - Long-lived connection: opened in initialize(), closed in close()
  - Upsert: INSERT ... ON CONFLICT(user_id) DO UPDATE
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Optional

import aiosqlite

from gatekeeper.constants import DEFAULT_SQLITE_PATH
from gatekeeper.errors import StoreError
from gatekeeper.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_data (
    user_id     TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""

_UPSERT_SQL = """
INSERT INTO app_data (user_id, data, updated_at) VALUES (?, ?, ?)
ON CONFLICT(user_id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
"""

_SCHEMA_VERSION = 1


class LocalSQLiteDocumentStore:
    """Async SQLite DocumentStore using aiosqlite exclusively.

    Usage:
        store = LocalSQLiteDocumentStore("~/.gatekeeper/app_data.db")
        await store.initialize()   # raises RuntimeError on schema version mismatch
        doc = await store.read("user-1")
        await store.upsert("user-1", doc)
        await store.close()
    """

    def __init__(self, db_path: str = DEFAULT_SQLITE_PATH) -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the connection, enable WAL mode, and create/verify schema.

        Raises:
            RuntimeError: If PRAGMA user_version is neither 0 nor 1.
        """
        parent_dir = os.path.dirname(self._db_path)
        if parent_dir:
            os.makedirs(parent_dir, exist_ok=True)

        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL;")

        cursor = await self._db.execute("PRAGMA user_version;")
        row = await cursor.fetchone()
        current_version: int = row[0] if row else 0

        if current_version == 0:
            await self._db.executescript(_CREATE_SCHEMA_SQL)
            await self._db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")
            await self._db.commit()
            logger.info("app_data_schema_created", db_path=self._db_path)
        elif current_version != _SCHEMA_VERSION:
            await self._db.close()
            self._db = None
            raise RuntimeError(
                f"Unsupported app_data database schema version: {current_version}. "
                f"Delete {self._db_path} to reset the local store."
            )

        logger.info("document_store_initialized", backend="sqlite", db_path=self._db_path)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
        logger.debug("document_store_closed", backend="sqlite")

    # ── DocumentStore Protocol Methods ───────────────────────────────────────

    async def read(self, user_id: str) -> dict[str, Any]:
        db = self._require_db()
        try:
            cursor = await db.execute(
                "SELECT data FROM app_data WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreError() from exc
        if row is None:
            return {}
        try:
            data = json.loads(row["data"])
        except json.JSONDecodeError as exc:
            logger.error("store_document_corrupt", user_id=user_id, error=str(exc))
            raise StoreError("Stored document is not valid JSON") from exc
        return data if isinstance(data, dict) else {}

    async def upsert(self, user_id: str, data: dict[str, Any]) -> None:
        db = self._require_db()
        try:
            await db.execute(
                _UPSERT_SQL,
                (user_id, json.dumps(data), datetime.now(timezone.utc).isoformat()),
            )
            await db.commit()
        except aiosqlite.Error as exc:
            raise StoreError() from exc

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            await self._db.execute("SELECT 1")
            return True
        except aiosqlite.Error as exc:
            logger.error("document_store_health_check_failed", backend="sqlite", error=str(exc))
            return False

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("Local document store is not initialized")
        return self._db
