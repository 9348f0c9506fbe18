"""Unit tests for gatekeeper/vault/factory.py — create_document_store()."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

from gatekeeper.config import Config
from gatekeeper.vault.factory import create_document_store
from gatekeeper.vault.sqlite_store import LocalSQLiteDocumentStore
from gatekeeper.vault.store import InMemoryDocumentStore
from gatekeeper.vault.supabase_store import SupabaseDocumentStore


def _config(backend: str) -> Config:
    config = Config.defaults()
    config.store.backend = backend
    return config


class TestCreateDocumentStore:
    async def test_memory(self) -> None:
        store = await create_document_store(_config("memory"))
        assert isinstance(store, InMemoryDocumentStore)

    async def test_sqlite(self, tmp_path: Path) -> None:
        config = _config("sqlite")
        config.store.sqlite_path = str(tmp_path / "app_data.db")
        store = await create_document_store(config)
        try:
            assert isinstance(store, LocalSQLiteDocumentStore)
            assert await store.health_check() is True
        finally:
            await store.close()

    async def test_supabase_default(self) -> None:
        config = _config("supabase")
        config.supabase.url = "https://proj.supabase.co"
        config.supabase.service_role_key = "service"
        with patch(
            "gatekeeper.vault.supabase_store.create_async_client",
            new=AsyncMock(return_value=object()),
        ) as create:
            store = await create_document_store(config)
        assert isinstance(store, SupabaseDocumentStore)
        create.assert_awaited_once()

    async def test_supabase_unconfigured_still_starts(self) -> None:
        store = await create_document_store(_config("supabase"))
        assert isinstance(store, SupabaseDocumentStore)
        assert await store.health_check() is False
