"""SupabaseDocumentStore — per-user app_data documents in Supabase.

Uses a single async Supabase client authenticated with the service-role key
(row-level security bypassed — user scoping is enforced here by always
filtering on the verified user_id). The client keeps no session and never
refreshes tokens.

Failures are NOT swallowed: a missing URL/service-role key raises ConfigError
on first use, and every PostgREST failure is re-raised as StoreError with the
original exception chained (logged server-side, generic message to callers).

Table schema (must exist in the Supabase project):

    create table app_data (
        user_id    uuid primary key references auth.users(id),
        data       jsonb not null default '{}'::jsonb,
        updated_at timestamptz not null default now()
    );

Environment:
  SUPABASE_URL               — project URL
  SUPABASE_SERVICE_ROLE_KEY  — service role key (never the anon key)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from supabase import AsyncClientOptions, create_async_client

from gatekeeper.constants import APP_DATA_TABLE
from gatekeeper.errors import ConfigError, StoreError
from gatekeeper.utils.logger import get_logger

logger = get_logger(__name__)


class SupabaseDocumentStore:
    """DocumentStore backed by the Supabase ``app_data`` table."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        table_name: str = APP_DATA_TABLE,
    ) -> None:
        self._url = url
        self._key = service_role_key
        self._table_name = table_name
        self._client: Optional[Any] = None

    @property
    def configured(self) -> bool:
        return bool(self._url and self._key)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create the async client when credentials are present.

        Missing credentials are not fatal at startup (local deployments may not
        use the vault); they raise ConfigError when the store is first used.
        """
        if not self.configured:
            logger.warning(
                "document_store_not_configured",
                backend="supabase",
                message="SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY unset — vault calls will fail",
            )
            return
        try:
            self._client = await create_async_client(
                self._url,
                self._key,
                options=AsyncClientOptions(persist_session=False, auto_refresh_token=False),
            )
        except Exception as exc:
            raise ConfigError("Supabase service role client could not be created") from exc
        logger.info("document_store_initialized", backend="supabase", table=self._table_name)

    async def close(self) -> None:
        self._client = None
        logger.debug("document_store_closed", backend="supabase")

    # ── DocumentStore Protocol Methods ───────────────────────────────────────

    async def read(self, user_id: str) -> dict[str, Any]:
        client = self._require_client()
        try:
            response = await (
                client.table(self._table_name)
                .select("data")
                .eq("user_id", user_id)
                .maybe_single()
                .execute()
            )
        except Exception as exc:
            logger.error(
                "document_store_read_failed",
                backend="supabase",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StoreError() from exc

        # maybe_single() yields no response (or data=None) when the row is absent.
        row = getattr(response, "data", None) if response is not None else None
        if not isinstance(row, dict):
            return {}
        data = row.get("data")
        return data if isinstance(data, dict) else {}

    async def upsert(self, user_id: str, data: dict[str, Any]) -> None:
        client = self._require_client()
        payload = {
            "user_id": user_id,
            "data": data,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await (
                client.table(self._table_name)
                .upsert(payload, on_conflict="user_id")
                .execute()
            )
        except Exception as exc:
            logger.error(
                "document_store_write_failed",
                backend="supabase",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StoreError() from exc

    async def health_check(self) -> bool:
        """Returns True if Supabase answers a one-row select. Must not raise."""
        if self._client is None:
            return False
        try:
            response = await (
                self._client.table(self._table_name)
                .select("user_id")
                .limit(1)
                .execute()
            )
            return response is not None
        except Exception as exc:
            logger.error(
                "document_store_health_check_failed",
                backend="supabase",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False

    def _require_client(self) -> Any:
        if self._client is None:
            raise ConfigError("Supabase service role is not configured")
        return self._client
