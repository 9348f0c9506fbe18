"""Integration tests for the secrets API through the full application stack.

Drives create_app() + install_components() with httpx ASGITransport, an
InMemoryDocumentStore and a FakeIdentityProvider. Covers:

  - 403 for a foreign origin (no CORS headers)
  - 200 empty preflight with CORS headers
  - 405 for the wrong method (with CORS headers)
  - 429 + Retry-After once the per-client budget is spent
  - 401 without a valid bearer token (always required on these routes)
  - 400 for unknown providers / non-object secrets
  - save → get round trip, user scoping, corrupt entries omitted
  - 5xx messages detailed only in development, store failures always generic
  - X-Request-ID on every response
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiosqlite
import pytest
from httpx import ASGITransport, AsyncClient

from gatekeeper.vault.sqlite_store import LocalSQLiteDocumentStore
from gatekeeper.vault.store import InMemoryDocumentStore
from tests.conftest import (
    APP_ORIGIN,
    OTHER_TOKEN,
    VALID_TOKEN,
    FakeIdentityProvider,
    build_app,
    make_config,
)

SAVE = "/api/secrets/save"
GET = "/api/secrets/get"


def _headers(token: str | None = VALID_TOKEN, origin: str | None = APP_ORIGIN) -> dict[str, str]:
    headers: dict[str, str] = {}
    if origin is not None:
        headers["Origin"] = origin
    if token is not None:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _client(app, peer: str = "198.51.100.10") -> AsyncClient:
    return AsyncClient(
        transport=ASGITransport(app=app, client=(peer, 52000)),
        base_url="http://api.example.com",
    )


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def app(store: InMemoryDocumentStore, identity_provider: FakeIdentityProvider):
    return build_app(make_config(), store=store, provider=identity_provider)


# ─── Guard pipeline over HTTP ─────────────────────────────────────────────────


class TestGuardOverHttp:
    async def test_foreign_origin_forbidden(self, app) -> None:
        async with _client(app) as client:
            response = await client.post(SAVE, headers=_headers(origin="https://evil.com"), json={})

        assert response.status_code == 403
        assert response.json() == {"error": "Origin not allowed"}
        assert "access-control-allow-origin" not in response.headers

    async def test_preflight(self, app) -> None:
        async with _client(app) as client:
            response = await client.options(
                SAVE,
                headers={
                    "Origin": APP_ORIGIN,
                    "Access-Control-Request-Method": "POST",
                    "Access-Control-Request-Headers": "authorization, content-type",
                },
            )

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == APP_ORIGIN
        assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"
        assert response.headers["access-control-allow-headers"] == "Content-Type, Authorization"
        assert response.headers["vary"] == "Origin"

    async def test_preflight_from_foreign_origin(self, app) -> None:
        async with _client(app) as client:
            response = await client.options(SAVE, headers={"Origin": "https://evil.com"})
        assert response.status_code == 403

    async def test_wrong_method(self, app) -> None:
        async with _client(app) as client:
            response = await client.get(GET, headers=_headers())

        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed"}
        assert response.headers["access-control-allow-origin"] == APP_ORIGIN

    @pytest.mark.parametrize(
        ("origin", "status"),
        [(APP_ORIGIN, 405), ("https://evil.com", 403)],
    )
    async def test_trace_runs_through_guard(self, app, origin: str, status: int) -> None:
        async with _client(app) as client:
            response = await client.request("TRACE", SAVE, headers=_headers(origin=origin))
        assert response.status_code == status

    async def test_missing_token(self, app) -> None:
        async with _client(app) as client:
            response = await client.post(SAVE, headers=_headers(token=None), json={})

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert response.headers["access-control-allow-origin"] == APP_ORIGIN

    async def test_rejected_token(self, app) -> None:
        async with _client(app) as client:
            response = await client.post(GET, headers=_headers(token="forged"), json={})
        assert response.status_code == 401

    async def test_auth_required_even_when_default_is_lenient(self, store, identity_provider) -> None:
        """Secrets routes require auth regardless of REQUIRE_API_AUTH."""
        app = build_app(make_config(require_api_auth=False), store=store, provider=identity_provider)
        async with _client(app) as client:
            response = await client.post(GET, headers=_headers(token=None), json={})
        assert response.status_code == 401

    async def test_save_rate_limit(self, app) -> None:
        """30 saves per minute per client; the 31st is rejected before auth."""
        async with _client(app) as client:
            for _ in range(30):
                response = await client.post(SAVE, headers=_headers(token=None), json={})
                assert response.status_code == 401
            response = await client.post(SAVE, headers=_headers(token=None), json={})

        assert response.status_code == 429
        assert response.json() == {"error": "Too many requests. Please try again shortly."}
        assert response.headers["retry-after"] == "60"
        assert response.headers["access-control-allow-origin"] == APP_ORIGIN

    async def test_rate_limit_is_per_client_and_purpose(self, app) -> None:
        async with _client(app) as client:
            for _ in range(31):
                await client.post(SAVE, headers=_headers(token=None), json={})

            other_client = await client.post(
                SAVE,
                headers={**_headers(token=None), "X-Forwarded-For": "203.0.113.50"},
                json={},
            )
            other_purpose = await client.post(GET, headers=_headers(token=None), json={})

        assert other_client.status_code == 401
        assert other_purpose.status_code == 401

    async def test_request_id_header(self, app) -> None:
        async with _client(app) as client:
            response = await client.post(SAVE, headers=_headers(origin="https://evil.com"), json={})
        assert len(response.headers["x-request-id"]) == 26


# ─── Save / get ───────────────────────────────────────────────────────────────


class TestSecretsFlow:
    async def test_save_then_get(self, app, store: InMemoryDocumentStore) -> None:
        async with _client(app) as client:
            saved = await client.post(
                SAVE,
                headers=_headers(),
                json={
                    "provider": "shopify",
                    "secret": {"accessToken": "shpat_abc", "shop": "demo.myshopify.com"},
                    "metadata": {"label": "Main store"},
                },
            )
            fetched = await client.post(GET, headers=_headers(), json={"providers": ["shopify"]})

        assert saved.status_code == 200
        body = saved.json()
        assert body["success"] is True
        assert body["provider"] == "shopify"
        assert body["updatedAt"].endswith("Z")
        assert saved.headers["access-control-allow-origin"] == APP_ORIGIN

        assert fetched.status_code == 200
        secrets = fetched.json()["secrets"]
        assert secrets["shopify"]["secret"] == {"accessToken": "shpat_abc", "shop": "demo.myshopify.com"}
        assert secrets["shopify"]["metadata"] == {"label": "Main store"}
        assert secrets["shopify"]["updatedAt"] == body["updatedAt"]

        doc = await store.read("user-1")
        assert "shpat_abc" not in str(doc)

    async def test_get_all_when_providers_empty(self, app) -> None:
        async with _client(app) as client:
            for provider in ("shopify", "qbo"):
                await client.post(
                    SAVE, headers=_headers(), json={"provider": provider, "secret": {"k": provider}}
                )
            response = await client.post(GET, headers=_headers(), json={})

        assert set(response.json()["secrets"]) == {"shopify", "qbo"}

    async def test_unknown_requested_providers_mean_all(self, app) -> None:
        async with _client(app) as client:
            await client.post(SAVE, headers=_headers(), json={"provider": "amazon", "secret": {}})
            response = await client.post(
                GET, headers=_headers(), json={"providers": ["not-a-provider", 7]}
            )
        assert set(response.json()["secrets"]) == {"amazon"}

    async def test_providers_not_a_list(self, app) -> None:
        async with _client(app) as client:
            await client.post(SAVE, headers=_headers(), json={"provider": "amazon", "secret": {"a": 1}})
            response = await client.post(GET, headers=_headers(), json={"providers": "amazon"})
        assert response.status_code == 200
        assert set(response.json()["secrets"]) == {"amazon"}

    async def test_users_are_isolated(self, app) -> None:
        async with _client(app) as client:
            await client.post(SAVE, headers=_headers(), json={"provider": "qbo", "secret": {"a": 1}})
            response = await client.post(GET, headers=_headers(token=OTHER_TOKEN), json={})
        assert response.json() == {"success": True, "secrets": {}}

    async def test_user_id_in_body_is_ignored(self, app, store) -> None:
        async with _client(app) as client:
            await client.post(
                SAVE,
                headers=_headers(),
                json={"provider": "qbo", "secret": {"a": 1}, "userId": "user-2"},
            )
        assert await store.read("user-2") == {}
        assert "qbo" in (await store.read("user-1"))["_secureSecrets"]

    async def test_corrupt_entry_omitted(self, app, store) -> None:
        async with _client(app) as client:
            await client.post(SAVE, headers=_headers(), json={"provider": "qbo", "secret": {"a": 1}})
            await client.post(SAVE, headers=_headers(), json={"provider": "amazon", "secret": {"b": 2}})

            doc = await store.read("user-1")
            doc["_secureSecrets"]["qbo"]["authTag"] = "AAAAAAAAAAAAAAAAAAAAAA=="
            await store.upsert("user-1", doc)

            response = await client.post(GET, headers=_headers(), json={})

        assert response.status_code == 200
        assert set(response.json()["secrets"]) == {"amazon"}

    @pytest.mark.parametrize(
        ("payload", "message"),
        [
            ({"provider": "stripe", "secret": {"a": 1}}, "Invalid provider"),
            ({"secret": {"a": 1}}, "Invalid provider"),
            ({"provider": 5, "secret": {"a": 1}}, "Invalid provider"),
            ({"provider": "shopify"}, "Secret payload is required"),
            ({"provider": "shopify", "secret": "token"}, "Secret payload is required"),
            ({"provider": "shopify", "secret": ["a"]}, "Secret payload is required"),
        ],
    )
    async def test_validation(self, app, store, payload: dict[str, Any], message: str) -> None:
        async with _client(app) as client:
            response = await client.post(SAVE, headers=_headers(), json=payload)

        assert response.status_code == 400
        assert response.json() == {"error": message}
        assert response.headers["access-control-allow-origin"] == APP_ORIGIN
        assert store.writes == 0

    async def test_malformed_json_body(self, app) -> None:
        async with _client(app) as client:
            response = await client.post(
                SAVE,
                headers={**_headers(), "Content-Type": "application/json"},
                content=b"{not json",
            )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid provider"}

    async def test_non_object_metadata_becomes_empty(self, app) -> None:
        async with _client(app) as client:
            await client.post(
                SAVE,
                headers=_headers(),
                json={"provider": "packiyo", "secret": {"k": 1}, "metadata": "ignored"},
            )
            response = await client.post(GET, headers=_headers(), json={"providers": ["packiyo"]})
        assert response.json()["secrets"]["packiyo"]["metadata"] == {}


# ─── Server errors ────────────────────────────────────────────────────────────


class TestServerErrors:
    async def test_missing_passphrase_detailed_in_development(self, store, identity_provider) -> None:
        app = build_app(make_config(passphrase=""), store=store, provider=identity_provider)
        async with _client(app) as client:
            response = await client.post(
                SAVE, headers=_headers(), json={"provider": "shopify", "secret": {"a": 1}}
            )

        assert response.status_code == 500
        assert response.json() == {"error": "SECRETS_ENCRYPTION_KEY is not configured"}
        assert response.headers["access-control-allow-origin"] == APP_ORIGIN

    async def test_missing_passphrase_generic_in_production(self, store, identity_provider) -> None:
        app = build_app(
            make_config(passphrase="", environment="production"),
            store=store,
            provider=identity_provider,
        )
        async with _client(app) as client:
            response = await client.post(
                SAVE, headers=_headers(), json={"provider": "shopify", "secret": {"a": 1}}
            )

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    async def test_missing_passphrase_generic_in_staging(self, store, identity_provider) -> None:
        app = build_app(
            make_config(passphrase="", environment="staging"),
            store=store,
            provider=identity_provider,
        )
        async with _client(app) as client:
            response = await client.post(
                SAVE, headers=_headers(), json={"provider": "shopify", "secret": {"a": 1}}
            )

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    @pytest.mark.parametrize("environment", ["staging", "development"])
    async def test_corrupt_store_row_is_generic(
        self, tmp_path: Path, identity_provider, environment: str
    ) -> None:
        db_path = tmp_path / "app_data.db"
        sqlite_store = LocalSQLiteDocumentStore(str(db_path))
        await sqlite_store.initialize()
        await sqlite_store.upsert("user-1", {"theme": "dark"})
        async with aiosqlite.connect(db_path) as db:
            await db.execute("UPDATE app_data SET data = ? WHERE user_id = ?", ("{oops", "user-1"))
            await db.commit()

        app = build_app(
            make_config(environment=environment),
            store=sqlite_store,
            provider=identity_provider,
        )
        try:
            async with _client(app) as client:
                response = await client.post(GET, headers=_headers(), json={"providers": []})
        finally:
            await sqlite_store.close()

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert "user-1" not in response.text

    async def test_unknown_route_is_json_404(self, app) -> None:
        async with _client(app) as client:
            response = await client.post("/api/secrets/delete", headers=_headers(), json={})
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}
