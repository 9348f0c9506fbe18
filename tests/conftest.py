"""Root test configuration for Gatekeeper.

Clears every environment variable the config layer reads so that a developer's
shell (or CI secrets) never leaks into a test, and provides the shared fakes:

  FakeIdentityProvider — token → user id table standing in for Supabase Auth
  make_config()        — Config with a vault passphrase and an origin allow-list
  build_app()          — create_app() + install_components(), marked ready,
                         so tests never run the real lifespan
"""

from __future__ import annotations

from typing import Optional

import pytest
from fastapi import FastAPI

from gatekeeper.config import Config
from gatekeeper.security.auth import AuthenticatedIdentity
from gatekeeper.vault.store import DocumentStore, InMemoryDocumentStore

APP_ORIGIN = "https://app.example.com"
TEST_PASSPHRASE = "correct horse battery staple"

VALID_TOKEN = "token-user-1"
OTHER_TOKEN = "token-user-2"

_CONFIG_ENV_VARS = (
    "ALLOWED_ORIGINS",
    "APP_ORIGIN",
    "VITE_APP_ORIGIN",
    "REQUIRE_API_AUTH",
    "APP_ENV",
    "NODE_ENV",
    "SUPABASE_URL",
    "VITE_SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "VITE_SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SECRETS_ENCRYPTION_KEY",
    "GATEKEEPER_CONFIG",
    "GATEKEEPER_STORE_BACKEND",
    "GATEKEEPER_SQLITE_PATH",
    "GATEKEEPER_PORT",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove config environment variables for every test."""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeIdentityProvider:
    """IdentityProvider double: a fixed token table, or an error on every call."""

    def __init__(
        self,
        users: Optional[dict[str, str]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.users = dict(users or {})
        self.error = error
        self.calls: list[str] = []

    async def get_user(self, token: str) -> Optional[AuthenticatedIdentity]:
        self.calls.append(token)
        if self.error is not None:
            raise self.error
        user_id = self.users.get(token)
        if user_id is None:
            return None
        return AuthenticatedIdentity(id=user_id, claims={"email": f"{user_id}@example.com"})


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider({VALID_TOKEN: "user-1", OTHER_TOKEN: "user-2"})


def make_config(
    allowed_origins: Optional[list[str]] = None,
    passphrase: str = TEST_PASSPHRASE,
    environment: str = "development",
    require_api_auth: bool = False,
) -> Config:
    config = Config.defaults()
    config.cors.allowed_origins = [APP_ORIGIN] if allowed_origins is None else allowed_origins
    config.cors.app_origin = APP_ORIGIN
    config.vault.encryption_key = passphrase
    config.auth.environment = environment
    config.auth.require_api_auth = require_api_auth
    config.store.backend = "memory"
    return config


def build_app(
    config: Optional[Config] = None,
    store: Optional[DocumentStore] = None,
    provider: Optional[FakeIdentityProvider] = None,
) -> FastAPI:
    """Isolated, ready application wired with in-memory collaborators."""
    from gatekeeper.main import create_app, install_components

    app = create_app()
    install_components(
        app,
        config or make_config(),
        store if store is not None else InMemoryDocumentStore(),
        provider if provider is not None else FakeIdentityProvider(),
    )
    app.state.ready = True
    return app
