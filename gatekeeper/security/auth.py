"""Bearer-token authentication gate.

Extracts ``Authorization: Bearer <token>`` and delegates verification to an
external identity provider (Supabase Auth). Verification is a one-shot lookup:
the provider client keeps no session and never refreshes tokens.

Auth control:
  - required_by_default is resolved ONCE at startup from config
    (REQUIRE_API_AUTH=true, or APP_ENV=production) and passed to AuthGate.
  - Routes may override it per call with enforce(request, required=...).
  - Local and staging deployments may run unauthenticated for convenience;
    production never does.

Any provider error, a rejected token, or an empty token yields ``None`` —
authenticate() never raises. enforce() raises AuthRequired (HTTP 401) only when
authentication is required and no identity was found.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from starlette.requests import Request
from supabase import AsyncClientOptions, create_async_client

from gatekeeper.errors import AuthRequired
from gatekeeper.utils.logger import get_logger

logger = get_logger(__name__)

_BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Identity returned by the provider. Only ``id`` is read by this layer."""

    id: str
    claims: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@runtime_checkable
class IdentityProvider(Protocol):
    """Verifies a bearer token and returns the identity it belongs to."""

    async def get_user(self, token: str) -> Optional[AuthenticatedIdentity]:
        """Return the identity for ``token``, or None if the token is rejected.

        May raise on transport or provider errors; AuthGate converts those
        into ``None``.
        """
        ...


class SupabaseIdentityProvider:
    """Identity provider backed by Supabase Auth (``auth.get_user``).

    A single async client is created in initialize() with the anon key,
    ``persist_session=False`` and ``auto_refresh_token=False``. When the URL or
    anon key is not configured every token is answered with None.
    """

    def __init__(self, url: str, anon_key: str) -> None:
        self._url = url
        self._anon_key = anon_key
        self._client: Optional[Any] = None

    @property
    def configured(self) -> bool:
        return bool(self._url and self._anon_key)

    async def initialize(self) -> None:
        if not self.configured:
            logger.warning(
                "identity_provider_not_configured",
                message="SUPABASE_URL / SUPABASE_ANON_KEY unset — bearer tokens cannot be verified",
            )
            return
        self._client = await create_async_client(
            self._url,
            self._anon_key,
            options=AsyncClientOptions(persist_session=False, auto_refresh_token=False),
        )
        logger.info("identity_provider_initialized", provider="supabase")

    async def get_user(self, token: str) -> Optional[AuthenticatedIdentity]:
        if self._client is None:
            return None
        response = await self._client.auth.get_user(token)
        user = getattr(response, "user", None)
        if user is None or not getattr(user, "id", None):
            return None
        claims = user.model_dump(mode="json") if hasattr(user, "model_dump") else {}
        return AuthenticatedIdentity(id=str(user.id), claims=claims)

    async def close(self) -> None:
        self._client = None


class AuthGate:
    """Composes bearer extraction and identity-provider verification."""

    def __init__(self, provider: IdentityProvider, required_by_default: bool = False) -> None:
        self._provider = provider
        self.required_by_default = required_by_default

    @staticmethod
    def extract_bearer(request: Request) -> Optional[str]:
        """Return the token from ``Authorization: Bearer <token>``, or None."""
        header = request.headers.get("authorization", "")
        if not header.startswith(_BEARER_PREFIX):
            return None
        token = header[len(_BEARER_PREFIX):].strip()
        return token or None

    async def authenticate(self, token: Optional[str]) -> Optional[AuthenticatedIdentity]:
        """Verify ``token`` with the identity provider. Never raises."""
        if not token:
            return None
        try:
            identity = await self._provider.get_user(token)
        except Exception as exc:
            logger.warning(
                "identity_provider_error",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        if identity is None:
            logger.info("bearer_token_rejected")
        return identity

    async def enforce(
        self,
        request: Request,
        required: Optional[bool] = None,
    ) -> Optional[AuthenticatedIdentity]:
        """Authenticate the request; raise AuthRequired if required and absent.

        With ``required=False`` a verified identity is still returned when the
        caller presented a valid token, so handlers can prefer it.
        """
        if required is None:
            required = self.required_by_default

        identity = await self.authenticate(self.extract_bearer(request))
        if identity is not None or not required:
            return identity

        logger.warning(
            "auth_failed",
            path=str(request.url.path),
            method=request.method,
        )
        raise AuthRequired()
