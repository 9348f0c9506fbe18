"""Secrets API — store and fetch encrypted third-party credentials.

Provides:
  POST /api/secrets/save — encrypt and store one provider's credentials
  POST /api/secrets/get  — decrypt stored credentials for the caller

Both routes run the full RequestGuard pipeline (origin → preflight → method →
rate limit → auth) before the handler body, and always require a verified
identity regardless of the deployment's default auth policy. The user id is
taken from the verified identity, never from the request body.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from gatekeeper.constants import (
    SECRETS_GET_RATE_LIMIT_MAX,
    SECRETS_RATE_LIMIT_WINDOW_MS,
    SECRETS_SAVE_RATE_LIMIT_MAX,
)
from gatekeeper.errors import AuthRequired, ValidationError
from gatekeeper.security.guard import ALL_METHODS, GuardedRequest, RoutePolicy, guard_dependency
from gatekeeper.utils.logger import get_logger
from gatekeeper.vault.credentials import CredentialVault

logger = get_logger(__name__)

router = APIRouter(tags=["secrets"])

SAVE_POLICY = RoutePolicy(
    method="POST",
    purpose="secrets-save",
    max_requests=SECRETS_SAVE_RATE_LIMIT_MAX,
    window_ms=SECRETS_RATE_LIMIT_WINDOW_MS,
    require_auth=True,
)

GET_POLICY = RoutePolicy(
    method="POST",
    purpose="secrets-get",
    max_requests=SECRETS_GET_RATE_LIMIT_MAX,
    window_ms=SECRETS_RATE_LIMIT_WINDOW_MS,
    require_auth=True,
)


# ─── Request Models ───────────────────────────────────────────────────────────


class SaveSecretRequest(BaseModel):
    """Request body for POST /api/secrets/save.

    Fields are loosely typed so that a wrong type maps to the same 400 message
    as a missing value.
    """

    provider: Any = None
    secret: Any = None
    metadata: Any = None


class GetSecretsRequest(BaseModel):
    """Request body for POST /api/secrets/get.

    An empty list (or a list with no known provider) returns every provider on file.
    """

    providers: list[Any] = Field(default_factory=list)


# ─── Endpoints ────────────────────────────────────────────────────────────────


@router.api_route("/secrets/save", methods=ALL_METHODS)
async def save_secret(
    request: Request,
    guarded: GuardedRequest = Depends(guard_dependency(SAVE_POLICY)),
) -> dict:
    """Encrypt and store credentials for one provider.

    Returns:
        JSON: {"success": true, "provider": ..., "updatedAt": ...}

    Raises:
        400 ValidationError: unknown provider or non-object secret.
    """
    user_id = _require_user(guarded)
    body = SaveSecretRequest.model_validate(await _read_json(request))

    vault: CredentialVault = request.app.state.vault
    providers: frozenset[str] = request.app.state.secret_providers

    if not isinstance(body.provider, str) or body.provider not in providers:
        raise ValidationError("Invalid provider")
    if not isinstance(body.secret, dict):
        raise ValidationError("Secret payload is required")
    metadata = body.metadata if isinstance(body.metadata, dict) else {}

    saved = await vault.save(user_id, body.provider, body.secret, metadata)
    return {"success": True, "provider": saved.provider, "updatedAt": saved.updated_at}


@router.api_route("/secrets/get", methods=ALL_METHODS)
async def get_secrets(
    request: Request,
    guarded: GuardedRequest = Depends(guard_dependency(GET_POLICY)),
) -> dict:
    """Return the caller's decrypted credentials.

    Returns:
        JSON: {"success": true, "secrets": {provider: {secret, metadata, updatedAt}}}
    """
    user_id = _require_user(guarded)
    try:
        body = GetSecretsRequest.model_validate(await _read_json(request))
    except PydanticValidationError:
        # "providers" was not a list: treat as "all on file"
        body = GetSecretsRequest()

    vault: CredentialVault = request.app.state.vault
    providers: frozenset[str] = request.app.state.secret_providers

    requested = [p for p in body.providers if isinstance(p, str) and p in providers]
    secrets = await vault.get_many(user_id, requested)
    return {
        "success": True,
        "secrets": {provider: stored.to_dict() for provider, stored in secrets.items()},
    }


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _require_user(guarded: GuardedRequest) -> str:
    # Both policies set require_auth=True, so the guard has already raised
    # AuthRequired when no identity exists.
    if guarded.user_id is None:
        raise AuthRequired()
    return guarded.user_id


async def _read_json(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object; anything else reads as {}."""
    try:
        payload = await request.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
