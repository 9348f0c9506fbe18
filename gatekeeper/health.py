"""Health endpoint for Gatekeeper.

  GET /health — 503 before ``app.state.ready`` is set (during lifespan startup),
                200 with a status body afterwards.

The endpoint is not guarded: it is polled by container probes that send no
Origin or Authorization header, and it exposes no per-user data.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from gatekeeper.config import Config
from gatekeeper.vault.store import DocumentStore

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {
          "status": "ok" | "degraded",
          "environment": "production" | ...,
          "auth_required": true | false,
          "store_backend": "supabase" | "sqlite" | "memory",
          "store": "ok" | "unreachable"
        }
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail="Gatekeeper is starting up")

    config: Config = request.app.state.config
    store: DocumentStore = request.app.state.document_store
    store_ok = await store.health_check()

    return {
        "status": "ok" if store_ok else "degraded",
        "environment": config.auth.environment,
        "auth_required": config.auth.required_by_default,
        "store_backend": config.store.backend,
        "store": "ok" if store_ok else "unreachable",
    }
