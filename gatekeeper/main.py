"""Gatekeeper FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app()          — testable application factory
  - lifespan              — @asynccontextmanager startup/shutdown sequence
  - install_components()  — wires config + collaborators into app.state
  - RequestIDMiddleware   — per-request ULID bound into every log line
  - exception handlers    — every rejection rendered as {"error": "<message>"}
  - app = create_app()    — module-level instance for uvicorn

Startup sequence:
  1. load_config()                → app.state.config (resolved once)
  2. create_document_store()      → app.state.document_store
  3. SupabaseIdentityProvider     → app.state.identity_provider
  4. install_components()         → limiter, guard, vault, provider allow-list
  5. app.state.ready = True

Shutdown (reverse): ready = False → close identity provider → close store.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from gatekeeper.api.secrets import router as secrets_router
from gatekeeper.config import Config, load_config
from gatekeeper.errors import GatekeeperError, PolicyDenied, RateLimited
from gatekeeper.health import router as health_router
from gatekeeper.security.auth import AuthGate, IdentityProvider, SupabaseIdentityProvider
from gatekeeper.security.guard import PreflightHandled, RequestGuard
from gatekeeper.security.limiter import RateLimiter
from gatekeeper.security.origin import OriginPolicy
from gatekeeper.utils.logger import (
    clear_request_id,
    configure_logging,
    get_logger,
    set_request_id,
)
from gatekeeper.utils.ulid import generate_ulid
from gatekeeper.vault.credentials import CredentialVault
from gatekeeper.vault.factory import create_document_store
from gatekeeper.vault.store import DocumentStore

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)

_GENERIC_SERVER_ERROR = "Internal server error"


# ─── Middleware ───────────────────────────────────────────────────────────────


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a ULID to each request, bind it to the log context, echo it back."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        request_id = generate_ulid()
        set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_id()
        response.headers["X-Request-ID"] = request_id
        return response


# ─── Component wiring ─────────────────────────────────────────────────────────


def install_components(
    app: FastAPI,
    config: Config,
    document_store: DocumentStore,
    identity_provider: IdentityProvider,
) -> None:
    """Build the security components from ``config`` and attach them to app.state.

    The rate-limit table, origin policy and auth default are owned by this app
    instance; nothing is module-global, so tests can build isolated apps.
    """
    limiter = RateLimiter()
    auth_gate = AuthGate(identity_provider, required_by_default=config.auth.required_by_default)
    origin_policy = OriginPolicy(
        allowed_origins=config.cors.allowed_origins,
        app_origin=config.cors.app_origin,
    )
    logger.info(
        "origin_policy_installed",
        mode="allow_list" if origin_policy.uses_allow_list else "heuristics",
        allowed_origins=len(config.cors.allowed_origins),
    )

    app.state.config = config
    app.state.document_store = document_store
    app.state.identity_provider = identity_provider
    app.state.limiter = limiter
    app.state.guard = RequestGuard(origin_policy, limiter, auth_gate)
    app.state.vault = CredentialVault(document_store, config.vault.encryption_key)
    app.state.secret_providers = frozenset(config.vault.providers)


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    logger.info("Gatekeeper starting up...")

    # load_config() raises SystemExit on an invalid config file.
    config: Config = load_config()

    document_store = await create_document_store(config)

    identity_provider = SupabaseIdentityProvider(
        url=config.supabase.url,
        anon_key=config.supabase.anon_key,
    )
    await identity_provider.initialize()

    install_components(app, config, document_store, identity_provider)

    app.state.ready = True
    logger.info(
        "Gatekeeper ready",
        environment=config.auth.environment,
        auth_required=config.auth.required_by_default,
    )

    yield

    logger.info("Gatekeeper shutting down...")
    app.state.ready = False

    try:
        await identity_provider.close()
    except Exception as exc:
        logger.warning("Identity provider close error (non-fatal)", error=str(exc))

    await document_store.close()
    logger.info("Gatekeeper shutdown complete")


# ─── Exception rendering ──────────────────────────────────────────────────────


def _expose_server_errors(request: Request, exc: GatekeeperError) -> bool:
    """5xx messages reach callers only in development, and never for store or crypto failures."""
    if not exc.expose_detail:
        return False
    config = getattr(request.app.state, "config", None)
    return config is not None and config.auth.development


async def gatekeeper_error_handler(request: Request, exc: GatekeeperError) -> JSONResponse:
    if exc.is_server_error:
        logger.error(
            "request_failed",
            code=exc.code,
            error=exc.message,
            cause=repr(exc.__cause__) if exc.__cause__ else None,
            path=str(request.url.path),
        )
        message = exc.message if _expose_server_errors(request, exc) else _GENERIC_SERVER_ERROR
    else:
        if not isinstance(exc, (PolicyDenied, RateLimited)):
            # Policy and rate-limit rejections are already logged by the guard.
            logger.info(
                "request_rejected",
                code=exc.code,
                status_code=exc.status_code,
                path=str(request.url.path),
            )
        message = exc.message

    # Errors raised by a handler body after the guard passed still need CORS.
    cors = getattr(request.state, "cors_headers", None) or {}
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message},
        headers={**cors, **exc.headers},
    )


async def preflight_handler(request: Request, exc: PreflightHandled) -> Response:
    return Response(status_code=200, headers=exc.headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=str(request.url.path),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=500, content={"error": _GENERIC_SERVER_ERROR})


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the Gatekeeper FastAPI application.

    Call this function directly in unit tests to get an isolated app instance,
    then either run the lifespan or call install_components() with fakes.
    """
    application = FastAPI(
        title="Gatekeeper",
        description="Request-security layer: origin policy, rate limiting, bearer auth, credential vault",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    # Ensures /health returns 503 for any request that arrives before startup completes.
    application.state.ready = False

    # CORS is decided per route by RequestGuard. CORSMiddleware must not be
    # added here: it answers preflights before the guard runs.
    application.add_middleware(RequestIDMiddleware)

    application.include_router(health_router)
    application.include_router(secrets_router, prefix="/api")

    application.add_exception_handler(GatekeeperError, gatekeeper_error_handler)  # type: ignore[arg-type]
    application.add_exception_handler(PreflightHandled, preflight_handler)  # type: ignore[arg-type]
    application.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    application.add_exception_handler(Exception, unhandled_exception_handler)

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
