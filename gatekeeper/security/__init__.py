"""Gatekeeper request-security package.

Public API:
  - OriginPolicy / cors_headers   — cross-origin authorization
  - RateLimiter                   — in-memory fixed-window counter
  - AuthGate / IdentityProvider   — bearer-token verification
  - RequestGuard / RoutePolicy    — the composed pipeline + FastAPI dependency
"""

from __future__ import annotations

from gatekeeper.security.auth import (
    AuthenticatedIdentity,
    AuthGate,
    IdentityProvider,
    SupabaseIdentityProvider,
)
from gatekeeper.security.guard import (
    ALL_METHODS,
    GuardedRequest,
    PreflightHandled,
    RequestGuard,
    RoutePolicy,
    guard_dependency,
)
from gatekeeper.security.limiter import (
    RateLimiter,
    RateLimitResult,
    client_id_from_request,
)
from gatekeeper.security.origin import OriginPolicy, cors_headers

__all__ = [
    "ALL_METHODS",
    "AuthenticatedIdentity",
    "AuthGate",
    "GuardedRequest",
    "IdentityProvider",
    "OriginPolicy",
    "PreflightHandled",
    "RateLimitResult",
    "RateLimiter",
    "RequestGuard",
    "RoutePolicy",
    "SupabaseIdentityProvider",
    "client_id_from_request",
    "cors_headers",
    "guard_dependency",
]
