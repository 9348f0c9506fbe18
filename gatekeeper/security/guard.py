"""RequestGuard — the fixed security pipeline in front of every handler.

Stage order (reject-fast, cheapest first):

  1. OriginPolicy      → 403 OriginDenied (no CORS headers)
  2. OPTIONS preflight → bare 200 with CORS headers (only after origin allowed)
  3. Method check      → 405 MethodNotAllowed
  4. RateLimiter       → 429 RateLimited (+ Retry-After)
  5. AuthGate          → 401 AuthRequired (network-bound, runs last)

Stateless checks precede the stateful rate counter, which precedes the
network-bound identity lookup. Every error raised after stage 1 carries the
CORS headers so browsers can read the rejection.

Usage in a router:

    SAVE_POLICY = RoutePolicy(method="POST", purpose="secrets-save", max_requests=30)

    @router.api_route("/secrets/save", methods=ALL_METHODS)
    async def save(guarded: GuardedRequest = Depends(guard_dependency(SAVE_POLICY))):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from fastapi import Request, Response

from gatekeeper.constants import DEFAULT_RATE_LIMIT_MAX, DEFAULT_RATE_LIMIT_WINDOW_MS
from gatekeeper.errors import GatekeeperError, MethodNotAllowed, OriginDenied, RateLimited
from gatekeeper.security.auth import AuthenticatedIdentity, AuthGate
from gatekeeper.security.limiter import RateLimiter, RateLimitResult, client_id_from_request
from gatekeeper.security.origin import OriginPolicy, cors_headers
from gatekeeper.utils.logger import get_logger

logger = get_logger(__name__)

# Guarded routes are registered for every method so the guard, not the router,
# decides 405 after the origin check has run.
ALL_METHODS: list[str] = [
    "GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT",
]


@dataclass(frozen=True)
class RoutePolicy:
    """Per-route guard settings.

    require_auth=None defers to the AuthGate's startup-resolved default.
    """

    method: str
    purpose: str
    max_requests: int = DEFAULT_RATE_LIMIT_MAX
    window_ms: int = DEFAULT_RATE_LIMIT_WINDOW_MS
    require_auth: Optional[bool] = None

    @property
    def allow_methods(self) -> str:
        return f"{self.method}, OPTIONS"


@dataclass
class GuardedRequest:
    """What a handler receives once every stage has passed."""

    client_id: str
    rate_limit: RateLimitResult
    cors_headers: dict[str, str] = field(default_factory=dict)
    identity: Optional[AuthenticatedIdentity] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.id if self.identity is not None else None


class PreflightHandled(Exception):
    """Raised to end an allowed OPTIONS preflight with a bare 200.

    Not a GatekeeperError: main.py renders it as an empty 200 response.
    """

    def __init__(self, headers: dict[str, str]) -> None:
        super().__init__("preflight")
        self.headers = headers


class RequestGuard:
    """Runs the five-stage pipeline. Owns no state beyond its collaborators."""

    def __init__(
        self,
        origin_policy: OriginPolicy,
        limiter: RateLimiter,
        auth_gate: AuthGate,
    ) -> None:
        self.origin_policy = origin_policy
        self.limiter = limiter
        self.auth_gate = auth_gate

    async def check(self, request: Request, policy: RoutePolicy) -> GuardedRequest:
        origin = request.headers.get("origin")
        allowed_origin = self.origin_policy.decide(origin, request.headers.get("host", ""))
        if allowed_origin is None:
            logger.info("origin_denied", origin=origin, path=str(request.url.path))
            raise OriginDenied()

        headers = cors_headers(allowed_origin, policy.allow_methods)

        if request.method == "OPTIONS":
            raise PreflightHandled(headers)

        try:
            if request.method != policy.method:
                logger.info(
                    "method_not_allowed",
                    method=request.method,
                    expected=policy.method,
                    path=str(request.url.path),
                )
                raise MethodNotAllowed()

            client_id = client_id_from_request(request)
            result = self.limiter.check(
                policy.purpose, client_id, policy.max_requests, policy.window_ms
            )
            if not result.allowed:
                logger.warning(
                    "rate_limited",
                    purpose=policy.purpose,
                    client_id=client_id,
                    retry_after_seconds=result.retry_after_seconds,
                )
                raise RateLimited(result.retry_after_seconds)

            identity = await self.auth_gate.enforce(request, required=policy.require_auth)
        except GatekeeperError as exc:
            exc.headers = {**headers, **exc.headers}
            raise

        return GuardedRequest(
            client_id=client_id,
            rate_limit=result,
            cors_headers=headers,
            identity=identity,
        )


def guard_dependency(
    policy: RoutePolicy,
) -> Callable[[Request, Response], Awaitable[GuardedRequest]]:
    """Build a FastAPI dependency running the app's RequestGuard for ``policy``.

    The guard is looked up on ``request.app.state.guard`` at call time, so one
    dependency serves every app instance (tests build their own). The CORS
    headers are also kept on ``request.state`` so errors raised later by the
    handler body are rendered with them.
    """

    async def _guarded(request: Request, response: Response) -> GuardedRequest:
        guard: RequestGuard = request.app.state.guard
        guarded = await guard.check(request, policy)
        request.state.cors_headers = guarded.cors_headers
        response.headers.update(guarded.cors_headers)
        return guarded

    return _guarded
