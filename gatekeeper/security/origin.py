"""Origin authorization for cross-origin requests.

Decision order:
  1. No Origin header       → same-origin or non-browser caller, allow with "*".
  2. Allow-list configured  → exact membership only; everything else is denied.
  3. No allow-list          → permissive defaults for local development and
                              same-host deployments, evaluated as an ordered
                              tuple of named predicates (first match wins):
                                is_loopback_origin
                                matches_app_origin
                                matches_request_host
  4. Otherwise              → deny.

The policy never raises on a malformed Origin: host extraction returns "" and
only the same-host predicate depends on it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlsplit

from gatekeeper.constants import CORS_ALLOW_HEADERS, DEFAULT_CORS_METHODS

WILDCARD_ORIGIN = "*"

_DEFAULT_PORTS = {"http": 80, "https": 443}

# http(s)://localhost[:port], http(s)://127.0.0.1[:port], http(s)://[::1][:port]
_LOOPBACK_ORIGIN_RE = re.compile(
    r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d{1,5})?/?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class OriginContext:
    """Inputs a predicate may consult when judging one request's origin."""

    origin: str
    request_host: str
    app_origin: str


OriginPredicate = Callable[[OriginContext], bool]


def origin_host(origin: str) -> str:
    """Return ``host[:port]`` of an origin URL, or "" if it cannot be parsed.

    Default ports are dropped so ``https://example.com:443`` compares equal to
    a ``Host: example.com`` header.
    """
    try:
        parts = urlsplit(origin)
        hostname = parts.hostname
        port = parts.port
    except ValueError:
        return ""
    if not parts.scheme or not hostname:
        return ""
    if ":" in hostname:
        hostname = f"[{hostname}]"
    if port is None or _DEFAULT_PORTS.get(parts.scheme.lower()) == port:
        return hostname
    return f"{hostname}:{port}"


def is_loopback_origin(ctx: OriginContext) -> bool:
    """Local development servers (vite, next dev, ...) on a loopback host."""
    return bool(_LOOPBACK_ORIGIN_RE.match(ctx.origin))


def matches_app_origin(ctx: OriginContext) -> bool:
    """The configured canonical application origin."""
    return bool(ctx.app_origin) and ctx.origin == ctx.app_origin


def matches_request_host(ctx: OriginContext) -> bool:
    """Same origin reached through a proxy: origin host equals the Host header."""
    host = origin_host(ctx.origin)
    return bool(host) and host.lower() == ctx.request_host.strip().lower()


DEFAULT_PREDICATES: tuple[OriginPredicate, ...] = (
    is_loopback_origin,
    matches_app_origin,
    matches_request_host,
)


class OriginPolicy:
    """Decides whether a request's origin may receive a cross-origin response."""

    def __init__(
        self,
        allowed_origins: Optional[list[str]] = None,
        app_origin: str = "",
        predicates: tuple[OriginPredicate, ...] = DEFAULT_PREDICATES,
    ) -> None:
        self._allowed_origins: frozenset[str] = frozenset(allowed_origins or ())
        self._app_origin = app_origin
        self._predicates = predicates

    @property
    def uses_allow_list(self) -> bool:
        return bool(self._allowed_origins)

    def decide(self, origin: Optional[str], request_host: Optional[str] = "") -> Optional[str]:
        """Return the value for Access-Control-Allow-Origin, or None to deny."""
        if not origin:
            return WILDCARD_ORIGIN

        if self._allowed_origins:
            return origin if origin in self._allowed_origins else None

        ctx = OriginContext(
            origin=origin,
            request_host=request_host or "",
            app_origin=self._app_origin,
        )
        for predicate in self._predicates:
            if predicate(ctx):
                return origin
        return None


def cors_headers(allowed_origin: str, methods: str = DEFAULT_CORS_METHODS) -> dict[str, str]:
    """Headers every allowed cross-origin response must carry."""
    return {
        "Access-Control-Allow-Origin": allowed_origin,
        "Vary": "Origin",
        "Access-Control-Allow-Methods": methods,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
    }
