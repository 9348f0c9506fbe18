"""Gatekeeper exception hierarchy.

Every failure this layer surfaces to a handler is a typed error that knows its
HTTP status. A single exception handler in gatekeeper/main.py renders them as
``{"error": "<message>"}``.

    GatekeeperError (base)
    ├── ConfigError          → 500 (missing deployment configuration, never retried)
    ├── ValidationError      → 400 (bad caller input)
    ├── PolicyDenied
    │   ├── OriginDenied     → 403
    │   ├── MethodNotAllowed → 405
    │   └── AuthRequired     → 401
    ├── RateLimited          → 429 (+ Retry-After)
    ├── StoreError           → 500 (document store failure)
    └── CryptoError          → 500 (blob decoding / auth-tag verification failure)
"""

from __future__ import annotations

from typing import Optional


class GatekeeperError(Exception):
    """Base class for all errors raised by the request-security layer.

    Attributes:
        status_code: HTTP status the error maps to.
        code:        Stable machine-readable identifier (logged, not returned).
        message:     Human-readable message. For 5xx errors it is only
                     returned to callers in development deployments, and
                     never when expose_detail is False.
        headers:     Extra response headers (CORS, Retry-After).
    """

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"
    expose_detail: bool = True

    def __init__(
        self,
        message: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.headers: dict[str, str] = dict(headers or {})
        super().__init__(self.message)

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


class ConfigError(GatekeeperError):
    """A required deployment setting (credentials, passphrase) is not configured."""

    code = "config_error"
    default_message = "Server is not configured"


class ValidationError(GatekeeperError):
    """The caller supplied a missing or malformed argument."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class PolicyDenied(GatekeeperError):
    """Base for expected policy rejections (origin, method, auth)."""

    status_code = 403
    code = "policy_denied"
    default_message = "Forbidden"


class OriginDenied(PolicyDenied):
    status_code = 403
    code = "origin_denied"
    default_message = "Origin not allowed"


class MethodNotAllowed(PolicyDenied):
    status_code = 405
    code = "method_not_allowed"
    default_message = "Method not allowed"


class AuthRequired(PolicyDenied):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class RateLimited(GatekeeperError):
    """The caller exceeded the request budget for this purpose.

    Expected and user-recoverable: the client may retry after
    ``retry_after_seconds``.
    """

    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests. Please try again shortly."

    def __init__(
        self,
        retry_after_seconds: int,
        message: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        super().__init__(message, headers)
        self.retry_after_seconds = retry_after_seconds
        self.headers["Retry-After"] = str(retry_after_seconds)


class StoreError(GatekeeperError):
    """A document-store read or write failed."""

    code = "store_error"
    default_message = "Document store operation failed"
    expose_detail = False


class CryptoError(GatekeeperError):
    """An encrypted blob could not be decoded or failed authentication."""

    code = "crypto_error"
    default_message = "Failed to decrypt stored secret"
    expose_detail = False
