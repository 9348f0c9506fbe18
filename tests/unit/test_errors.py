"""Unit tests for gatekeeper/errors.py — status mapping and headers."""

from __future__ import annotations

import pytest

from gatekeeper.errors import (
    AuthRequired,
    ConfigError,
    CryptoError,
    GatekeeperError,
    MethodNotAllowed,
    OriginDenied,
    PolicyDenied,
    RateLimited,
    StoreError,
    ValidationError,
)


@pytest.mark.parametrize(
    ("error_cls", "status", "message"),
    [
        (ConfigError, 500, "Server is not configured"),
        (ValidationError, 400, "Invalid request"),
        (OriginDenied, 403, "Origin not allowed"),
        (MethodNotAllowed, 405, "Method not allowed"),
        (AuthRequired, 401, "Unauthorized"),
        (StoreError, 500, "Document store operation failed"),
        (CryptoError, 500, "Failed to decrypt stored secret"),
    ],
)
def test_status_and_default_message(error_cls, status: int, message: str) -> None:
    error = error_cls()
    assert isinstance(error, GatekeeperError)
    assert error.status_code == status
    assert error.message == message
    assert str(error) == message
    assert error.is_server_error is (status >= 500)


def test_policy_rejections_share_base() -> None:
    for error_cls in (OriginDenied, MethodNotAllowed, AuthRequired):
        assert issubclass(error_cls, PolicyDenied)


def test_custom_message_and_headers_copied() -> None:
    headers = {"Vary": "Origin"}
    error = ValidationError("Invalid provider", headers=headers)
    error.headers["X-Extra"] = "1"
    assert error.message == "Invalid provider"
    assert headers == {"Vary": "Origin"}


def test_rate_limited_sets_retry_after() -> None:
    error = RateLimited(42, headers={"Access-Control-Allow-Origin": "*"})
    assert error.status_code == 429
    assert error.retry_after_seconds == 42
    assert error.message == "Too many requests. Please try again shortly."
    assert error.headers == {"Access-Control-Allow-Origin": "*", "Retry-After": "42"}


@pytest.mark.parametrize(
    ("error_cls", "exposed"),
    [(ConfigError, True), (StoreError, False), (CryptoError, False)],
)
def test_server_error_detail_exposure(error_cls, exposed: bool) -> None:
    assert error_cls("detail").expose_detail is exposed
