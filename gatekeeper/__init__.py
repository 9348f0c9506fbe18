"""Gatekeeper — request-security layer: origin policy, rate limiting, bearer auth, credential vault."""

__version__ = "1.0.0"
