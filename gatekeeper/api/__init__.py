"""HTTP routers exposed by Gatekeeper."""

from gatekeeper.api.secrets import router as secrets_router

__all__ = ["secrets_router"]
