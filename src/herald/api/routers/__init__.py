"""HTTP routers for the sidecar."""

from herald.api.routers import health, metrics

__all__ = ["health", "metrics"]
