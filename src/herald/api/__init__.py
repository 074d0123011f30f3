"""HTTP surface of the sidecar: liveness probe and metrics."""

from herald.api.app import create_app
from herald.api.server import HealthServer

__all__ = ["HealthServer", "create_app"]
