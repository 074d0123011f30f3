"""FastAPI application factory for the Herald health server.

Creates the application with:
- /healthz liveness probe
- /metrics Prometheus exposition
"""

from __future__ import annotations

from fastapi import FastAPI

from herald import __version__
from herald.api.routers import health
from herald.api.routers import metrics as metrics_router
from herald.observability.metrics import MetricsRegistry


def create_app(metrics: MetricsRegistry | None = None) -> FastAPI:
    """Create the health server application.

    Args:
        metrics: Registry served on /metrics (global registry if None)
    """
    app = FastAPI(
        title="Herald",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.metrics = metrics

    app.include_router(health.router)
    app.include_router(metrics_router.router)

    return app
