"""Metrics endpoint for Prometheus scraping.

Exposes /metrics endpoint in Prometheus exposition format.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from starlette.responses import Response

from herald.observability.metrics import MetricsRegistry, get_metrics

router = APIRouter(tags=["observability"])


@router.get(
    "/metrics",
    response_class=Response,
    summary="Prometheus metrics",
    responses={
        200: {
            "description": "Prometheus metrics",
            "content": {"text/plain": {}},
        }
    },
)
async def get_prometheus_metrics(request: Request) -> Response:
    """Return Prometheus metrics in exposition format."""
    metrics: MetricsRegistry = getattr(request.app.state, "metrics", None) or get_metrics()
    return Response(
        content=metrics.generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
