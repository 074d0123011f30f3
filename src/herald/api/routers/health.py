"""Liveness endpoint.

Reports process liveness only. The role held by this instance plays no
part: a follower is as healthy as the leader.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter(tags=["health"])


@router.get("/healthz", response_class=PlainTextResponse)
async def healthz() -> PlainTextResponse:
    """Liveness probe.

    Returns `ok` while the process is running.
    """
    return PlainTextResponse("ok")
