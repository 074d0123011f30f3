"""Health server running next to the election loop.

The server shares the event loop with the coordinator. It is fatal only
to itself: a failed bind or a crash is logged as HealthServerError and
the election keeps running.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterator

import uvicorn
from fastapi import FastAPI

from herald.errors import HealthServerError

logger = logging.getLogger(__name__)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class HealthServer:
    """Serves the health application as a background task.

    Args:
        app: ASGI application to serve
        host: Interface to bind
        port: Port to bind
    """

    def __init__(self, app: FastAPI, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self._server = _EmbeddedServer(
            uvicorn.Config(
                app,
                host=host,
                port=port,
                log_config=None,
                access_log=False,
                lifespan="off",
            )
        )
        self._task: asyncio.Task[None] | None = None
        self._error: HealthServerError | None = None

    @property
    def error(self) -> HealthServerError | None:
        """Failure that stopped the server, if any."""
        return self._error

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start serving in the background."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._serve(), name="herald-health")
        logger.info(f"Starting health server on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Ask the server to exit and wait for it."""
        if self._task is None:
            return
        self._server.should_exit = True
        await asyncio.wait({self._task})
        self._task = None

    async def _serve(self) -> None:
        try:
            await self._server.serve()
        except (OSError, SystemExit) as e:
            # uvicorn raises SystemExit when it cannot bind
            self._error = HealthServerError(
                f"Health server on {self.host}:{self.port} failed: {e!r}"
            )
            logger.error(str(self._error))
            return

        if not self._server.should_exit:
            self._error = HealthServerError(
                f"Health server on {self.host}:{self.port} stopped unexpectedly"
            )
            logger.error(str(self._error))
