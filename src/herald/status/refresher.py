"""Background refresh of the marker for the role currently held.

While a role is held, its marker is re-affirmed every `interval` seconds
so pollers can tell a live holder from a crashed one whose marker went
stale:
- leader: the full content is rewritten with the identity
- follower: only the modification time is advanced

Example:
    task = RefreshTask(store, Role.LEADER, "pod-a", interval=1.5)
    task.start()
    ...
    await task.stop()  # returns once no further write can happen
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from herald.errors import MarkerWriteError
from herald.observability.metrics import MetricsRegistry
from herald.status.markers import MarkerStore
from herald.status.role import ASSIGNABLE_ROLES, Role

logger = logging.getLogger(__name__)


class RefreshTask:
    """Periodically re-affirms one role marker.

    Each tick performs its filesystem work synchronously, with no
    suspension point, so cancellation can only land between ticks: a tick
    either runs to completion or does not run at all.

    Args:
        store: Marker store to write through
        role: Role whose marker is refreshed
        identity: Identity written into the leader marker
        interval: Seconds between ticks
        metrics: Optional metrics registry for failure counts
    """

    def __init__(
        self,
        store: MarkerStore,
        role: Role,
        identity: str,
        interval: float,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        if role not in ASSIGNABLE_ROLES:
            raise ValueError(f"Cannot refresh marker for role {role.value!r}")
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.store = store
        self.role = role
        self.identity = identity
        self.interval = interval
        self.metrics = metrics

        self._task: asyncio.Task[None] | None = None
        self._ticks = 0
        self._failures = 0

    @property
    def path(self) -> Path:
        return self.store.path_for(self.role)

    @property
    def running(self) -> bool:
        """True while the background task is alive."""
        return self._task is not None and not self._task.done()

    @property
    def ticks(self) -> int:
        """Number of ticks performed so far."""
        return self._ticks

    @property
    def failures(self) -> int:
        """Number of ticks whose write failed."""
        return self._failures

    def start(self) -> None:
        """Start refreshing in the background."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(
            self._refresh_loop(), name=f"herald-refresh-{self.role.value}"
        )
        logger.debug(f"Refresh task started for {self.path} every {self.interval}s")

    async def stop(self) -> None:
        """Cancel the task and wait until it has fully stopped.

        After this returns the task will not issue any further write.
        """
        if self._task is None:
            return

        self._task.cancel()
        # Join without absorbing a cancellation aimed at the caller
        await asyncio.wait({self._task})

        logger.debug(f"Refresh task stopped for {self.path} after {self._ticks} ticks")

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self) -> None:
        """Re-affirm the marker once. Failures are logged and skipped."""
        self._ticks += 1
        try:
            if self.role is Role.LEADER:
                self.store.write(self.role, self.identity)
            else:
                self.store.touch(self.role)
        except MarkerWriteError as e:
            self._failures += 1
            logger.warning(f"Failed to refresh {self.role.value} marker: {e}")
            if self.metrics is not None:
                self.metrics.record_marker_failure(e.operation)
