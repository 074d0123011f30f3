"""Lease-based election loop shared by all backends.

The leader election uses a lease-based approach:
1. Every `retry_period` each instance tries to acquire or renew the lease
2. The holder renews it; others observe who holds it
3. A holder that cannot renew for `renew_deadline` steps down
4. If the holder dies, the lease expires after `lease_duration` and
   another instance takes it over

Backends implement three primitives (`_ping`, `_try_acquire_or_renew`,
`_release`); this module turns their results into the callbacks:
- on_started_leading(lost): run as a task, `lost` is set on step-down
- on_stopped_leading(): after leadership was lost
- on_new_leader(identity): whenever a different holder is observed
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_LEASE_DURATION = 15.0  # Seconds
DEFAULT_RENEW_DEADLINE = 10.0
DEFAULT_RETRY_PERIOD = 2.0


@dataclass
class ElectionConfig:
    """Lease and timing configuration for an election."""

    lease_name: str
    namespace: str
    identity: str
    lease_duration: float = DEFAULT_LEASE_DURATION
    renew_deadline: float = DEFAULT_RENEW_DEADLINE
    retry_period: float = DEFAULT_RETRY_PERIOD

    def __post_init__(self) -> None:
        if not self.identity:
            raise ValueError("identity must not be empty")
        if not self.retry_period < self.renew_deadline < self.lease_duration:
            raise ValueError("expected retry_period < renew_deadline < lease_duration")


class ElectionCallbacks(Protocol):
    """Notifications raised by a coordinator."""

    async def on_started_leading(self, lost: asyncio.Event) -> None: ...

    async def on_stopped_leading(self) -> None: ...

    async def on_new_leader(self, identity: str) -> None: ...


class LeaseCoordinator(ABC):
    """Runs the acquire/renew loop and raises election callbacks.

    Args:
        config: Lease and timing configuration
        callbacks: Receiver of the election notifications
    """

    backend = "lease"

    def __init__(self, config: ElectionConfig, callbacks: ElectionCallbacks) -> None:
        self.config = config
        self.callbacks = callbacks

        self._is_leader = False
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._observed_leader: str | None = None
        self._last_renew: float | None = None
        self._lost: asyncio.Event | None = None
        self._leading_task: asyncio.Task[None] | None = None

    @property
    def identity(self) -> str:
        return self.config.identity

    @property
    def lease_ref(self) -> str:
        return f"{self.config.namespace}/{self.config.lease_name}"

    @property
    def is_leader(self) -> bool:
        """Check if this instance currently holds the lease."""
        return self._is_leader

    @property
    def observed_leader(self) -> str | None:
        """Identity of the last holder observed, if any."""
        return self._observed_leader

    @abstractmethod
    async def _ping(self) -> None:
        """Check that the backend is reachable.

        Raises:
            CoordinatorConnectError: If it is not
        """

    @abstractmethod
    async def _try_acquire_or_renew(self) -> str | None:
        """Acquire or renew the lease once.

        Returns:
            Identity of the holder after the attempt (ours on success),
            or None if no holder could be determined
        """

    @abstractmethod
    async def _release(self) -> None:
        """Give up the lease if we hold it."""

    async def close(self) -> None:
        """Release backend resources."""

    async def verify(self) -> None:
        """Probe the backend once before starting.

        Raises:
            CoordinatorConnectError: If the backend cannot be reached
        """
        await self._ping()
        logger.info(f"Connected to {self.backend} backend for lease {self.lease_ref}")

    async def start(self) -> None:
        """Start participating in the election in the background."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._election_loop(), name="herald-election")
        logger.info(f"Started leader election for {self.lease_ref} as {self.identity}")

    async def run(self) -> None:
        """Participate in the election until `stop()` is called."""
        await self.start()
        task = self._task
        if task is not None:
            await asyncio.wait({task})
            if not task.cancelled():
                task.result()

    async def stop(self) -> None:
        """Stop participating and release the lease if held.

        No further callback is raised once this returns.
        """
        self._running = False

        if self._task:
            self._task.cancel()
            await asyncio.wait({self._task})
            if not self._task.cancelled() and self._task.exception() is not None:
                logger.error(
                    f"Election loop for {self.lease_ref} crashed", exc_info=self._task.exception()
                )
            self._task = None

        if self._is_leader:
            try:
                await self._release()
                logger.info(f"Released lease {self.lease_ref}")
            except Exception as e:
                logger.error(f"Failed to release lease {self.lease_ref}: {e}")
            self._is_leader = False

        if self._lost is not None:
            self._lost.set()
        if self._leading_task is not None:
            self._leading_task.cancel()
            await asyncio.wait({self._leading_task})
            self._leading_task = None

        await self.close()
        logger.info(f"Stopped leader election for {self.lease_ref}")

    async def _election_loop(self) -> None:
        """Main election loop."""
        while self._running:
            await self._check_renew_deadline()
            try:
                holder = await asyncio.wait_for(
                    self._try_acquire_or_renew(), timeout=self._attempt_timeout()
                )
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                logger.error(f"Timed out acquiring or renewing lease {self.lease_ref}")
                if self._is_leader:
                    # The attempt was bounded by the renew deadline
                    logger.warning(
                        f"Could not renew lease {self.lease_ref} within "
                        f"{self.config.renew_deadline}s"
                    )
                    await self._handle_demotion()
            except Exception as e:
                logger.error(f"Error in election loop for {self.lease_ref}: {e}")
                await self._check_renew_deadline()
            else:
                await self._observe(holder)

            await asyncio.sleep(self.config.retry_period)

    async def _observe(self, holder: str | None) -> None:
        if holder == self.identity:
            self._last_renew = time.monotonic()
            if not self._is_leader:
                await self._handle_election()
        elif self._is_leader:
            if holder is None:
                await self._check_renew_deadline()
            else:
                logger.warning(f"Lease {self.lease_ref} taken by {holder}")
                await self._handle_demotion()

        if holder and holder != self._observed_leader:
            self._observed_leader = holder
            logger.info(f"New leader observed for {self.lease_ref}: {holder}")
            try:
                await self.callbacks.on_new_leader(holder)
            except Exception:
                logger.exception("Error in on_new_leader callback")

    def _attempt_timeout(self) -> float:
        """Seconds one acquire or renew attempt may take.

        A leader has until its renew deadline; everyone else gets a full
        renew deadline per attempt.
        """
        if self._is_leader and self._last_renew is not None:
            elapsed = time.monotonic() - self._last_renew
            return max(self.config.renew_deadline - elapsed, 0.0)
        return self.config.renew_deadline

    async def _check_renew_deadline(self) -> None:
        if not self._is_leader or self._last_renew is None:
            return
        if time.monotonic() - self._last_renew >= self.config.renew_deadline:
            logger.warning(
                f"Could not renew lease {self.lease_ref} within {self.config.renew_deadline}s"
            )
            await self._handle_demotion()

    async def _handle_election(self) -> None:
        """Handle acquiring the lease."""
        self._is_leader = True
        logger.info(f"Elected as leader for {self.lease_ref}")

        self._lost = asyncio.Event()
        self._leading_task = asyncio.create_task(
            self.callbacks.on_started_leading(self._lost), name="herald-leading"
        )
        self._leading_task.add_done_callback(self._leading_done)

    async def _handle_demotion(self) -> None:
        """Handle losing the lease."""
        self._is_leader = False
        self._last_renew = None
        logger.warning(f"Lost leadership for {self.lease_ref}")

        if self._lost is not None:
            self._lost.set()
            self._lost = None
        self._leading_task = None

        try:
            await self.callbacks.on_stopped_leading()
        except Exception:
            logger.exception("Error in on_stopped_leading callback")

    @staticmethod
    def _leading_done(task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Error in on_started_leading callback", exc_info=exc)
