"""Role state machine.

Owns the single authoritative role of this process and turns election
notifications into marker state:

    coordinator callback -> RoleEventDispatcher -> ordered queue
        -> RoleStateMachine.transition(role, identity)
            1. cancel the refresh task and wait for it to stop
            2. remove both markers
            3. write the marker for the new role
            4. publish the new role
            5. start a refresh task for the new role
            6. best-effort label of the cluster resource

Transitions are applied one at a time, in the order the notifications
arrived, by a single consumer task. Repeating the current role is a no-op.

Example:
    machine = RoleStateMachine(MarkerStore("/tmp/leader_status"), "pod-a")
    await machine.start()

    dispatcher = RoleEventDispatcher(machine)
    await dispatcher.on_stopped_leading()
    await machine.drain()

    assert machine.current_role is Role.FOLLOWER
    await machine.stop()
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading

from herald.errors import LabelPatchError, MarkerWriteError
from herald.labeler import ClusterLabeler
from herald.observability.metrics import MetricsRegistry
from herald.status.markers import MarkerStore
from herald.status.refresher import RefreshTask
from herald.status.role import ASSIGNABLE_ROLES, Role, TransitionEvent

logger = logging.getLogger(__name__)

ROLE_LABEL_KEY = "role"
DEFAULT_REFRESH_INTERVAL = 1.5  # Seconds, below the 2s lease retry period
DEFAULT_LABEL_TIMEOUT = 5.0

_QueueItem = tuple[TransitionEvent, "asyncio.Future[None]"]


class RoleStateMachine:
    """Single writer of the role markers.

    Args:
        store: Marker store for the status directory
        identity: Identity of this instance, written into the markers
        refresh_interval: Seconds between marker refreshes
        labeler: Optional cluster metadata labeler
        label_resource: Resource to label (defaults to `identity`)
        label_timeout: Seconds a label call may hold up a transition
        metrics: Optional metrics registry
    """

    def __init__(
        self,
        store: MarkerStore,
        identity: str,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        labeler: ClusterLabeler | None = None,
        label_resource: str | None = None,
        metrics: MetricsRegistry | None = None,
        label_timeout: float = DEFAULT_LABEL_TIMEOUT,
    ) -> None:
        if not identity:
            raise ValueError("identity must not be empty")

        self.store = store
        self.refresh_interval = refresh_interval
        self.labeler = labeler
        self.label_resource = label_resource or identity
        self.label_timeout = label_timeout
        self.metrics = metrics

        self._identity = identity
        self._role = Role.UNKNOWN
        # Guards _role for readers outside the event loop (metrics, probes)
        self._role_lock = threading.Lock()
        self._transition_lock = asyncio.Lock()
        self._refresh: RefreshTask | None = None

        self._queue: asyncio.Queue[_QueueItem] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def current_role(self) -> Role:
        """The role currently held."""
        with self._role_lock:
            return self._role

    @property
    def refresh_task(self) -> RefreshTask | None:
        """The refresh task bound to the current role, if any."""
        return self._refresh

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self) -> None:
        """Start consuming queued transitions."""
        if self.running:
            return

        self._loop = asyncio.get_running_loop()
        self._consumer = asyncio.create_task(self._consume_loop(), name="herald-role-machine")
        logger.info(f"Role state machine started for {self._identity}")

    async def stop(self) -> None:
        """Stop consuming transitions and stop the refresh task.

        Markers are left in place. Pending submissions are cancelled.
        """
        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.wait({self._consumer})
            self._consumer = None

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            future.cancel()
            self._queue.task_done()

        async with self._transition_lock:
            if self._refresh is not None:
                await self._refresh.stop()
                self._refresh = None

        logger.info("Role state machine stopped")

    def submit(self, role: Role, reason: str = "") -> asyncio.Future[None]:
        """Queue a transition to `role` for this instance.

        Must be called from the event loop running the state machine.
        The returned future resolves once the transition was applied
        (or skipped because the role was already held).
        """
        event = TransitionEvent(new_role=role, identity=self._identity, reason=reason)
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((event, future))
        return future

    def submit_threadsafe(self, role: Role, reason: str = "") -> concurrent.futures.Future[None]:
        """Queue a transition from a thread other than the event loop's.

        Submissions from one thread keep their relative order.

        Raises:
            RuntimeError: If the state machine has not been started
        """
        if self._loop is None:
            raise RuntimeError("Role state machine is not running")

        async def _submit() -> None:
            await self.submit(role, reason)

        return asyncio.run_coroutine_threadsafe(_submit(), self._loop)

    async def drain(self) -> None:
        """Wait until every queued transition has been applied."""
        await self._queue.join()

    async def _consume_loop(self) -> None:
        while True:
            event, future = await self._queue.get()
            try:
                logger.debug(
                    f"Applying transition to {event.new_role.value}"
                    + (f" ({event.reason})" if event.reason else "")
                )
                await self.transition(event.new_role, event.identity)
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                logger.exception(f"Transition to {event.new_role.value} failed")
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(None)
            finally:
                self._queue.task_done()

    async def transition(self, new_role: Role, identity: str) -> None:
        """Move to `new_role`, rewriting markers and restarting the refresh task.

        Calling it with the role already held has no side effects. Marker
        I/O failures are logged; the role still advances and the refresh
        task retries on its next tick.

        Raises:
            ValueError: If `new_role` is not assignable or `identity` is empty
        """
        if new_role not in ASSIGNABLE_ROLES:
            raise ValueError(f"Cannot transition to role {new_role.value!r}")
        if not identity:
            raise ValueError("identity must not be empty")

        async with self._transition_lock:
            previous = self.current_role
            if new_role == previous:
                logger.debug(f"Already {new_role.value}, ignoring transition")
                return

            if self._refresh is not None:
                await self._refresh.stop()
                self._refresh = None

            try:
                self.store.remove_all()
            except MarkerWriteError as e:
                self._report_marker_failure(e)

            try:
                self.store.write(new_role, identity)
            except MarkerWriteError as e:
                self._report_marker_failure(e)

            with self._role_lock:
                self._role = new_role

            self._refresh = RefreshTask(
                self.store,
                new_role,
                identity,
                interval=self.refresh_interval,
                metrics=self.metrics,
            )
            self._refresh.start()

            if self.metrics is not None:
                self.metrics.record_transition(new_role.value)
            logger.info(f"Role changed: {previous.value} -> {new_role.value}")

            await self._apply_label(new_role)

    async def _apply_label(self, role: Role) -> None:
        if self.labeler is None:
            return
        try:
            await asyncio.wait_for(
                self.labeler.set_label(self.label_resource, ROLE_LABEL_KEY, role.value),
                timeout=self.label_timeout,
            )
        except LabelPatchError as e:
            logger.warning(str(e))
        except asyncio.TimeoutError:
            logger.warning(
                f"Labeling {self.label_resource} with role={role.value} timed out "
                f"after {self.label_timeout}s"
            )
        except Exception as e:
            logger.warning(f"Labeling {self.label_resource} with role={role.value} failed: {e}")
        else:
            return

        if self.metrics is not None:
            self.metrics.record_label_failure()

    def _report_marker_failure(self, error: MarkerWriteError) -> None:
        logger.error(str(error))
        if self.metrics is not None:
            self.metrics.record_marker_failure(error.operation)


class RoleEventDispatcher:
    """Election callbacks that feed the state machine's queue.

    `on_stopped_leading` and `on_new_leader` only enqueue, so the
    coordinator loop is never held up by marker I/O or label patches.
    `on_started_leading` waits for its transition and then blocks until
    the coordinator reports that leadership was lost.
    """

    def __init__(self, machine: RoleStateMachine) -> None:
        self.machine = machine

    async def on_started_leading(self, lost: asyncio.Event) -> None:
        await self.machine.submit(Role.LEADER, reason="started leading")
        await lost.wait()

    async def on_stopped_leading(self) -> None:
        self.machine.submit(Role.FOLLOWER, reason="stopped leading")

    async def on_new_leader(self, identity: str) -> None:
        # Our own identity means we lead or are about to
        if identity == self.machine.identity:
            return
        self.machine.submit(Role.FOLLOWER, reason=f"new leader {identity}")
