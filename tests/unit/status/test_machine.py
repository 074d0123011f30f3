"""Tests for the role state machine and its election callbacks."""

from __future__ import annotations

import asyncio
import os
import threading
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from herald.errors import LabelPatchError, MarkerWriteError
from herald.observability.metrics import MetricsRegistry
from herald.status.machine import RoleEventDispatcher, RoleStateMachine
from herald.status.markers import MarkerStore
from herald.status.role import Role

FAST_REFRESH = 0.05
SELF = "pod-a"


@pytest_asyncio.fixture
async def machine(store: MarkerStore) -> AsyncIterator[RoleStateMachine]:
    """Started state machine with a fast refresh interval."""
    sm = RoleStateMachine(store, SELF, refresh_interval=FAST_REFRESH)
    await sm.start()
    yield sm
    await sm.stop()


def _files(status_dir: Path) -> set[str]:
    return {p.name for p in status_dir.iterdir()}


class TestTransition:
    """Tests for RoleStateMachine.transition."""

    def test_initial_role_is_unknown(self, store: MarkerStore) -> None:
        """A new machine holds no role and publishes nothing."""
        sm = RoleStateMachine(store, SELF)

        assert sm.current_role is Role.UNKNOWN
        assert sm.refresh_task is None
        assert store.existing() == []

    def test_rejects_empty_identity(self, store: MarkerStore) -> None:
        """The machine needs a non-empty identity."""
        with pytest.raises(ValueError):
            RoleStateMachine(store, "")

    @pytest.mark.asyncio
    async def test_rejects_unknown_role(self, machine: RoleStateMachine) -> None:
        """Transitions back to UNKNOWN are refused."""
        with pytest.raises(ValueError):
            await machine.transition(Role.UNKNOWN, SELF)

    @pytest.mark.asyncio
    async def test_leader_transition_writes_leader_marker(
        self, machine: RoleStateMachine, status_dir: Path
    ) -> None:
        """Becoming leader leaves only the leader marker, holding our identity."""
        await machine.transition(Role.LEADER, SELF)

        assert machine.current_role is Role.LEADER
        assert _files(status_dir) == {"leader"}
        assert (status_dir / "leader").read_text() == SELF

    @pytest.mark.asyncio
    async def test_transition_replaces_previous_marker(
        self, machine: RoleStateMachine, status_dir: Path
    ) -> None:
        """Exactly one marker exists after each transition."""
        for role in (Role.LEADER, Role.FOLLOWER, Role.LEADER, Role.FOLLOWER):
            await machine.transition(role, SELF)

            assert _files(status_dir) == {role.value}
            assert (status_dir / role.value).read_text() == SELF

    @pytest.mark.asyncio
    async def test_transition_cleans_stale_markers(
        self, machine: RoleStateMachine, store: MarkerStore, status_dir: Path
    ) -> None:
        """Markers left by a previous process are removed."""
        store.write(Role.LEADER, "old-pod")
        store.write(Role.FOLLOWER, "old-pod")

        await machine.transition(Role.FOLLOWER, SELF)

        assert _files(status_dir) == {"follower"}
        assert (status_dir / "follower").read_text() == SELF

    @pytest.mark.asyncio
    async def test_same_role_is_noop(self, store: MarkerStore) -> None:
        """Repeating the current role writes nothing and keeps the refresh task."""
        spy = MagicMock(wraps=store)
        sm = RoleStateMachine(spy, SELF, refresh_interval=60)
        await sm.transition(Role.LEADER, SELF)
        task = sm.refresh_task
        spy.reset_mock()

        await sm.transition(Role.LEADER, SELF)

        assert spy.mock_calls == []
        assert sm.refresh_task is task
        assert task is not None and task.running
        await sm.stop()

    @pytest.mark.asyncio
    async def test_one_refresh_task_per_role(self, machine: RoleStateMachine) -> None:
        """Each transition replaces the refresh task; the old one is stopped."""
        await machine.transition(Role.LEADER, SELF)
        first = machine.refresh_task

        await machine.transition(Role.FOLLOWER, SELF)
        second = machine.refresh_task

        assert first is not None and second is not None
        assert first is not second
        assert not first.running
        assert second.running
        assert second.role is Role.FOLLOWER

    @pytest.mark.asyncio
    async def test_marker_write_failure_still_advances(
        self, store: MarkerStore, metrics: MetricsRegistry
    ) -> None:
        """A failed marker write is reported; role and refresh task still advance."""
        failing = MagicMock(wraps=store)
        failing.write.side_effect = MarkerWriteError(
            "write", store.leader_path, PermissionError("read-only")
        )
        sm = RoleStateMachine(failing, SELF, refresh_interval=60, metrics=metrics)

        await sm.transition(Role.LEADER, SELF)

        assert sm.current_role is Role.LEADER
        assert sm.refresh_task is not None and sm.refresh_task.running
        assert b'herald_marker_write_failures_total{operation="write"} 1.0' in (
            metrics.generate_latest()
        )
        await sm.stop()

    @pytest.mark.asyncio
    async def test_records_transition_metrics(
        self, store: MarkerStore, metrics: MetricsRegistry
    ) -> None:
        """The role gauge follows the held role."""
        sm = RoleStateMachine(store, SELF, refresh_interval=60, metrics=metrics)

        await sm.transition(Role.FOLLOWER, SELF)
        output = metrics.generate_latest()

        assert b'herald_role{role="follower"} 1.0' in output
        assert b'herald_role{role="unknown"} 0.0' in output
        assert b'herald_transitions_total{role="follower"} 1.0' in output
        await sm.stop()

    @pytest.mark.asyncio
    async def test_role_readable_from_other_threads(self, machine: RoleStateMachine) -> None:
        """current_role can be read outside the event loop."""
        await machine.transition(Role.LEADER, SELF)
        seen: list[Role] = []

        reader = threading.Thread(target=lambda: seen.append(machine.current_role))
        reader.start()
        reader.join()

        assert seen == [Role.LEADER]


class TestLabeling:
    """Tests for the best-effort cluster labeler call."""

    @pytest.mark.asyncio
    async def test_labels_after_markers_are_written(self, store: MarkerStore) -> None:
        """The labeler sees the new role after the marker is in place."""
        observed: list[list[Role]] = []
        labeler = AsyncMock()
        labeler.set_label.side_effect = lambda *args: observed.append(store.existing())
        sm = RoleStateMachine(
            store, SELF, refresh_interval=60, labeler=labeler, label_resource="pod-a-xyz"
        )

        await sm.transition(Role.LEADER, SELF)

        labeler.set_label.assert_awaited_once_with("pod-a-xyz", "role", "leader")
        assert observed == [[Role.LEADER]]
        await sm.stop()

    @pytest.mark.asyncio
    async def test_label_resource_defaults_to_identity(self, store: MarkerStore) -> None:
        """Without an explicit resource the identity is labeled."""
        labeler = AsyncMock()
        sm = RoleStateMachine(store, SELF, refresh_interval=60, labeler=labeler)

        await sm.transition(Role.FOLLOWER, SELF)

        labeler.set_label.assert_awaited_once_with(SELF, "role", "follower")
        await sm.stop()

    @pytest.mark.asyncio
    async def test_label_failure_does_not_affect_state(
        self, store: MarkerStore, metrics: MetricsRegistry
    ) -> None:
        """A failed label patch leaves local state untouched."""
        labeler = AsyncMock()
        labeler.set_label.side_effect = LabelPatchError("pod pod-a", "leader", "403 Forbidden")
        sm = RoleStateMachine(store, SELF, refresh_interval=60, labeler=labeler, metrics=metrics)

        await sm.transition(Role.LEADER, SELF)

        assert sm.current_role is Role.LEADER
        assert store.leader_path.read_text() == SELF
        assert b"herald_label_patch_failures_total 1.0" in metrics.generate_latest()
        await sm.stop()

    @pytest.mark.asyncio
    async def test_noop_transition_does_not_label(self, store: MarkerStore) -> None:
        """Repeating the role does not call the labeler again."""
        labeler = AsyncMock()
        sm = RoleStateMachine(store, SELF, refresh_interval=60, labeler=labeler)

        await sm.transition(Role.FOLLOWER, SELF)
        await sm.transition(Role.FOLLOWER, SELF)

        assert labeler.set_label.await_count == 1
        await sm.stop()

    @pytest.mark.asyncio
    async def test_stalled_labeler_is_bounded(
        self, store: MarkerStore, metrics: MetricsRegistry
    ) -> None:
        """A label call that never returns cannot hold up later transitions."""

        async def stall(*args: object) -> None:
            await asyncio.Event().wait()

        labeler = AsyncMock()
        labeler.set_label.side_effect = stall
        sm = RoleStateMachine(
            store, SELF, refresh_interval=60, labeler=labeler, metrics=metrics, label_timeout=0.05
        )
        await sm.start()

        await asyncio.wait_for(sm.submit(Role.LEADER), timeout=1)
        await asyncio.wait_for(sm.submit(Role.FOLLOWER), timeout=1)

        assert sm.current_role is Role.FOLLOWER
        assert store.existing() == [Role.FOLLOWER]
        assert b"herald_label_patch_failures_total 2.0" in metrics.generate_latest()
        await sm.stop()

    @pytest.mark.asyncio
    async def test_unexpected_labeler_error_is_contained(
        self, store: MarkerStore, metrics: MetricsRegistry
    ) -> None:
        """Any labeler error is counted and the submission still succeeds."""
        labeler = AsyncMock()
        labeler.set_label.side_effect = RuntimeError("connection pool closed")
        sm = RoleStateMachine(store, SELF, refresh_interval=60, labeler=labeler, metrics=metrics)
        await sm.start()

        await sm.submit(Role.LEADER)

        assert sm.current_role is Role.LEADER
        assert b"herald_label_patch_failures_total 1.0" in metrics.generate_latest()
        await sm.stop()


class TestEventQueue:
    """Tests for queued transitions."""

    @pytest.mark.asyncio
    async def test_submit_resolves_after_apply(
        self, machine: RoleStateMachine, status_dir: Path
    ) -> None:
        """The submission future resolves once the marker is written."""
        await machine.submit(Role.LEADER)

        assert machine.current_role is Role.LEADER
        assert _files(status_dir) == {"leader"}

    @pytest.mark.asyncio
    async def test_applies_in_arrival_order(
        self, machine: RoleStateMachine, status_dir: Path
    ) -> None:
        """Queued transitions are applied in the order they were submitted."""
        machine.submit(Role.LEADER)
        machine.submit(Role.FOLLOWER)
        machine.submit(Role.LEADER)
        await machine.drain()

        assert machine.current_role is Role.LEADER
        assert _files(status_dir) == {"leader"}

    @pytest.mark.asyncio
    async def test_submit_threadsafe(self, machine: RoleStateMachine, status_dir: Path) -> None:
        """Transitions can be submitted from foreign threads."""
        futures = []

        def submit_from_thread() -> None:
            futures.append(machine.submit_threadsafe(Role.FOLLOWER, reason="thread"))

        thread = threading.Thread(target=submit_from_thread)
        thread.start()
        thread.join()
        await asyncio.wrap_future(futures[0])

        assert machine.current_role is Role.FOLLOWER
        assert _files(status_dir) == {"follower"}

    def test_submit_threadsafe_requires_start(self, store: MarkerStore) -> None:
        """Thread-safe submission needs a running machine."""
        sm = RoleStateMachine(store, SELF)

        with pytest.raises(RuntimeError):
            sm.submit_threadsafe(Role.LEADER)

    @pytest.mark.asyncio
    async def test_stop_keeps_markers(self, store: MarkerStore, status_dir: Path) -> None:
        """Stopping cancels the refresh task but leaves the marker in place."""
        sm = RoleStateMachine(store, SELF, refresh_interval=FAST_REFRESH)
        await sm.start()
        await sm.submit(Role.LEADER)
        task = sm.refresh_task

        await sm.stop()

        assert task is not None and not task.running
        assert sm.refresh_task is None
        assert _files(status_dir) == {"leader"}

    @pytest.mark.asyncio
    async def test_stop_during_transition(self, machine: RoleStateMachine) -> None:
        """stop() returns even when it interrupts a transition joining a refresh task."""
        await machine.submit(Role.LEADER)
        machine.submit(Role.FOLLOWER)

        stopper = asyncio.create_task(machine.stop())
        await asyncio.wait_for(stopper, timeout=2)

        assert not machine.running
        assert machine.refresh_task is None or not machine.refresh_task.running


class TestElectionScenarios:
    """End-to-end behavior driven through the election callbacks."""

    @pytest.mark.asyncio
    async def test_self_leader_notification_is_noop(
        self, machine: RoleStateMachine, status_dir: Path
    ) -> None:
        """on_new_leader with our own identity touches nothing."""
        dispatcher = RoleEventDispatcher(machine)

        await dispatcher.on_new_leader(SELF)
        await machine.drain()

        assert machine.current_role is Role.UNKNOWN
        assert _files(status_dir) == set()

    @pytest.mark.asyncio
    async def test_other_leader_makes_us_follower(
        self, machine: RoleStateMachine, status_dir: Path
    ) -> None:
        """on_new_leader with another identity publishes the follower marker."""
        dispatcher = RoleEventDispatcher(machine)

        await dispatcher.on_new_leader("pod-b")
        await machine.drain()

        assert machine.current_role is Role.FOLLOWER
        assert (status_dir / "follower").read_text() == SELF

    @pytest.mark.asyncio
    async def test_leading_scenario(self, machine: RoleStateMachine, status_dir: Path) -> None:
        """Starting to lead publishes the leader marker and keeps it fresh."""
        dispatcher = RoleEventDispatcher(machine)
        lost = asyncio.Event()

        leading = asyncio.create_task(dispatcher.on_started_leading(lost))
        await asyncio.sleep(FAST_REFRESH * 2)

        assert not leading.done()
        assert _files(status_dir) == {"leader"}
        assert (status_dir / "leader").read_text() == SELF

        lost.set()
        await asyncio.wait_for(leading, timeout=1)

    @pytest.mark.asyncio
    async def test_stepping_down_scenario(
        self, machine: RoleStateMachine, status_dir: Path
    ) -> None:
        """After stepping down the follower marker is touched every tick, content unchanged."""
        dispatcher = RoleEventDispatcher(machine)
        lost = asyncio.Event()
        leading = asyncio.create_task(dispatcher.on_started_leading(lost))
        await asyncio.sleep(FAST_REFRESH)

        lost.set()
        await leading
        await dispatcher.on_stopped_leading()
        await machine.drain()

        follower = status_dir / "follower"
        assert _files(status_dir) == {"follower"}
        assert follower.read_text() == SELF

        old = follower.stat().st_mtime - 100
        os.utime(follower, (old, old))
        await asyncio.sleep(FAST_REFRESH * 3)
        assert follower.stat().st_mtime > old

        os.utime(follower, (old, old))
        await asyncio.sleep(FAST_REFRESH * 3)
        assert follower.stat().st_mtime > old
        assert follower.read_text() == SELF

    @pytest.mark.asyncio
    async def test_back_to_back_transitions(
        self, machine: RoleStateMachine, status_dir: Path
    ) -> None:
        """Leading then immediately stepping down leaves only the follower marker."""
        dispatcher = RoleEventDispatcher(machine)
        lost = asyncio.Event()

        leading = asyncio.create_task(dispatcher.on_started_leading(lost))
        await asyncio.sleep(0)
        lost.set()
        await dispatcher.on_stopped_leading()
        await leading
        await machine.drain()

        assert machine.current_role is Role.FOLLOWER
        assert _files(status_dir) == {"follower"}

        # Give any stale leader tick the chance to misbehave
        await asyncio.sleep(FAST_REFRESH * 3)
        assert _files(status_dir) == {"follower"}
        assert (status_dir / "follower").read_text() == SELF

    @pytest.mark.asyncio
    async def test_freshness_bound(self, machine: RoleStateMachine, status_dir: Path) -> None:
        """The held marker is never left unrefreshed for more than two intervals."""
        await machine.submit(Role.LEADER)
        leader = status_dir / "leader"

        previous = leader.stat().st_mtime_ns
        longest_gap = 0.0
        loop = asyncio.get_running_loop()
        last_change = loop.time()
        deadline = last_change + FAST_REFRESH * 10
        while loop.time() < deadline:
            await asyncio.sleep(FAST_REFRESH / 5)
            current = leader.stat().st_mtime_ns
            now = loop.time()
            if current != previous:
                longest_gap = max(longest_gap, now - last_change)
                previous, last_change = current, now

        longest_gap = max(longest_gap, loop.time() - last_change)
        assert longest_gap <= FAST_REFRESH * 2
