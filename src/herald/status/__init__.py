"""Role state and status markers.

Provides:
- Role state machine applying election transitions in arrival order
- Marker store for the leader/follower files
- Refresh task keeping the held marker fresh

Example:
    from herald.status import MarkerStore, RoleEventDispatcher, RoleStateMachine

    machine = RoleStateMachine(MarkerStore("/tmp/leader_status"), "pod-a")
    await machine.start()
    callbacks = RoleEventDispatcher(machine)
"""

from herald.status.machine import RoleEventDispatcher, RoleStateMachine
from herald.status.markers import MarkerStatus, MarkerStore
from herald.status.refresher import RefreshTask
from herald.status.role import Role, TransitionEvent

__all__ = [
    "MarkerStatus",
    "MarkerStore",
    "RefreshTask",
    "Role",
    "RoleEventDispatcher",
    "RoleStateMachine",
    "TransitionEvent",
]
