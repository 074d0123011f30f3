"""Role values and transition events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4


class Role(str, Enum):
    """Role held by this instance in the election."""

    UNKNOWN = "unknown"
    LEADER = "leader"
    FOLLOWER = "follower"


# Roles a transition may move to; UNKNOWN is only the initial state
ASSIGNABLE_ROLES = frozenset({Role.LEADER, Role.FOLLOWER})


@dataclass(frozen=True, slots=True)
class TransitionEvent:
    """Request to move the state machine to `new_role`."""

    new_role: Role
    identity: str
    reason: str = ""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
