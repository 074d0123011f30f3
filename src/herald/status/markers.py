"""Marker files that publish the current role on the filesystem.

The status directory holds at most one of two fixed-name files:
- `leader` while this instance holds the lease
- `follower` while another instance holds it

File content is the raw identity bytes, with no envelope. The modification
time is the freshness signal: pollers treat a marker that has not been
touched for a few refresh periods as belonging to a dead process.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from herald.errors import MarkerWriteError
from herald.status.role import ASSIGNABLE_ROLES, Role

LEADER_FILE = "leader"
FOLLOWER_FILE = "follower"


@dataclass(frozen=True, slots=True)
class MarkerStatus:
    """Snapshot of the marker currently present in the status directory."""

    role: Role
    identity: str
    path: Path
    last_updated: datetime

    def age(self, now: datetime | None = None) -> float:
        """Seconds since the marker was last refreshed."""
        now = now or datetime.now(timezone.utc)
        return max(0.0, (now - self.last_updated).total_seconds())


class MarkerStore:
    """Reads and writes the role markers in a status directory.

    Writes replace the whole file through a temporary sibling and
    `os.replace`, so a reader sees either the previous content or the new
    one, never a truncated file.
    """

    def __init__(self, status_dir: str | os.PathLike[str]) -> None:
        self._status_dir = Path(status_dir)
        self._paths = {
            Role.LEADER: self._status_dir / LEADER_FILE,
            Role.FOLLOWER: self._status_dir / FOLLOWER_FILE,
        }

    @property
    def status_dir(self) -> Path:
        return self._status_dir

    @property
    def leader_path(self) -> Path:
        return self._paths[Role.LEADER]

    @property
    def follower_path(self) -> Path:
        return self._paths[Role.FOLLOWER]

    def path_for(self, role: Role) -> Path:
        """Return the marker path for `role`.

        Raises:
            ValueError: If `role` has no marker (Role.UNKNOWN)
        """
        if role not in ASSIGNABLE_ROLES:
            raise ValueError(f"No marker for role {role.value!r}")
        return self._paths[role]

    def ensure_directory(self) -> None:
        """Create the status directory if it does not exist.

        Raises:
            OSError: If the directory cannot be created
        """
        self._status_dir.mkdir(mode=0o755, parents=True, exist_ok=True)

    def write(self, role: Role, identity: str) -> Path:
        """Write `identity` into the marker for `role`.

        Raises:
            MarkerWriteError: If the file cannot be written
        """
        path = self.path_for(role)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            tmp_path.write_bytes(identity.encode("utf-8"))
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise MarkerWriteError("write", path, e) from e
        return path

    def touch(self, role: Role) -> None:
        """Advance the modification time of the marker for `role`.

        The content is left untouched. A missing marker is an error: touch
        never recreates a file that was removed.

        Raises:
            MarkerWriteError: If the marker is missing or cannot be updated
        """
        path = self.path_for(role)
        try:
            os.utime(path)
        except OSError as e:
            raise MarkerWriteError("touch", path, e) from e

    def remove_all(self) -> None:
        """Remove both markers. Missing files count as removed.

        Both removals are attempted even if the first one fails.

        Raises:
            MarkerWriteError: For the first removal that failed
        """
        failure: MarkerWriteError | None = None
        for path in self._paths.values():
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                if failure is None:
                    failure = MarkerWriteError("remove", path, e)
        if failure is not None:
            raise failure

    def existing(self) -> list[Role]:
        """Roles whose marker file is currently present."""
        return [role for role, path in self._paths.items() if path.exists()]

    def read(self) -> MarkerStatus | None:
        """Return the marker currently present, or None.

        If both markers exist (a crash between removal and write), the most
        recently modified one wins.
        """
        found: list[MarkerStatus] = []
        for role, path in self._paths.items():
            try:
                stat = path.stat()
                identity = path.read_bytes().decode("utf-8", errors="replace")
            except FileNotFoundError:
                continue
            found.append(
                MarkerStatus(
                    role=role,
                    identity=identity,
                    path=path,
                    last_updated=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        if not found:
            return None
        return max(found, key=lambda status: status.last_updated)
