"""CLI command for inspecting a status directory.

Usage:
    herald status
    herald status --status-dir /tmp/leader_status --max-age 5
    herald status --json

Exits with code 1 when no marker is present or the marker is older than
--max-age seconds, so it can back an exec probe.
"""

from __future__ import annotations

import orjson
import typer

from herald.config import DEFAULT_STATUS_DIR
from herald.status.markers import MarkerStore

app = typer.Typer(help="Show the role published in a status directory")


@app.callback(invoke_without_command=True)
def status(
    status_dir: str = typer.Option(
        DEFAULT_STATUS_DIR,
        "--status-dir",
        "-d",
        envvar="STATUS_DIR",
        help="Directory holding the leader/follower markers",
    ),
    max_age: float | None = typer.Option(
        None,
        "--max-age",
        help="Fail if the marker was not refreshed within this many seconds",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the status as JSON",
    ),
) -> None:
    """Print the role, identity and age of the current marker."""
    marker = MarkerStore(status_dir).read()
    if marker is None:
        typer.echo(f"No marker in {status_dir}", err=True)
        raise typer.Exit(code=1)

    age = marker.age()
    stale = max_age is not None and age > max_age

    if as_json:
        typer.echo(
            orjson.dumps(
                {
                    "role": marker.role.value,
                    "identity": marker.identity,
                    "path": str(marker.path),
                    "last_updated": marker.last_updated.isoformat(),
                    "age_seconds": round(age, 3),
                    "stale": stale,
                }
            ).decode()
        )
    else:
        typer.echo(f"{marker.role.value}\t{marker.identity}\t{age:.1f}s")

    if stale:
        typer.echo(f"Marker {marker.path} is stale ({age:.1f}s > {max_age}s)", err=True)
        raise typer.Exit(code=1)
