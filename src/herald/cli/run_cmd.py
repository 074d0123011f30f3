"""CLI command for running the sidecar.

Usage:
    herald run
    herald run --status-dir /tmp/leader_status --health-port 8080
    herald run --log-level debug

Required settings (LEASE_NAME, NAMESPACE, ...) come from the environment.
"""

from __future__ import annotations

import asyncio

import typer

from herald.config import load_settings
from herald.errors import ConfigurationError, CoordinatorConnectError
from herald.observability.logging import configure_logging
from herald.service import Sidecar

app = typer.Typer(help="Run the leader-election sidecar")


@app.callback(invoke_without_command=True)
def run(
    status_dir: str | None = typer.Option(
        None,
        "--status-dir",
        "-d",
        help="Directory holding the leader/follower markers (default: $STATUS_DIR)",
    ),
    health_port: int | None = typer.Option(
        None,
        "--health-port",
        "-p",
        help="Port for /healthz and /metrics (default: $HEALTH_PORT)",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error (default: $LOG_LEVEL)",
    ),
) -> None:
    """Run the sidecar until SIGTERM or SIGINT."""
    try:
        settings = load_settings(
            status_dir=status_dir,
            health_port=health_port,
            log_level=log_level.upper() if log_level else None,
        )
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2) from e

    configure_logging(json_format=settings.log_json, level=settings.log_level)

    try:
        asyncio.run(Sidecar(settings).run())
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2) from e
    except CoordinatorConnectError as e:
        typer.echo(f"Election backend unavailable: {e}", err=True)
        raise typer.Exit(code=1) from e
