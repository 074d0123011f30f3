"""CLI commands for Herald.

Provides command-line interface using Typer:
- herald run: Run the leader-election sidecar
- herald status: Show the marker currently published in a status directory

Usage:
    herald --help
    herald run --status-dir /tmp/leader_status --health-port 8080
    herald status --max-age 5
"""

import typer

from herald.cli.run_cmd import app as run_app
from herald.cli.status_cmd import app as status_app

# Main CLI application
app = typer.Typer(
    name="herald",
    help="Herald: publish leader election outcomes as status marker files",
    no_args_is_help=True,
)

app.add_typer(run_app, name="run")
app.add_typer(status_app, name="status")


@app.callback()
def callback() -> None:
    """Herald: publish leader election outcomes as status marker files."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
