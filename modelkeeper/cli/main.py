# modelkeeper/cli/main.py
from __future__ import annotations

from typing import Optional

import typer

from modelkeeper import __version__
from modelkeeper.cli.drive import app as drive_app
from modelkeeper.cli.models import app as models_app
from modelkeeper.cli.storage import app as storage_app
from modelkeeper.constants.cli_constants import DebugMode

app = typer.Typer(
    name="modelkeeper",
    add_completion=False,
    help="Manage served models: pull, stage training runs, export, and back up to Google Drive.",
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"modelkeeper version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    log_level: Optional[DebugMode] = typer.Option(
        None,
        "--log-level",
        case_sensitive=False,
        help="Package log level (defaults to MODELKEEPER_LOG_LEVEL or INFO).",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Also print log records to stderr."),
) -> None:
    """modelkeeper CLI main callback."""
    from modelkeeper.logging import setup_logger, silence_external

    setup_logger(
        level=log_level.value if log_level else None,
        with_console=True if verbose else None,
        force_reconfigure=verbose,
    )
    silence_external()


app.add_typer(
    models_app,
    name="models",
    help="Pull, list, train, export and delete models (pull, list, stats, delete, train, export, generate, health).",
)

app.add_typer(
    drive_app,
    name="drive",
    help="Google Drive backups (setup, sync, restore, ls, mkdir, quota, status, revoke).",
)

app.add_typer(storage_app, name="storage", help="Local storage usage and paths (stats, path).")

if __name__ == "__main__":
    app()
