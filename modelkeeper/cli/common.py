"""modelkeeper/cli/common.py

Helpers shared by the command groups: lazy rich output, size formatting,
event rendering and uniform error exits.
"""

from __future__ import annotations

import json
from typing import Any, NoReturn, Optional

import typer

from modelkeeper.core.events import Event


def rich_console():
    """Return a rich Console if available, else None (lazy import)."""
    try:
        from rich.console import Console  # type: ignore

        return Console(stderr=False)
    except Exception:
        return None


def rich_table():
    """Return (Table, box) lazily if rich is available, else (None, None)."""
    try:
        from rich import box  # type: ignore
        from rich.table import Table  # type: ignore

        return Table, box
    except Exception:
        return None, None


def human_size(num_bytes: Optional[int]) -> str:
    if num_bytes is None:
        return "unlimited"
    for unit, factor in (("TB", 1024**4), ("GB", 1024**3), ("MB", 1024**2), ("KB", 1024), ("B", 1)):
        if num_bytes >= factor:
            return f"{num_bytes} B" if unit == "B" else f"{num_bytes / factor:.2f} {unit}"
    return "0 B"


def print_kv(con, key: str, value: str) -> None:
    if con:
        con.print(f"[bold]{key}[/bold] {value}")
    else:
        typer.echo(f"{key} {value}")


def print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def print_rows(title: Optional[str], columns: list[str], rows: list[list[str]]) -> None:
    """Render rows as a rich table, or tab-separated lines without rich."""
    Table, box = rich_table()
    con = rich_console()
    if con and Table and box:
        table = Table(title=title, box=box.SIMPLE_HEAVY)
        for col in columns:
            table.add_column(col, overflow="fold", justify="right" if col in {"Size", "Count"} else "left")
        for row in rows:
            table.add_row(*row)
        con.print(table)
    else:
        for row in rows:
            typer.echo("\t".join(row))


def render_event(event: Event) -> None:
    """Progress hook for long-running commands: one short line per interesting event."""
    p = event.payload
    if event.name == "pull-progress":
        progress = p.get("progress") or {}
        status = progress.get("status", "")
        total, done = progress.get("total"), progress.get("completed")
        if total and done is not None:
            typer.echo(f"  {status} {done * 100 // max(int(total), 1)}%")
        elif status:
            typer.echo(f"  {status}")
    elif event.name in ("upload-progress", "download-progress"):
        verb = "uploaded" if event.name == "upload-progress" else "downloaded"
        typer.echo(f"  {verb} {p.get('file')} ({human_size(int(p.get('size') or 0))})")
    elif event.name == "retry":
        typer.secho(
            f"  retrying {p.get('operation')} (attempt {p.get('attempt')} failed: {p.get('error')})",
            fg=typer.colors.YELLOW,
            err=True,
        )
    elif event.name == "warning":
        typer.secho(f"Warning: {p.get('message')}", fg=typer.colors.YELLOW, err=True)
    elif event.name == "pull-skipped":
        typer.echo(f"Skipped {p.get('model')}: {p.get('reason')}")


def fail(exc: BaseException) -> NoReturn:
    """Print the error and exit with status 1 (2 for bad input)."""
    code = 2 if isinstance(exc, (typer.BadParameter, ValueError)) else 1
    typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code) from exc


def build_manager(quiet: bool = False):
    """Construct a RegistryManager on the global configuration (lazy import)."""
    from modelkeeper.core.registry_manager import RegistryManager

    return RegistryManager(on_event=None if quiet else render_event)
