"""modelkeeper/cli/storage.py

Inspect the modelkeeper home directory and its disk usage.
"""

from __future__ import annotations

import typer

from modelkeeper.cli import common

app = typer.Typer(
    name="storage",
    help="Inspect local (and Drive) storage used by modelkeeper.",
    no_args_is_help=True,
)

PATH_KINDS = ("base", "models", "training", "logs", "manifest", "config", "token")


@app.command("stats")
def cmd_stats(json_out: bool = typer.Option(False, "--json", help="Output JSON.")) -> None:
    """Local sizes and, when authenticated, the Drive quota."""
    info = common.build_manager().get_storage_info()
    if json_out:
        common.print_json(info)
        return
    con = common.rich_console()
    local = info["local"]
    common.print_kv(con, "Models:", f"{common.human_size(local['models'])} ({local['models']} B)")
    common.print_kv(con, "Training:", f"{common.human_size(local['training'])} ({local['training']} B)")
    common.print_kv(con, "Total:", f"{common.human_size(local['total'])} ({local['total']} B)")
    drive = info.get("google_drive")
    if drive:
        common.print_kv(con, "Drive usage:", f"{common.human_size(drive.get('usage') or 0)} of {common.human_size(drive.get('limit'))}")


@app.command("path")
def cmd_path(
    kind: str = typer.Argument("base", help=f"One of: {', '.join(PATH_KINDS)}."),
) -> None:
    """Print a location from the home layout (set MODELKEEPER_HOME to override)."""
    from modelkeeper.core.config import get_config

    kind = kind.lower()
    if kind not in PATH_KINDS:
        raise typer.BadParameter(f"kind must be one of: {', '.join(PATH_KINDS)}")
    paths = get_config().paths
    resolvers = {
        "base": paths.base,
        "models": paths.models,
        "training": paths.training,
        "logs": paths.logs,
        "manifest": paths.manifest_file,
        "config": paths.config_file,
        "token": paths.token_file,
    }
    typer.echo(str(resolvers[kind]()))
