"""modelkeeper/cli/drive.py

Google Drive backup commands: setup, sync, restore, ls, mkdir, quota, status, revoke.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from modelkeeper.cli import common
from modelkeeper.constants.cli_constants import SyncDirection

app = typer.Typer(
    name="drive",
    help="Back up and restore the models directory with Google Drive.",
    no_args_is_help=True,
)

FOLDER_OPTION = typer.Option(None, "--folder-id", help="Drive folder id (defaults to the one saved by setup).")


def _folder_or_default(mgr, folder_id: Optional[str]) -> str:
    folder = folder_id or mgr.manifest.cloud.backup_folder_id
    if not folder:
        raise typer.BadParameter("No Drive folder configured. Pass --folder-id or run 'modelkeeper drive setup'.")
    return folder


@app.command("setup")
def cmd_setup(
    credentials: Optional[Path] = typer.Option(
        None, "--credentials", "-c", help="OAuth client or service-account JSON (defaults to the home layout)."
    ),
    folder_id: Optional[str] = FOLDER_OPTION,
) -> None:
    """Authenticate and create (or adopt) the backup folder."""
    try:
        result = common.build_manager().setup_google_drive(credentials, folder_id)
    except Exception as e:
        common.fail(e)
    con = common.rich_console()
    common.print_kv(con, "Backup folder:", result["folder_id"])
    for name, sub_id in result["subfolders"].items():
        common.print_kv(con, f"  {name}:", sub_id)


@app.command("sync")
def cmd_sync(
    folder_id: Optional[str] = FOLDER_OPTION,
    direction: SyncDirection = typer.Option(SyncDirection.upload, "--direction", "-d", case_sensitive=False),
    compress: bool = typer.Option(False, "--compress", help="Upload one .tar.gz instead of the file tree."),
) -> None:
    """
    Upload the models directory.

    A plain upload marks every manifest entry as synced; ``--direction both`` or
    ``--compress`` transfer files without touching the manifest.
    """
    mgr = common.build_manager()
    try:
        if direction is SyncDirection.upload and not compress:
            result = mgr.sync_to_google_drive(folder_id)
            typer.secho(f"Uploaded {len(result.get('files', []))} files", fg=typer.colors.GREEN)
            return
        result = mgr.cloud.sync_models(_folder_or_default(mgr, folder_id), direction.value, compress=compress)
    except Exception as e:
        common.fail(e)
    for phase in ("uploaded", "downloaded"):
        if result[phase] is not None:
            typer.echo(f"{phase.capitalize()}: {len(result[phase].get('files', []))} files")


@app.command("restore")
def cmd_restore(folder_id: Optional[str] = FOLDER_OPTION) -> None:
    """Download the backup folder and adopt untracked models."""
    try:
        result = common.build_manager().restore_from_google_drive(folder_id)
    except Exception as e:
        common.fail(e)
    typer.secho(
        f"Downloaded {len(result.get('files', []))} files; {len(result['restored'])} new entries",
        fg=typer.colors.GREEN,
    )
    for model_id in result["restored"]:
        typer.echo(f"  + {model_id}")


@app.command("ls")
def cmd_ls(
    folder_id: Optional[str] = typer.Argument(None, help="Folder id (defaults to the backup folder)."),
    json_out: bool = typer.Option(False, "--json", help="Output JSON instead of a table."),
) -> None:
    """List a Drive folder."""
    mgr = common.build_manager(quiet=True)
    try:
        items = mgr.cloud.list_folder_contents(_folder_or_default(mgr, folder_id))
    except Exception as e:
        common.fail(e)
    if json_out:
        common.print_json(items)
        return
    common.print_rows(
        None,
        ["Name", "Type", "Size", "Id"],
        [[i["name"], i["type"], common.human_size(i.get("size") or 0), i["id"]] for i in items],
    )


@app.command("mkdir")
def cmd_mkdir(
    name: str = typer.Argument(..., help="Folder name."),
    parent: str = typer.Option("root", "--parent", "-p", help="Parent folder id."),
) -> None:
    """Create a Drive folder."""
    try:
        result = common.build_manager(quiet=True).cloud.create_folder(name, parent)
    except Exception as e:
        common.fail(e)
    typer.echo(result["folder_id"])


@app.command("quota")
def cmd_quota() -> None:
    """Show the Drive storage quota."""
    try:
        quota = common.build_manager(quiet=True).cloud.get_storage_info()
    except Exception as e:
        common.fail(e)
    con = common.rich_console()
    common.print_kv(con, "Limit:", common.human_size(quota.get("limit")))
    common.print_kv(con, "Usage:", common.human_size(quota.get("usage") or 0))
    common.print_kv(con, "In Drive:", common.human_size(quota.get("usage_in_drive") or 0))
    common.print_kv(con, "In trash:", common.human_size(quota.get("usage_in_trash") or 0))


@app.command("status")
def cmd_status() -> None:
    """Show the authentication state and the configured backup folder."""
    mgr = common.build_manager(quiet=True)
    state = mgr.manifest.cloud
    con = common.rich_console()
    common.print_kv(con, "Authenticated:", "yes" if mgr.cloud.is_authenticated() else "no")
    common.print_kv(con, "Token:", str(mgr.cloud.token_path))
    common.print_kv(con, "Backup folder:", state.backup_folder_id or "-")
    common.print_kv(con, "Set up at:", state.setup_at or "-")
    common.print_kv(con, "Transport:", mgr.config.cloud.transport)


@app.command("revoke")
def cmd_revoke(force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation.")) -> None:
    """Delete the stored Drive token."""
    if not force and not typer.confirm("Remove the stored Google Drive token?"):
        raise typer.Abort()
    try:
        removed = common.build_manager(quiet=True).revoke_google_drive()
    except Exception as e:
        common.fail(e)
    typer.echo("Token removed." if removed else "No token stored.")
