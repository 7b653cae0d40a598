"""modelkeeper/cli/models.py

Model lifecycle commands: pull, list, stats, delete, train, export, generate, health.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from modelkeeper.cli import common
from modelkeeper.constants.cli_constants import ModelSourceOption

app = typer.Typer(
    name="models",
    help="Pull, train, export and delete models tracked in the local manifest.",
    no_args_is_help=True,
)

JSON_OPTION = typer.Option(False, "--json", help="Output JSON instead of a table.")


@app.command("pull")
def cmd_pull(
    name: str = typer.Argument(..., help="Model identifier, e.g. 'llama3:8b'."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Hide progress lines."),
) -> None:
    """Pull a model onto the serving endpoint and record it locally."""
    try:
        result = common.build_manager(quiet=quiet).pull_model(name)
    except Exception as e:
        common.fail(e)
    if result["status"] == "pulled":
        typer.secho(f"Pulled {name}", fg=typer.colors.GREEN)
    elif quiet:
        typer.echo(f"Skipped {name}: {result.get('reason')}")


@app.command("list")
def cmd_list(
    source: Optional[ModelSourceOption] = typer.Option(None, "--source", "-s", help="Only show local entries of this source."),
    local_only: bool = typer.Option(False, "--local-only", help="Do not query the serving endpoint."),
    json_out: bool = JSON_OPTION,
) -> None:
    """Show models on the endpoint and entries in the manifest."""
    mgr = common.build_manager(quiet=True)
    try:
        if local_only:
            listing = {
                "remote": [],
                "local": [{"name": k, **e.to_dict()} for k, e in mgr.manifest.entries.items()],
            }
        else:
            listing = mgr.list_models()
    except Exception as e:
        common.fail(e)

    local = listing["local"]
    if source is not None:
        local = [m for m in local if m.get("source") == source.value]

    if json_out:
        common.print_json({"remote": listing["remote"], "local": local})
        return

    if not local_only:
        common.print_rows(
            "Serving endpoint",
            ["Name", "Size", "Modified"],
            [[m["name"], common.human_size(int(m.get("size") or 0)), str(m.get("modified") or "")] for m in listing["remote"]],
        )
    common.print_rows(
        "Manifest",
        ["Name", "Source", "Synced", "Base model"],
        [[m["name"], m["source"], "yes" if m.get("synced") else "no", m.get("base_model") or ""] for m in local],
    )


@app.command("stats")
def cmd_stats(json_out: bool = JSON_OPTION) -> None:
    """Count manifest entries by source and sync state."""
    stats = common.build_manager(quiet=True).get_model_stats()
    if json_out:
        common.print_json(stats)
        return
    con = common.rich_console()
    common.print_kv(con, "Total:", str(stats["total"]))
    common.print_kv(con, "Synced:", str(stats["synced"]))
    for src, count in stats["by_source"].items():
        common.print_kv(con, f"{src}:", str(count))


@app.command("delete")
def cmd_delete(
    name: str = typer.Argument(..., help="Model identifier."),
    local: bool = typer.Option(True, "--local/--keep-local", help="Remove the local directory and manifest entry."),
    remote: bool = typer.Option(False, "--remote", help="Also delete the model from the serving endpoint."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Delete a model locally and/or on the serving endpoint."""
    if not local and not remote:
        typer.echo("Nothing to delete (use --local and/or --remote).")
        raise typer.Exit(code=0)
    where = " and ".join(w for w, on in (("locally", local), ("on the endpoint", remote)) if on)
    if not force and not typer.confirm(f"Delete {name} {where}?"):
        raise typer.Abort()
    try:
        common.build_manager(quiet=True).delete_model(name, delete_local=local, delete_remote=remote)
    except Exception as e:
        common.fail(e)
    typer.echo(f"Deleted {name} {where}.")


@app.command("train")
def cmd_train(
    base_model: str = typer.Argument(..., help="Model the run derives from."),
    training_data: Path = typer.Argument(..., help="Training data file or directory."),
    output_name: str = typer.Argument(..., help="Name of the produced model."),
) -> None:
    """Stage training data and record lineage for a new model."""
    try:
        result = common.build_manager(quiet=True).train_model(base_model, training_data, output_name)
    except Exception as e:
        common.fail(e)
    con = common.rich_console()
    common.print_kv(con, "Training id:", result["training_id"])
    common.print_kv(con, "Run directory:", result["path"])


@app.command("export")
def cmd_export(
    training_id: str = typer.Argument(..., help="Training run identifier."),
    output: Path = typer.Argument(..., help="Destination directory."),
) -> None:
    """Copy the files of a training run to a directory."""
    try:
        result = common.build_manager(quiet=True).export_model(training_id, output)
    except Exception as e:
        common.fail(e)
    typer.echo(f"Exported {len(result['files'])} files to {result['path']}")


@app.command("generate")
def cmd_generate(
    model: str = typer.Argument(..., help="Model to run."),
    prompt: str = typer.Argument(..., help="Prompt text."),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Print tokens as they arrive."),
    temperature: Optional[float] = typer.Option(None, "--temperature", "-t", help="Sampling temperature."),
) -> None:
    """Run one completion against the serving endpoint."""
    options = {"options": {"temperature": temperature}} if temperature is not None else None
    serving = common.build_manager(quiet=True).serving
    try:
        if stream:
            serving.stream_generate(
                model, prompt, lambda chunk: typer.echo(chunk.get("response", ""), nl=False), options=options
            )
            typer.echo("")
        else:
            typer.echo(serving.generate(model, prompt, options=options)["response"])
    except Exception as e:
        common.fail(e)


@app.command("health")
def cmd_health(json_out: bool = JSON_OPTION) -> None:
    """Check whether the serving endpoint answers."""
    info = common.build_manager(quiet=True).serving.get_server_info()
    if json_out:
        common.print_json(info)
    else:
        con = common.rich_console()
        common.print_kv(con, "Endpoint:", info["host"])
        common.print_kv(con, "Available:", "yes" if info["available"] else "no")
        if info["available"]:
            common.print_kv(con, "Models:", str(info["models"]))
    if not info["available"]:
        raise typer.Exit(code=1)
