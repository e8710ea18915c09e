"""Main CLI entrypoint for couchodm."""

import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from couchodm.cli.config import app as config_app
from couchodm.core.config import ODMConfig
from couchodm.core.constants import ID_FIELD, REV_FIELD, ConflictPolicy
from couchodm.core.exceptions import ODMError
from couchodm.models.report import FlushReport
from couchodm.session import DocumentSession
from couchodm.store.http import CouchDBStore

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="couchodm",
    help="Write-behind change tracking and bulk sync for CouchDB",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@app.callback()
def main(
    log_level: Annotated[
        Optional[str], typer.Option("--log-level", help="Override the configured log level")
    ] = None,
) -> None:
    """Configure logging before any command runs."""
    try:
        configured = ODMConfig.load().logging.level
    except ODMError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    level = (log_level or configured).upper()
    if level not in VALID_LOG_LEVELS:
        err_console.print(f"[red]Error: Invalid log level '{level}'[/red]")
        err_console.print(f"Valid levels: {', '.join(VALID_LOG_LEVELS)}")
        raise typer.Exit(1)

    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _get_store(config: ODMConfig) -> CouchDBStore:
    """Build the store client for a configuration."""
    return CouchDBStore(config.store)


@app.command("status")
def status_command(
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show store server status."""
    config = ODMConfig.load()
    store = _get_store(config)

    try:
        info = store.server_info()
    except ODMError as e:
        if json_output:
            typer.echo(json.dumps({"reachable": False, "url": config.store.url}))
        else:
            console.print("[yellow]couchodm Status[/yellow]")
            console.print("-" * 30)
            console.print(f"Server:          [red]unreachable[/red] ({config.store.url})")
            console.print(f"Error:           {e}")
        raise typer.Exit(1)
    finally:
        store.close()

    if json_output:
        typer.echo(json.dumps({"reachable": True, "url": config.store.url, **info.model_dump()}))
        return

    console.print("[bold]couchodm Status[/bold]")
    console.print("-" * 30)
    console.print(f"Server:          [green]reachable[/green] ({config.store.url})")
    console.print(f"Version:         {info.version or 'unknown'}")
    console.print(f"Database:        {config.store.database}")
    console.print(f"Force writes:    {config.flush.force}")
    console.print(f"Conflict policy: {config.flush.conflict_policy.value}")


@app.command("get")
def get_command(
    identity: Annotated[str, typer.Argument(help="Document identity")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show the current revision of a document."""
    config = ODMConfig.load()
    store = _get_store(config)

    try:
        remote = store.get(identity)
    except ODMError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if remote is None:
        err_console.print(f"[yellow]Document not found: {identity}[/yellow]")
        raise typer.Exit(1)

    if json_output:
        typer.echo(json.dumps(remote.to_document(), indent=2))
        return

    console.print(f"[bold]{remote.identity}[/bold]  rev {remote.revision}")
    if remote.conflicts:
        console.print(f"[yellow]Conflicting revisions: {', '.join(remote.conflicts)}[/yellow]")
    console.print(json.dumps(remote.fields, indent=2))


@app.command("push")
def push_command(
    path: Annotated[Path, typer.Argument(help="JSON file with a list of documents")],
    policy: Annotated[
        Optional[ConflictPolicy], typer.Option("--policy", help="Conflict policy for this flush")
    ] = None,
    force: Annotated[
        Optional[bool], typer.Option("--force/--no-force", help="Apply writes unconditionally")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Flush a file of documents to the store in one batched request.

    Documents carrying ``_rev`` are treated as modified copies of stored
    documents, the rest as new.
    """
    if policy == ConflictPolicy.MANUAL:
        err_console.print("[red]Error: manual conflict policy is not available from the CLI[/red]")
        raise typer.Exit(1)

    try:
        documents = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        err_console.print(f"[red]Error reading {path}: {e}[/red]")
        raise typer.Exit(1)

    if not isinstance(documents, list) or not all(isinstance(d, dict) for d in documents):
        err_console.print("[red]Error: expected a JSON list of objects[/red]")
        raise typer.Exit(1)

    config = ODMConfig.load()
    if force is not None:
        config = replace(config, flush=replace(config.flush, force=force))

    store = _get_store(config)
    try:
        with DocumentSession(store, config=config) as session:
            for doc in documents:
                identity = doc.get(ID_FIELD)
                revision = doc.get(REV_FIELD)
                if revision and identity:
                    session.merge(doc, identity, revision)
                else:
                    session.persist(doc, identity=identity)
            report = session.flush(policy)
    except ODMError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if json_output:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report)

    if not report.ok:
        raise typer.Exit(2)


def _print_report(report: FlushReport) -> None:
    console.print(
        f"[bold]Flush:[/bold] {report.accepted} accepted, "
        f"{report.conflicted} conflicted, {report.rejected} rejected "
        f"({report.requests} request(s))"
    )

    if not report.resolutions and not report.rejections:
        return

    table = Table(title="Outcomes")
    table.add_column("Identity", style="cyan")
    table.add_column("Result")
    table.add_column("State")
    table.add_column("Detail")

    for rejection in report.rejections:
        table.add_row(rejection.identity, "[red]rejected[/red]", "-", rejection.reason or "")

    for outcome in report.resolutions:
        color = "green" if outcome.resolved else "yellow"
        table.add_row(
            outcome.identity,
            f"[{color}]{outcome.action.value}[/{color}]",
            outcome.final_state.value if outcome.final_state else "-",
            str(outcome.error) if outcome.error else (outcome.revision or ""),
        )

    console.print(table)


if __name__ == "__main__":
    app()
