"""CLI commands for configuration."""

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from couchodm.core.config import ODMConfig
from couchodm.core.constants import get_config_path
from couchodm.core.exceptions import ConfigurationError

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="config",
    help="Configuration commands.",
    no_args_is_help=True,
)


@app.command("show")
def show_config(
    base_path: Annotated[
        Optional[Path], typer.Option("--path", help="Directory holding .couchodm")
    ] = None,
) -> None:
    """Print the effective configuration."""
    try:
        config = ODMConfig.load(base_path)
    except ConfigurationError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    typer.echo(json.dumps(config.to_dict(), indent=2))


@app.command("init")
def init_config(
    base_path: Annotated[
        Optional[Path], typer.Option("--path", help="Directory holding .couchodm")
    ] = None,
    url: Annotated[Optional[str], typer.Option("--url", help="CouchDB server URL")] = None,
    database: Annotated[Optional[str], typer.Option("--database", help="Database name")] = None,
    overwrite: Annotated[bool, typer.Option("--overwrite", help="Replace an existing file")] = False,
) -> None:
    """Write a configuration file with default values."""
    config_path = get_config_path(base_path)
    if config_path.exists() and not overwrite:
        err_console.print(f"[yellow]Config already exists: {config_path}[/yellow]")
        err_console.print("Use --overwrite to replace it.")
        raise typer.Exit(1)

    data = ODMConfig().to_dict()
    if url:
        data["store"]["url"] = url
    if database:
        data["store"]["database"] = database

    saved = ODMConfig.from_dict(data).save(base_path)
    console.print(f"[green]Wrote {saved}[/green]")
