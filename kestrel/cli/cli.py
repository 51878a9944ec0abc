"""Command line interface for Kestrel's provider configuration."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kestrel import __version__
from kestrel.core.catalog_client import CatalogClientError
from kestrel.core.config import Config, ConfigError, SelectedModelType
from kestrel.core.load import load
from kestrel.core.providers import update_hyper, update_providers
from kestrel.utils.log import get_logger

console = Console()
logger = get_logger()


def _models_payload(cfg: Config) -> Dict[str, Any]:
    selected = {
        slot.value: cfg.models[slot.value].model_dump(mode="json", exclude_defaults=True)
        for slot in SelectedModelType
        if slot.value in cfg.models
    }
    providers = [
        {
            "id": provider.id,
            "name": provider.name,
            "type": provider.type,
            "base_url": provider.base_url,
            "disabled": provider.disable,
            "models": [model.id for model in provider.models],
        }
        for provider in cfg.providers.values()
    ]
    return {"selected": selected, "providers": providers}


@click.group()
@click.version_option(version=__version__)
@click.option("--cwd", type=click.Path(exists=True, file_okay=False), help="Working directory")
@click.option("--data-dir", type=click.Path(file_okay=False), default="", help="Data directory")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, cwd: Optional[str], data_dir: str, debug: bool) -> None:
    """Kestrel - provider configuration for the Kestrel coding assistant"""
    ctx.ensure_object(dict)
    ctx.obj["cwd"] = str(Path(cwd).resolve()) if cwd else str(Path.cwd())
    ctx.obj["data_dir"] = data_dir
    ctx.obj["debug"] = debug
    logger.debug("[cli] Starting CLI invocation", extra={"cwd": ctx.obj["cwd"]})


@cli.command(name="models")
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
@click.pass_context
def models_cmd(ctx: click.Context, as_json: bool) -> None:
    """Show configured providers and the selected large/small models."""
    try:
        cfg = load(ctx.obj["cwd"], ctx.obj["data_dir"], ctx.obj["debug"])
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(_models_payload(cfg), indent=2))
        return

    console.print("\n[bold]Selected Models[/bold]\n")
    for slot in SelectedModelType:
        selected = cfg.models.get(slot.value)
        if selected is None:
            console.print(f"  {slot.value}: [dim]not set[/dim]")
            continue
        console.print(f"  {slot.value}: {escape(selected.provider)}/{escape(selected.model)}")

    table = Table(title="Providers", show_lines=False)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Models", justify="right")
    table.add_column("Enabled")
    for provider in cfg.providers.values():
        table.add_row(
            escape(provider.id),
            escape(provider.name),
            escape(provider.type),
            str(len(provider.models)),
            "[red]no[/red]" if provider.disable else "[green]yes[/green]",
        )
    console.print()
    console.print(table)


@cli.command(name="update-providers")
@click.argument("source", required=False, default="")
def update_providers_cmd(source: str) -> None:
    """Refresh the provider catalog cache.

    SOURCE is "embedded", a URL, or a local JSON file. Defaults to the
    catalog server.
    """
    try:
        providers = update_providers(source)
    except CatalogClientError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Updated {len(providers)} providers.[/green]")


@cli.command(name="update-hyper")
@click.argument("source", required=False, default="")
def update_hyper_cmd(source: str) -> None:
    """Refresh the Hyper provider cache."""
    try:
        provider = update_hyper(source)
    except CatalogClientError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(
        f"[green]Updated Hyper provider with {len(provider.models)} models.[/green]"
    )


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except (RuntimeError, ValueError, OSError, click.ClickException) as e:
        console.print(f"[red]Fatal error: {escape(str(e))}[/red]")
        logger.warning(
            "[cli] Fatal error in main CLI entrypoint: %s: %s",
            type(e).__name__,
            e,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
