"""Edgeroute CLI - Command line interface."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click
import structlog
from rich.console import Console
from rich.table import Table

from edgeroute import __version__

console = Console()


def configure_logging(log_level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
    )


@click.group()
@click.version_option(__version__, prog_name="edgeroute")
def main():
    """Edgeroute - rule-based edge traffic router.

    \b
    Examples:
        edgeroute serve --origin http://127.0.0.1:8000
        edgeroute validate routes.yaml
        edgeroute defaults
    """


@main.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML, TOML or JSON settings file",
)
@click.option("--bind", "-b", default=None, help="Bind address (default: 0.0.0.0:8080)")
@click.option("--origin", "-o", "origin_url", default=None, help="Origin base URL")
@click.option(
    "--store",
    "store_backend",
    type=click.Choice(["memory", "file", "http"]),
    default=None,
    help="Config store backend (default: file)",
)
@click.option("--store-path", default=None, help="JSON file for the 'file' store")
@click.option("--store-url", default=None, help="Base URL for the 'http' store")
@click.option("--admin-token", envvar="EDGEROUTE_ADMIN_TOKEN", default=None, help="Admin API token")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level (default: info)",
)
def serve(
    config_file: str | None,
    bind: str | None,
    origin_url: str | None,
    store_backend: str | None,
    store_path: str | None,
    store_url: str | None,
    admin_token: str | None,
    log_level: str | None,
):
    """Run the edge router."""
    from edgeroute.core.config import RouterSettings, settings_overrides_from_file
    from edgeroute.server.main import print_startup, run_server

    overrides: dict = {}
    if config_file:
        try:
            overrides.update(settings_overrides_from_file(config_file))
            console.print(f"Loaded config from {config_file}", style="dim")
        except (OSError, ValueError) as e:
            console.print(f"[red]Failed to load config: {e}[/red]")
            sys.exit(1)

    cli_values = {
        "bind": bind,
        "origin_url": origin_url,
        "store_backend": store_backend,
        "store_path": store_path,
        "store_url": store_url,
        "admin_token": admin_token,
        "log_level": log_level.lower() if log_level else None,
    }
    overrides.update({key: value for key, value in cli_values.items() if value is not None})

    try:
        settings = RouterSettings(**overrides)
    except ValueError as e:
        console.print(f"[red]Invalid settings:[/red] {e}")
        sys.exit(1)

    configure_logging(settings.log_level)
    print_startup(settings)
    asyncio.run(run_server(settings))


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "json_output", is_flag=True, help="Output the report as JSON")
def validate(path: str, json_output: bool):
    """Validate a routes file (JSON, YAML or TOML) without deploying it.

    Accepts a bare list of rules, ``{"routes": [...]}`` or a full export
    document with ``flags``.
    """
    from edgeroute.admin.service import route_warnings
    from edgeroute.core.config import load_config_from_file
    from edgeroute.core.models import validate_flags, validate_routes
    from edgeroute.errors import RouteValidationError

    try:
        document = load_config_from_file(path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Cannot read {path}:[/red] {e}")
        sys.exit(1)

    errors: list[dict] = []
    warnings: list[dict] = []
    routes = []
    try:
        routes = validate_routes(document)
        if isinstance(document, dict) and document.get("flags") is not None:
            validate_flags(document["flags"])
        warnings = route_warnings(routes)
    except RouteValidationError as e:
        errors = e.details or [{"loc": "", "msg": str(e)}]

    if json_output:
        report = {"valid": not errors, "routes": len(routes), "errors": errors, "warnings": warnings}
        click.echo(json.dumps(report, indent=2))
        sys.exit(1 if errors else 0)

    if errors:
        console.print("[red bold]Route Errors:[/red bold]")
        for error in errors:
            console.print(f"  [red]x[/red] {error['loc'] or '<root>'}: {error['msg']}")
        console.print()
        console.print("[red]ERROR - Routes file has errors[/red]")
        sys.exit(1)

    table = Table(title=f"Routes in {path}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Enabled")
    table.add_column("Action")
    table.add_column("Target / Status", style="green")
    for index, rule in enumerate(routes):
        action = rule.action
        detail = action.target if action.type == "redirect" else str(action.status)
        table.add_row(
            str(index),
            rule.id,
            "yes" if rule.enabled else "[dim]no[/dim]",
            action.type,
            detail,
        )
    console.print(table)

    if warnings:
        console.print("[yellow bold]Warnings:[/yellow bold]")
        for warning in warnings:
            console.print(f"  [yellow]![/yellow] {warning['id']}: {warning['msg']}")
        console.print()
        console.print("[green]OK - Routes are valid (with warnings)[/green]")
    else:
        console.print("[green]OK - Routes are valid[/green]")


@main.command()
def defaults():
    """Print the built-in routes and flags written to an empty store."""
    from edgeroute.core.defaults import default_flags, default_routes
    from edgeroute.core.models import flags_to_data, routes_to_data

    document = {
        "routes": routes_to_data(default_routes()),
        "flags": flags_to_data(default_flags()),
    }
    click.echo(json.dumps(document, indent=2))


if __name__ == "__main__":
    main()
