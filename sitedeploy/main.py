"""
sitedeploy — CLI entrypoint.

Usage:
    python -m sitedeploy.main --help
    python -m sitedeploy.main serve
    python -m sitedeploy.main deploy ./site --name demo
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from sitedeploy import __version__
from sitedeploy.core.observability.logging_config import LogSettings, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="sitedeploy")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to sitedeploy.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """sitedeploy — upload static sites and track their deployments."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    log = LogSettings.from_env(os.environ, debug=debug, verbose=verbose, quiet=quiet)
    setup_logging(
        level=log.level,
        log_file=log.log_file,
        log_file_level=log.log_file_level,
        quiet_third_party=not debug,
    )


@cli.command()
@click.option("--owner", required=True, help="Owner id the token authenticates as.")
@click.option("--email", default="", help="Email recorded in the token.")
@click.pass_context
def token(ctx: click.Context, owner: str, email: str) -> None:
    """Issue a bearer token for the HTTP API."""
    from sitedeploy.core.services.auth import issue_token
    from sitedeploy.ui.cli.deployments import load_cli_config

    config = load_cli_config(ctx)
    click.echo(issue_token(config.secret_key, owner, email=email))


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    """Show service health (registry, bus, storage)."""
    from sitedeploy.core.observability.health import check_system_health
    from sitedeploy.core.services.deploy_service import build_services
    from sitedeploy.ui.cli.deployments import load_cli_config

    service = build_services(load_cli_config(ctx))
    system_health = check_system_health(service)

    if as_json:
        click.echo(json.dumps(system_health.to_dict(), indent=2))
        sys.exit(0 if system_health.status != "unhealthy" else 1)
        return

    status_icons = {
        "healthy": ("💚", "green"),
        "degraded": ("🟡", "yellow"),
        "unhealthy": ("🔴", "red"),
        "unknown": ("❔", "white"),
    }
    icon, color = status_icons.get(system_health.status, ("❔", "white"))

    click.echo()
    click.secho(f"{icon} System Health: {system_health.status.upper()}", fg=color, bold=True)
    click.echo(f"   {system_health.timestamp}")
    click.echo()

    for component in system_health.components:
        c_icon, c_color = status_icons.get(component.status, ("❔", "white"))
        click.secho(f"   {c_icon} {component.name}", fg=c_color, bold=True)
        click.echo(f"      {component.message}")

        if ctx.obj.get("verbose") and component.details:
            for key, val in component.details.items():
                click.echo(f"      {key}: {val}")

    click.echo()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", "-p", default=8000, type=int, help="Port number.")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Start the deployment API server."""
    from sitedeploy.ui.cli.deployments import load_cli_config
    from sitedeploy.ui.web.server import create_app, run_server

    config = load_cli_config(ctx)
    app = create_app(config=config, config_path=ctx.obj.get("config_path"))
    registry = app.extensions["sitedeploy"].registry
    debug = ctx.obj.get("debug", False)

    click.echo()
    click.secho("⚡ sitedeploy", bold=True)
    click.echo(f"   API:      http://{host}:{port}/api")
    click.echo(f"   Sites:    {config.publish_root}")
    click.echo(f"   Registry: {config.registry.backend}", nl=False)
    if registry.degraded:
        click.secho(" (degraded — in-memory only)", fg="yellow")
    else:
        click.echo()
    if debug:
        click.secho("   Logging: DEBUG (all output)", fg="yellow")
    click.echo()

    run_server(app, host=host, port=port, debug=debug)


# ── Register sub-commands from sitedeploy/ui/cli/ ─────────────────

from sitedeploy.ui.cli.deployments import deploy, projects, status

cli.add_command(deploy)
cli.add_command(projects)
cli.add_command(status)


if __name__ == "__main__":
    cli()
