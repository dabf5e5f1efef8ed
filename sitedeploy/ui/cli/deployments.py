"""
CLI commands for deployments — deploy, projects, status.

Thin wrappers over ``sitedeploy.core.services.deploy_service``.
They talk to the configured registry directly (no server needed).
"""

from __future__ import annotations

import json
import mimetypes
import sys
from contextlib import ExitStack
from pathlib import Path

import click
from werkzeug.datastructures import FileStorage

from sitedeploy.core.config.loader import ConfigError, load_config
from sitedeploy.core.config.settings import ServiceConfig

_STATUS_COLORS = {
    "PROCESSING": "white",
    "BUILDING": "yellow",
    "SUCCESS": "green",
    "DEPLOYED": "green",
    "FAILED": "red",
    "CREATED": "white",
    "UPLOADING": "white",
}


def load_cli_config(ctx: click.Context) -> ServiceConfig:
    """Load config from ``--config`` (or search); exit 1 on errors."""
    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


def _collect(paths: tuple[Path, ...]) -> list[Path]:
    """Expand directories to their files (sorted), keep files as given."""
    collected: list[Path] = []
    for path in paths:
        if path.is_dir():
            collected.extend(sorted(p for p in path.iterdir() if p.is_file()))
        else:
            collected.append(path)
    return collected


@click.command()
@click.argument(
    "paths", nargs=-1,
    type=click.Path(exists=True, file_okay=True, dir_okay=True, path_type=Path),
)
@click.option("--name", "-n", "project_name", default=None, help="Project display name.")
@click.option("--description", "-d", default="", help="Project description.")
@click.option("--owner", default="local", show_default=True, help="Owner id to record.")
@click.option("--timeout", default=300.0, show_default=True, help="Seconds to wait for completion.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def deploy(
    ctx: click.Context,
    paths: tuple[Path, ...],
    project_name: str | None,
    description: str,
    owner: str,
    timeout: float,
    as_json: bool,
) -> None:
    """Deploy local files (or directories) as a static site."""
    from sitedeploy.core.services.deploy_service import build_services
    from sitedeploy.core.services.intake import IntakeError

    service = build_services(load_cli_config(ctx))
    files = _collect(paths)

    try:
        with ExitStack() as stack:
            uploads = [
                FileStorage(
                    stream=stack.enter_context(path.open("rb")),
                    filename=path.name,
                    content_type=mimetypes.guess_type(path.name)[0] or "application/octet-stream",
                )
                for path in files
            ]
            job, degraded = service.prepare(owner, uploads, project_name, description)
    except IntakeError as e:
        if as_json:
            click.echo(json.dumps({"error": str(e), "code": e.code}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    deployment_id = job.deployment.id
    events: list[dict] = []

    if not as_json:
        click.secho(f"🚀 {job.project.name}", fg="cyan", bold=True)
        click.echo(f"   Project:    {job.project.id}")
        click.echo(f"   Deployment: {deployment_id}")
        click.echo(f"   Files:      {len(job.manifest.files)}")
        if degraded:
            click.secho("   Registry degraded — tracking in memory only", fg="yellow")

    with service.bus.subscribe(deployment_id) as subscription:
        service.orchestrator.start(job)
        for event in subscription:
            data = event["data"]
            events.append(data)
            if not as_json:
                click.secho(f"   • {data['status']}", fg=_STATUS_COLORS.get(data["status"], "white"), nl=False)
                click.echo(f" — {data['message']}")

    service.orchestrator.wait(deployment_id, timeout)
    final = events[-1] if events else {"status": "UNKNOWN"}

    if as_json:
        click.echo(json.dumps({
            "projectId": job.project.id,
            "deploymentId": deployment_id,
            "events": events,
        }, indent=2))
    elif final.get("url"):
        click.echo(f"   🌍 {final['url']}")

    if final["status"] != "SUCCESS":
        sys.exit(1)


@click.command()
@click.option("--owner", default="local", show_default=True, help="Owner id.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def projects(ctx: click.Context, owner: str, as_json: bool) -> None:
    """List projects, newest first."""
    from sitedeploy.core.services.deploy_service import build_services

    service = build_services(load_cli_config(ctx))
    summaries = service.list_projects(owner)

    if as_json:
        click.echo(json.dumps(summaries, indent=2))
        return

    if not summaries:
        click.secho("No projects yet.", fg="yellow")
        click.echo("   Use 'sitedeploy deploy <files>' to create one.")
        return

    click.secho(f"📦 Projects ({len(summaries)}):", fg="cyan", bold=True)
    for p in summaries:
        click.echo(f"   • {p['name']} [", nl=False)
        click.secho(p["status"], fg=_STATUS_COLORS.get(p["status"], "white"), nl=False)
        click.echo(f"] {p['id']}")
        if p.get("url"):
            click.echo(f"     {p['url']}")
    click.echo()


@click.command()
@click.argument("deployment_id")
@click.option("--owner", default="local", show_default=True, help="Owner id.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, deployment_id: str, owner: str, as_json: bool) -> None:
    """Show one deployment."""
    from sitedeploy.core.services.deploy_service import build_services

    service = build_services(load_cli_config(ctx))
    deployment = service.get_deployment(deployment_id, owner)

    if deployment is None:
        if as_json:
            click.echo(json.dumps({"error": "Deployment not found"}, indent=2))
        else:
            click.secho(f"❌ Deployment not found: {deployment_id}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(deployment.to_dict(), indent=2))
        return

    click.secho(f"📋 Deployment {deployment.id}", fg="cyan", bold=True)
    click.echo("   Status:    ", nl=False)
    click.secho(deployment.status.value, fg=_STATUS_COLORS.get(deployment.status.value, "white"))
    click.echo(f"   Project:   {deployment.project_id}")
    click.echo(f"   Created:   {deployment.created_at}")
    if deployment.completed_at:
        click.echo(f"   Completed: {deployment.completed_at}")
    if deployment.url:
        click.echo(f"   URL:       {deployment.url}")
    if deployment.error:
        click.secho(f"   Error:     {deployment.error}", fg="red")
    click.echo(f"   Files ({len(deployment.files)}):")
    for f in deployment.files:
        click.echo(f"     • {f.name} ({f.size} bytes)")
