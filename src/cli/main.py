"""Typer entry-point.

Commands:
- provision: run the provisioning steps headless (personal access token)
- options:   show pools, registries and Dockerfile directories for a project
- render:    print the generated pipeline YAML
- listen:    local Service Hook listener
- doctor:    diagnostics and credential setup
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import typer
import uvicorn
from rich.console import Console

from adapters.devops_client import DevOpsClient
from adapters.json_exporter import export_result_json
from adapters.template_renderer import render_pipeline_template
from adapters.webhook_listener import create_listener_app, run_self_test
from cli import doctor
from cli.ui_components import build_identity_table, build_options_table, build_result_panel, print_banner
from core.config import AppSettings
from core.domain.errors import PipelineGeneratorError
from core.domain.models import Credential, FormOptions, ProvisionResult, ResolvedIdentity
from core.logging import configure_logging
from core.services.context_resolver import require_project, resolve_identity
from core.services.pipeline_form import default_template_values, discover_form_options
from core.services.provisioning import provision as provision_identity

logger = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True, help="Provision a pipeline repository and CI definition in Azure DevOps.")
app.add_typer(doctor.app, name="doctor")

_console = Console()

DEFAULT_LISTENER_PORT = 3000


@app.callback()
def _main(
    log_level: str = typer.Option(None, "--log-level", help="Logging level (default from settings)."),
) -> None:
    settings = AppSettings()
    configure_logging(log_level or settings.log_level)


def _identity_from_options(
    settings: AppSettings,
    *,
    project_id: str | None,
    project_name: str | None,
    repo_id: str | None,
    repo_name: str | None,
    branch: str | None,
    version: str | None,
) -> ResolvedIdentity:
    query = {
        key: value
        for key, value in {
            "projectId": project_id,
            "projectName": project_name,
            "repoId": repo_id,
            "repoName": repo_name,
            "branch": branch,
            "version": version,
        }.items()
        if value
    }
    identity = resolve_identity({}, query, None, settings)
    require_project(identity)
    return identity


def _connection(settings: AppSettings, org_url: str | None, token: str | None) -> tuple[str, Credential]:
    organization_url = org_url or settings.organization_url
    access_token = token or settings.access_token
    if not organization_url:
        raise typer.BadParameter("organization URL is required (--org-url or PIPELINE_GEN_ORGANIZATION_URL)")
    if not access_token:
        raise typer.BadParameter("access token is required (--token or PIPELINE_GEN_ACCESS_TOKEN)")
    return organization_url, Credential(token=access_token)


async def _discover(
    settings: AppSettings,
    organization_url: str,
    credential: Credential,
    identity: ResolvedIdentity,
) -> FormOptions:
    async with DevOpsClient(
        collection_uri=organization_url,
        project_id=identity.project_id,
        credential=credential,
        settings=settings,
    ) as client:
        return await discover_form_options(client, identity, settings)


@app.command()
def provision(
    project_id: str = typer.Option(..., "--project-id", help="Project id (or name) that owns the repositories."),
    project_name: str = typer.Option(None, "--project-name", help="Project name used for the target repository."),
    repo_id: str = typer.Option(None, "--repo-id", help="Source repository id (Dockerfile discovery)."),
    repo_name: str = typer.Option(None, "--repo-name", help="Source repository name (service name default)."),
    branch: str = typer.Option(None, "--branch", "-b", help="Source branch."),
    version: str = typer.Option(None, "--version", help="Version descriptor such as GBmain."),
    org_url: str = typer.Option(None, "--org-url", help="Organization/collection URL."),
    token: str = typer.Option(None, "--token", help="Personal access token."),
    pool: str = typer.Option(None, "--pool"),
    service: str = typer.Option(None, "--service"),
    environment: str = typer.Option(None, "--environment", "-e"),
    dockerfile_dir: str = typer.Option(None, "--dockerfile-dir"),
    repository_address: str = typer.Option(None, "--repository-address"),
    registry: str = typer.Option(None, "--registry", help="Container registry service connection."),
    komodo_server: str = typer.Option(None, "--komodo-server"),
    discover: bool = typer.Option(True, "--discover/--no-discover", help="Query the project for form defaults."),
    output: Path = typer.Option(None, "--output", "-o", help="Write the result as JSON."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="No banner."),
) -> None:
    """Ensure repository, template, default branch and pipeline exist."""

    settings = AppSettings()
    if not quiet:
        print_banner(_console)

    organization_url, credential = _connection(settings, org_url, token)
    try:
        identity = _identity_from_options(
            settings,
            project_id=project_id,
            project_name=project_name,
            repo_id=repo_id,
            repo_name=repo_name,
            branch=branch,
            version=version,
        )
    except PipelineGeneratorError as exc:
        _console.print(f"[red]{exc.user_message}[/red]")
        raise typer.Exit(code=1) from exc
    _console.print(build_identity_table(identity))

    async def _run() -> ProvisionResult:
        options = await _discover(settings, organization_url, credential, identity) if discover else None
        if options:
            for warning in options.warnings:
                _console.print(f"[yellow]{warning}[/yellow]")
        values = default_template_values(
            identity,
            settings,
            options=options,
            pool=pool,
            service=service,
            environment=environment,
            dockerfile_dir=dockerfile_dir,
            repository_address=repository_address,
            container_registry_service=registry,
            komodo_server=komodo_server,
        )
        return await provision_identity(
            identity,
            credential,
            values,
            collection_uri=organization_url,
            settings=settings,
        )

    try:
        result = asyncio.run(_run())
    except PipelineGeneratorError as exc:
        _console.print(f"[red]{exc.user_message}[/red]")
        raise typer.Exit(code=1) from exc

    _console.print(build_result_panel(result))
    if output:
        path = export_result_json(result=result, output_path=output)
        _console.print(f"[green]Result written to:[/green] {path}")


@app.command()
def options(
    project_id: str = typer.Option(..., "--project-id"),
    project_name: str = typer.Option(None, "--project-name"),
    repo_id: str = typer.Option(None, "--repo-id"),
    repo_name: str = typer.Option(None, "--repo-name"),
    branch: str = typer.Option(None, "--branch", "-b"),
    org_url: str = typer.Option(None, "--org-url"),
    token: str = typer.Option(None, "--token"),
) -> None:
    """Show the pools, registries and Dockerfile directories offered by the form."""

    settings = AppSettings()
    organization_url, credential = _connection(settings, org_url, token)
    try:
        identity = _identity_from_options(
            settings,
            project_id=project_id,
            project_name=project_name,
            repo_id=repo_id,
            repo_name=repo_name,
            branch=branch,
            version=None,
        )
        found = asyncio.run(_discover(settings, organization_url, credential, identity))
    except PipelineGeneratorError as exc:
        _console.print(f"[red]{exc.user_message}[/red]")
        raise typer.Exit(code=1) from exc

    _console.print(build_options_table(found))
    for warning in found.warnings:
        _console.print(f"[yellow]{warning}[/yellow]")


@app.command()
def render(
    project_name: str = typer.Option("project", "--project-name"),
    repo_name: str = typer.Option(None, "--repo-name"),
    branch: str = typer.Option(None, "--branch", "-b"),
    pool: str = typer.Option(None, "--pool"),
    service: str = typer.Option(None, "--service"),
    environment: str = typer.Option(None, "--environment", "-e"),
    dockerfile_dir: str = typer.Option(None, "--dockerfile-dir"),
    repository_address: str = typer.Option(None, "--repository-address"),
    registry: str = typer.Option(None, "--registry"),
    komodo_server: str = typer.Option(None, "--komodo-server"),
) -> None:
    """Print the pipeline template YAML without touching the backend."""

    settings = AppSettings()
    identity = resolve_identity(
        {},
        {k: v for k, v in {"projectName": project_name, "repoName": repo_name, "branch": branch}.items() if v},
        None,
        settings,
    )
    values = default_template_values(
        identity,
        settings,
        pool=pool,
        service=service,
        environment=environment,
        dockerfile_dir=dockerfile_dir,
        repository_address=repository_address,
        container_registry_service=registry,
        komodo_server=komodo_server,
    )
    typer.echo(render_pipeline_template(values), nl=False)


def resolve_listener_port(port: str | None, env_port: str | None, default: int = DEFAULT_LISTENER_PORT) -> int:
    """`--port` beats `PORT` beats `default`; invalid input warns and falls back to 3000."""

    candidate = port or env_port
    if not candidate:
        return default
    try:
        value = int(candidate)
    except ValueError:
        logger.warning("Ignoring invalid port input: %s", candidate)
        return DEFAULT_LISTENER_PORT
    if not 1 <= value <= 65535:
        logger.warning("Ignoring invalid port input: %s", candidate)
        return DEFAULT_LISTENER_PORT
    return value


@app.command()
def listen(
    port: str = typer.Option(None, "--port", "-p", help="Port (default: PORT env or 3000)."),
    host: str = typer.Option("127.0.0.1", "--host"),
    quiet: bool = typer.Option(False, "--quiet", help="Do not log raw payloads."),
    self_test: bool = typer.Option(False, "--self-test", help="Check the payload parser and exit."),
) -> None:
    """Run a local Service Hook listener that logs every POSTed event."""

    if self_test:
        summary = run_self_test()
        _console.print(f"Self-test passed: {summary}")
        raise typer.Exit(code=0)

    verbose = not quiet and os.environ.get("LOG_PAYLOADS") != "false"
    resolved = resolve_listener_port(port, os.environ.get("PORT"), AppSettings().webhook_port)
    _console.print(f"Service Hook listener ready on http://localhost:{resolved}")
    _console.print("Press Ctrl+C to stop.")
    uvicorn.run(create_listener_app(verbose=verbose), host=host, port=resolved, log_level="warning")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
