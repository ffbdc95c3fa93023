"""`doctor` sub-app: configuration report, connectivity checks and PAT setup."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from adapters.http_client import auth_headers, build_async_client
from core.config import AppSettings, write_user_env_vars
from core.domain.models import Credential

app = typer.Typer(no_args_is_help=True, help="Check configuration, SDK mirror and REST API reachability.")

_console = Console()


async def _check_http(url: str, credential: Credential | None = None) -> tuple[bool, str]:
    headers = auth_headers(credential) if credential else None
    try:
        async with build_async_client(extra_headers=headers) as client:
            response = await client.get(url)
        return response.is_success, f"HTTP {response.status_code}"
    except Exception as exc:
        return False, str(exc)


@app.command()
def run() -> None:
    """Report configuration and check the SDK mirror and the REST API."""

    settings = AppSettings()

    table = Table(title="Pipeline Generator Doctor")
    table.add_column("Item", style="cyan", no_wrap=True)
    table.add_column("Result")
    table.add_column("Hint", style="dim")

    if settings.organization_url:
        table.add_row("Organization URL", "OK", settings.organization_url)
    else:
        table.add_row("Organization URL", "MISSING", "Run `doctor configure` or set PIPELINE_GEN_ORGANIZATION_URL")
    if settings.access_token:
        table.add_row("Access token", "OK", "Personal access token configured")
    else:
        table.add_row("Access token", "MISSING", "Run `doctor configure` or set PIPELINE_GEN_ACCESS_TOKEN")
    table.add_row("Branch strategy", "OK", f"{settings.branch_strategy} (canonical: {settings.canonical_branch})")

    # Checks never raise; failures show up as FAIL rows.
    ok_mirror, detail_mirror = asyncio.run(_check_http(settings.sdk_gallery_url))
    table.add_row("SDK mirror", "OK" if ok_mirror else "FAIL", detail_mirror)

    if settings.organization_url and settings.access_token:
        url = settings.organization_url.rstrip("/") + "/_apis/projects?api-version=7.1-preview.4"
        ok_api, detail_api = asyncio.run(_check_http(url, Credential(token=settings.access_token)))
        table.add_row("REST API", "OK" if ok_api else "FAIL", detail_api)

    _console.print(table)


@app.command()
def configure() -> None:
    """Store the organization URL and a personal access token in the user config .env.

    The token is the only credential the tool ever persists.
    """

    settings = AppSettings()
    organization_url = typer.prompt(
        "Organization URL",
        default=settings.organization_url or "https://dev.azure.com/<organization>/",
        show_default=True,
    ).strip()
    token = typer.prompt("Personal access token", hide_input=True, confirmation_prompt=False).strip()

    if not organization_url or not token:
        raise typer.BadParameter("organization URL and token are required")

    env_path = write_user_env_vars(
        {
            "PIPELINE_GEN_ORGANIZATION_URL": organization_url,
            "PIPELINE_GEN_ACCESS_TOKEN": token,
        }
    )

    _console.print(f"[green]Saved configuration to:[/green] {env_path}")
