"""CLI UI components (Rich).

Why separate components:
- Keeps command logic apart from visual details.
- Tables/panels are reused by several commands.
"""

from __future__ import annotations

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.domain.models import FormOptions, ProvisionResult, ResolvedIdentity


def print_banner(console: Console) -> None:
    """Print the welcome banner (skipped in JSON/pipeline modes)."""

    title = Text("Pipeline Generator", style="bold cyan")
    subtitle = Text("Repository • Template • Pipeline", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def build_identity_table(identity: ResolvedIdentity) -> Table:
    table = Table(title="Resolved context")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Project", f"{identity.project_name or '-'} ({identity.project_id or '-'})")
    table.add_row("Repository", f"{identity.repository_name or '-'} ({identity.repository_id or '-'})")
    table.add_row("Source branch", identity.source_branch)
    table.add_row("Target branch", identity.target_branch)
    return table


def build_options_table(options: FormOptions) -> Table:
    table = Table(title="Form options")
    table.add_column("Option", style="cyan", no_wrap=True)
    table.add_column("Values", style="white")
    table.add_row("Pools", ", ".join(options.pools) or "-")
    table.add_row("Registries", ", ".join(options.registries) or "-")
    table.add_row("Dockerfile dirs", ", ".join(options.dockerfile_dirs) or "-")
    table.add_row("Environment", options.environment or "-")
    table.add_row("Komodo server", options.komodo_server or "-")
    table.add_row("Service", options.service or "-")
    return table


def build_result_panel(result: ProvisionResult) -> Panel:
    """Panel summarizing what a provisioning run changed."""

    body = Text()
    body.append(result.summary() + "\n\n")
    body.append(f"Repository: {result.repository.name} ({result.repository.id})\n")
    if result.branch_created:
        body.append(f"Branch {result.branch} created\n", style="green")
    elif result.pushed:
        body.append(f"Template pushed to {result.branch}\n", style="green")
    else:
        body.append("Template already up to date\n", style="dim")
    if result.default_branch_updated:
        body.append(f"Default branch set to {result.branch}\n")
    body.append(f"Pipeline {result.pipeline.name}: {result.pipeline_action}")
    if result.drift_fields:
        body.append(f" ({', '.join(result.drift_fields)})", style="yellow")
    body.append(f"\nWrite calls: {result.write_calls}", style="dim")

    return Panel(body, title=Text("Provisioning", style="bold green"), border_style="green")
