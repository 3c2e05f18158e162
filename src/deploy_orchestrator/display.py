"""Rich-based terminal display layer for deployment progress.

Provides formatted output for the deployment header, stage table,
health-gate results, error panels, rollback guidance and the final
summary.  Uses a module-level :class:`~rich.console.Console` singleton
for consistent output.

Everything printed here that may echo remote output passes through the
secret redaction filter first.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.deploy_shared import __version__
from src.deploy_shared.constants import ALL_STAGES
from src.shared.logging import get_redaction_filter

# ---------------------------------------------------------------------------
# Module-level Console singleton
# ---------------------------------------------------------------------------

_console = Console()

_STAGE_DISPLAY = {
    "resolve_image": "Resolve Image",
    "start_db": "Start Database",
    "wait_db_healthy": "Database Health",
    "start_app_tier": "Start App Tier",
    "wait_app_healthy": "Application Health",
    "backup_db": "Database Backup",
    "run_migrations": "Migrations",
    "final_health_check": "Final Health Check",
}


# ---------------------------------------------------------------------------
# Display functions
# ---------------------------------------------------------------------------


def print_deploy_header(state: Any) -> None:
    """Print a Rich panel header identifying the deployment.

    Parameters
    ----------
    state:
        A ``DeploymentState`` instance (or dict with the same keys).
    """
    header = Text()
    header.append("Kangbeef Deploy", style="bold white")
    header.append(f" v{__version__}\n", style="dim")
    header.append("Deployment: ", style="bold")
    header.append(f"{_get_attr(state, 'deployment_id', 'unknown')}\n", style="cyan")
    header.append("Image: ", style="bold")
    header.append(f"{_get_attr(state, 'image_ref', 'unknown')}\n", style="green")
    header.append("Host: ", style="bold")
    header.append(f"{_get_attr(state, 'host', 'unknown')}", style="green")
    header.append(f" [{_get_attr(state, 'environment', '')}]")
    if _get_attr(state, "forced", False):
        header.append("\nFORCE MODE", style="bold yellow")

    _console.print(
        Panel(
            header,
            title="[bold]Deployment[/bold]",
            border_style="blue",
            expand=False,
        )
    )


def print_stage_table(state: Any) -> None:
    """Print a Rich table showing the status and duration of each stage."""
    table = Table(title="Stage Status", show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="cyan", min_width=22)
    table.add_column("Status", justify="center", min_width=12)
    table.add_column("Duration", justify="right", min_width=10)

    completed = _get_attr(state, "completed_stages", [])
    durations = _get_attr(state, "stage_durations", {})
    failed_stage = _get_attr(state, "failed_stage", "")

    for stage in ALL_STAGES:
        if stage == failed_stage:
            status = "[red]FAILED[/red]"
        elif stage in completed:
            status = "[green]COMPLETE[/green]"
        else:
            status = "[dim]PENDING[/dim]"
        duration = durations.get(stage)
        duration_str = f"{duration:.1f}s" if duration is not None else "-"
        table.add_row(_STAGE_DISPLAY.get(stage, stage), status, duration_str)

    _console.print(table)


def print_health_results(state: Any) -> None:
    """Print one row per health-gate invocation."""
    results = _get_attr(state, "health_results", [])
    if not results:
        _console.print("[dim]No health checks recorded.[/dim]")
        return

    table = Table(title="Health Gates", show_header=True, header_style="bold magenta")
    table.add_column("Gate", style="cyan")
    table.add_column("Service")
    table.add_column("Attempts", justify="right")
    table.add_column("Elapsed", justify="right")
    table.add_column("Result", justify="center")

    for result in results:
        if result.get("passed"):
            verdict = "[green]PASSED[/green]"
        elif result.get("overridden"):
            verdict = "[yellow]FORCED[/yellow]"
        else:
            verdict = "[red]FAILED[/red]"
        table.add_row(
            result.get("label", ""),
            result.get("target", ""),
            f"{result.get('attempt_count', 0)}/{result.get('max_attempts', 0)}",
            f"{result.get('elapsed', 0.0):.1f}s",
            verdict,
        )

    _console.print(table)


def print_error_panel(error: str | Exception, logs: str = "") -> None:
    """Print an error message (and recent service logs) in a red panel."""
    redact = get_redaction_filter().redact
    content = Text(redact(str(error)), style="bold white")
    if logs:
        content.append("\n\nRecent logs:\n", style="bold")
        content.append(redact(logs.rstrip()), style="dim")
    _console.print(
        Panel(
            content,
            title="[bold red]Error[/bold red]",
            border_style="red",
            expand=False,
        )
    )


def print_rollback_advice(advice: Any) -> None:
    """Print the manual recovery command for the previous build."""
    previous_build = _get_attr(advice, "previous_build", None)
    if previous_build is None:
        _console.print(
            f"[yellow]No previous build to roll back to from build "
            f"{_get_attr(advice, 'current_build', '?')}.[/yellow]"
        )
        return

    content = Text()
    content.append("Previous build: ", style="bold")
    content.append(f"{previous_build}\n", style="cyan")
    content.append("Image: ", style="bold")
    content.append(f"{_get_attr(advice, 'previous_image', '')}\n\n")
    content.append(f"{_get_attr(advice, 'command', '')}\n", style="green")
    for note in _get_attr(advice, "notes", []):
        content.append(f"\n{note}", style="dim")

    _console.print(
        Panel(
            content,
            title="[bold]Rollback[/bold]",
            border_style="yellow",
            expand=False,
        )
    )


def print_final_summary(state: Any) -> None:
    """Print the final deployment summary.

    Parameters
    ----------
    state:
        A ``DeploymentState`` instance (or dict with the same keys).
    """
    current_state = _get_attr(state, "current_state", "unknown")
    warnings = _get_attr(state, "warnings", [])

    if current_state == "complete":
        style = "yellow" if warnings else "green"
        title = "Deployment Complete"
    elif current_state == "failed":
        style = "red"
        title = "Deployment Failed"
    else:
        style = "yellow"
        title = "Deployment Status"

    redact = get_redaction_filter().redact
    content = Text()
    content.append("Image: ", style="bold")
    content.append(f"{_get_attr(state, 'image_ref', 'unknown')}\n", style="cyan")
    content.append("Build: ", style="bold")
    content.append(f"{_get_attr(state, 'build_number', 0)}\n")
    content.append("Environment: ", style="bold")
    content.append(f"{_get_attr(state, 'environment', '')}\n")
    content.append("Final State: ", style="bold")
    content.append(f"{current_state}\n", style=style)

    arch = _get_attr(state, "image_architecture", "")
    if arch:
        content.append(f"Architecture: {arch}")
        if _get_attr(state, "image_repulled", False):
            content.append(" (re-pulled)")
        content.append("\n")

    failed_stage = _get_attr(state, "failed_stage", "")
    if failed_stage:
        content.append("Failed Stage: ", style="bold")
        content.append(f"{failed_stage}", style="red")
        kind = _get_attr(state, "error_kind", "")
        if kind:
            content.append(f" ({kind})", style="red")
        content.append("\n")
        message = _get_attr(state, "error_message", "")
        if message:
            content.append(f"{redact(message)}\n")

    backup = _get_attr(state, "backup", None)
    if backup:
        content.append(f"Backup: {backup.get('path', '')}\n")
    else:
        content.append("Backup: none\n", style="dim")

    if _get_attr(state, "rolled_back", False):
        content.append(
            f"Rolled back to {_get_attr(state, 'previous_image', '')}\n", style="yellow"
        )

    if warnings:
        content.append(f"\nWarnings ({len(warnings)}):\n", style="bold yellow")
        for warning in warnings:
            content.append(f"  - {redact(warning)}\n", style="yellow")

    rollback_command = _get_attr(state, "rollback_command", "")
    if rollback_command:
        content.append("\nRollback: ", style="bold")
        content.append(f"{rollback_command}\n", style="green")

    if _get_attr(state, "interrupted", False):
        reason = _get_attr(state, "interrupt_reason", "")
        content.append(f"\nInterrupted: {reason}\n", style="yellow")

    _console.print(
        Panel(
            content,
            title=f"[bold]{title}[/bold]",
            border_style=style,
            expand=False,
        )
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    """Get attribute from object or dict, with fallback to default."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
