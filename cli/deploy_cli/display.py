"""Rich output formatting for the mqdeploy CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from deploy_engine.diff import ManifestDiff
    from deploy_engine.errors import DeployError
    from deploy_engine.models.record import DeploymentRecord
    from deploy_engine.models.snapshot import ConfigSnapshot
    from deploy_engine.pipeline import DeploymentOutcome


_ACTION_COLOURS: dict[str, str] = {
    "deployed": "green",
    "skipped": "cyan",
    "dry_run": "yellow",
}


def display_snapshot(console: Console, snapshot: ConfigSnapshot) -> None:
    """Render the files and fingerprint of a snapshot."""
    table = Table(title=f"Configuration: {snapshot.environment.value}")
    table.add_column("File", style="bold")
    table.add_column("Size", justify="right")
    table.add_column("SHA-256", style="dim")

    for config_file in snapshot.files:
        table.add_row(config_file.name, f"{len(config_file.content)} B", config_file.digest[:16])

    console.print(table)
    console.print(f"Fingerprint: [bold]{snapshot.fingerprint}[/bold]")
    for finding in snapshot.warnings:
        console.print(f"[yellow]warning:[/yellow] {finding}")


def display_diff(console: Console, diff: ManifestDiff) -> None:
    if diff.is_empty:
        console.print("[dim]No file changes since the last deployment.[/dim]")
        return
    for name in diff.added:
        console.print(f"  [green]+ {name}[/green]")
    for name in diff.modified:
        console.print(f"  [yellow]~ {name}[/yellow]")
    for name in diff.removed:
        console.print(f"  [red]- {name}[/red]")


def display_outcome(console: Console, outcome: DeploymentOutcome) -> None:
    """Render the result of a deploy or dry run.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    outcome:
        The pipeline outcome.
    """
    action = outcome.action.value
    colour = _ACTION_COLOURS.get(action, "white")
    lines = [
        f"[bold]Environment:[/bold]  {outcome.environment.value}",
        f"[bold]Fingerprint:[/bold]  {outcome.fingerprint[:12]}",
        f"[bold]Result:[/bold]       [{colour}]{action}[/{colour}]",
    ]
    if outcome.attempt is not None:
        lines.append(f"[bold]Attempt:[/bold]      {outcome.attempt.attempt_id}")
    if outcome.last_record is not None:
        lines.append(
            f"[bold]Last deploy:[/bold]  {outcome.last_record.attempt_id} "
            f"({outcome.last_record.fingerprint[:12]})"
        )
    if outcome.action.value == "dry_run":
        lines.append(f"[bold]Would skip:[/bold]   {'yes' if outcome.would_skip else 'no'}")

    console.print(Panel("\n".join(lines), title="mqdeploy", border_style=colour))

    for finding in outcome.snapshot_warnings:
        console.print(f"[yellow]warning:[/yellow] {finding}")

    if outcome.action.value != "skipped":
        display_diff(console, outcome.diff)

    if outcome.verification is not None:
        if outcome.verification.ok:
            console.print(f"[green]Verification[/green] ({outcome.verification.command}):")
            console.print(outcome.verification.output, markup=False, highlight=False)
        else:
            console.print(f"[yellow]Verification failed:[/yellow] {escape(outcome.verification.error or '')}")

    if outcome.retention is not None:
        deleted = len(outcome.retention.deleted_snapshots) + len(outcome.retention.deleted_units)
        if deleted:
            console.print(f"[dim]Removed {deleted} superseded artifact(s).[/dim]")
        for error in outcome.retention.errors:
            console.print(f"[yellow]cleanup:[/yellow] {escape(error)}")


def display_error(console: Console, error: DeployError) -> None:
    """Render a fatal error with the attempt id and unit logs when known."""
    console.print(f"[red]Deployment failed:[/red] {escape(str(error))}")
    if error.attempt_id:
        console.print(f"[bold]Attempt:[/bold] {error.attempt_id}")
    if error.logs:
        console.print(Panel(Text(error.logs), title="Unit logs", border_style="red"))


def display_history(console: Console, environment: str, records: list[DeploymentRecord]) -> None:
    if not records:
        console.print(f"[yellow]No deployments recorded for {environment}.[/yellow]")
        return

    table = Table(title=f"Deployment History: {environment}")
    table.add_column("Recorded", style="dim")
    table.add_column("Attempt", style="bold")
    table.add_column("Fingerprint")
    table.add_column("Revision")
    table.add_column("Actor")
    table.add_column("Outcome")

    for record in records:
        table.add_row(
            record.recorded_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.attempt_id,
            record.fingerprint[:12],
            record.source_revision[:12],
            record.actor,
            f"[green]{record.outcome.value}[/green]",
        )

    console.print(table)
