"""Rich terminal renderer for run reports, plans, stored state and history.

Color scheme
------------
- green     : deployed / applied / up to date
- cyan      : reused
- magenta   : redeployed
- yellow    : pending / drifted
- bold red  : failed
- dim       : not run / skipped
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from deployplan.models.artifacts import ActionRecord, Artifact
from deployplan.models.report import (
    JournalEntry,
    JournalEvent,
    PlanEntry,
    PlanStatus,
    RunReport,
    RunStatus,
    UnitOutcome,
)

_OUTCOME_LABELS: dict[UnitOutcome, str] = {
    UnitOutcome.DEPLOYED: "[green]DEPLOYED[/green]",
    UnitOutcome.REUSED: "[cyan]REUSED[/cyan]",
    UnitOutcome.REDEPLOYED: "[magenta]REDEPLOYED[/magenta]",
    UnitOutcome.FAILED: "[bold red]FAILED[/bold red]",
    UnitOutcome.NOT_RUN: "[dim]NOT RUN[/dim]",
}

_PLAN_LABELS: dict[PlanStatus, str] = {
    PlanStatus.PENDING: "[yellow]PENDING[/yellow]",
    PlanStatus.UP_TO_DATE: "[green]UP TO DATE[/green]",
    PlanStatus.DRIFTED: "[bold yellow]DRIFTED[/bold yellow]",
    PlanStatus.UNRESOLVED: "[dim]WAITS ON DEPS[/dim]",
}

_RUN_STYLES: dict[RunStatus, str] = {
    RunStatus.SUCCEEDED: "green",
    RunStatus.FAILED: "red",
    RunStatus.CANCELLED: "yellow",
}

_EVENT_STYLES: dict[JournalEvent, str] = {
    JournalEvent.UNIT_DEPLOYED: "green",
    JournalEvent.UNIT_REDEPLOYED: "magenta",
    JournalEvent.ACTION_APPLIED: "green",
    JournalEvent.UNIT_FAILED: "bold red",
    JournalEvent.RUN_FAILED: "bold red",
    JournalEvent.RUN_CANCELLED: "yellow",
    JournalEvent.RUN_SUCCEEDED: "bold green",
}


def _short(value: str, width: int = 12) -> str:
    if len(value) <= width:
        return value
    return value[:width] + "..."


class DeployRenderer:
    """Renders deployplan models as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Run report
    # ------------------------------------------------------------------

    def render_report(self, report: RunReport) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Unit", min_width=20)
        table.add_column("Outcome", justify="center", min_width=12)
        table.add_column("Address")
        table.add_column("Gen", justify="right", width=4)
        table.add_column("Actions", justify="right")

        for i, unit in enumerate(report.units):
            actions = (
                f"{len(unit.actions_applied)} applied"
                f" / {len(unit.actions_skipped)} skipped"
            )
            if unit.outcome in (UnitOutcome.FAILED, UnitOutcome.NOT_RUN):
                actions = "[dim]-[/dim]"
            table.add_row(
                str(i),
                unit.unit_id,
                _OUTCOME_LABELS[unit.outcome],
                unit.address or "[dim]-[/dim]",
                str(unit.generation) if unit.address else "",
                actions,
            )

        style = _RUN_STYLES[report.status]
        summary = "  |  ".join([
            f"[bold]Run:[/bold] {report.run_id}",
            f"[bold]Env:[/bold] {report.environment}",
            f"[bold]Deployed:[/bold] {report.deployed_count}",
            f"[bold]Actions applied:[/bold] {report.actions_applied_count}",
            f"[bold]Status:[/bold] [{style}]{report.status.value}[/{style}]",
        ])
        parts: list[Text | Table] = [table, Text(""), Text.from_markup(summary)]
        if report.error_message:
            where = f" at {report.failed_unit}" if report.failed_unit else ""
            parts.append(Text(""))
            parts.append(Text(f"{report.error_kind or 'Halted'}{where}: {report.error_message}", style=style))

        return Panel(
            Group(*parts),
            title="[bold]Deployment Run[/bold]",
            subtitle=f"Finished: {report.finished_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style=style,
            padding=(1, 2),
        )

    def print_report(self, report: RunReport) -> None:
        self.console.print(self.render_report(report))

    # ------------------------------------------------------------------
    # Dry-run plan
    # ------------------------------------------------------------------

    def render_plan(self, environment: str, entries: list[PlanEntry]) -> Table:
        table = Table(
            title=f"Plan for '{environment}'",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Unit", min_width=20)
        table.add_column("Depends on")
        table.add_column("Tags", style="dim")
        table.add_column("Status", justify="center")
        table.add_column("Address")
        table.add_column("Actions", justify="right")

        for i, entry in enumerate(entries):
            table.add_row(
                str(i),
                entry.unit_id,
                ", ".join(entry.dependencies) or "[dim]-[/dim]",
                ", ".join(entry.tags),
                _PLAN_LABELS[entry.status],
                entry.address or "[dim]-[/dim]",
                f"{entry.actions_recorded}/{entry.actions}",
            )
        return table

    def print_plan(self, environment: str, entries: list[PlanEntry]) -> None:
        self.console.print(self.render_plan(environment, entries))

    # ------------------------------------------------------------------
    # Stored state
    # ------------------------------------------------------------------

    def render_status(
        self,
        environment: str,
        artifacts: list[Artifact],
        actions: list[ActionRecord],
    ) -> Table:
        table = Table(
            title=f"Deployments in '{environment}'",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        table.add_column("Unit", min_width=20)
        table.add_column("Contract")
        table.add_column("Address")
        table.add_column("Gen", justify="right", width=4)
        table.add_column("Args fp", style="dim")
        table.add_column("Deployed at", style="dim")
        table.add_column("Actions", justify="right")

        for artifact in artifacts:
            applied = [
                a for a in actions
                if a.target_unit_id == artifact.unit_id
                and a.artifact_generation == artifact.generation
            ]
            table.add_row(
                artifact.unit_id,
                artifact.contract,
                artifact.address,
                str(artifact.generation),
                _short(artifact.args_fingerprint.removeprefix("sha256:")),
                artifact.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                str(len(applied)),
            )
        return table

    def print_status(
        self,
        environment: str,
        artifacts: list[Artifact],
        actions: list[ActionRecord],
        lock_holder: str | None = None,
    ) -> None:
        if not artifacts:
            self.console.print(f"[dim]Nothing deployed in '{environment}'.[/dim]")
        else:
            self.console.print(self.render_status(environment, artifacts, actions))
        if lock_holder:
            self.console.print(
                f"[yellow]Locked by run {lock_holder}.[/yellow] "
                f"[dim]Use 'deployplan unlock {environment}' if that run is gone.[/dim]"
            )

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def render_history(self, run_id: str, entries: list[JournalEntry]) -> Table:
        table = Table(
            title=f"Run {run_id}",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        table.add_column("Time", style="dim", width=10)
        table.add_column("Event", min_width=16)
        table.add_column("Unit")
        table.add_column("Detail")
        table.add_column("Hash", style="dim")

        for entry in entries:
            style = _EVENT_STYLES.get(entry.event, "")
            event = f"[{style}]{entry.event.value}[/{style}]" if style else entry.event.value
            detail = ", ".join(f"{k}={v}" for k, v in entry.detail.items())
            table.add_row(
                entry.timestamp_utc.strftime("%H:%M:%S"),
                event,
                entry.unit_id or "[dim]-[/dim]",
                detail,
                _short(entry.entry_hash),
            )
        return table

    def print_history(self, run_id: str, entries: list[JournalEntry]) -> None:
        self.console.print(self.render_history(run_id, entries))

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Journal chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(
                f"[bold red]Journal chain for run {run_id} is BROKEN![/bold red]"
            )
