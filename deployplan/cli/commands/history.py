"""``deployplan history``: show run journal entries and verify their chain."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from deployplan.cli.runtime import Runtime
from deployplan.config import Settings
from deployplan.core.errors import ExitCode
from deployplan.core.run_journal import JournalIntegrityError
from deployplan.monitor.renderer import DeployRenderer

console = Console()


def history_cmd(
    env: Optional[str] = typer.Option(None, "--env", "-e", help="Environment to show."),
    run_id: Optional[str] = typer.Option(
        None, "--run", "-r", help="Run to show (default: the most recent)."
    ),
    store: Optional[Path] = typer.Option(
        None, "--store", "-s", help="Path to the deployment store database."
    ),
) -> None:
    """Show the journal of a run, with hash chain verification."""
    runtime = Runtime(Settings(), env=env, store_path=store)
    if not runtime.store_path.exists():
        console.print(f"[bold red]Store not found:[/bold red] {runtime.store_path}")
        raise typer.Exit(code=1)

    journal = runtime.journal()
    runs = journal.get_run_ids(runtime.environment.name)
    if run_id is None:
        if not runs:
            console.print(f"[dim]No runs recorded for '{runtime.environment.name}'.[/dim]")
            return
        run_id = runs[0]

    entries = journal.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        if runs:
            console.print("\n[bold]Recent runs:[/bold]")
            for rid in runs[:10]:
                console.print(f"  [cyan]{rid}[/cyan]")
        raise typer.Exit(code=1)

    renderer = DeployRenderer(console=console)
    renderer.print_history(run_id, entries)
    try:
        journal.verify_chain(run_id)
    except JournalIntegrityError as exc:
        renderer.print_chain_verification(run_id, False)
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=int(ExitCode.STORE_CONFLICT))
    renderer.print_chain_verification(run_id, True)
