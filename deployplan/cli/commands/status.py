"""``deployplan status``: show stored artifacts and applied actions."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from deployplan.cli.runtime import Runtime
from deployplan.config import Settings
from deployplan.monitor.renderer import DeployRenderer

console = Console()


def status_cmd(
    env: Optional[str] = typer.Option(None, "--env", "-e", help="Environment to show."),
    store: Optional[Path] = typer.Option(
        None, "--store", "-s", help="Path to the deployment store database."
    ),
) -> None:
    """Show what is recorded as deployed in an environment."""
    runtime = Runtime(Settings(), env=env, store_path=store)
    if not runtime.store_path.exists():
        console.print(f"[bold red]Store not found:[/bold red] {runtime.store_path}")
        raise typer.Exit(code=1)

    artifact_store = runtime.store()
    name = runtime.environment.name
    DeployRenderer(console=console).print_status(
        name,
        artifact_store.list_artifacts(name),
        artifact_store.list_actions(name),
        lock_holder=artifact_store.lock_holder(name),
    )
