"""``deployplan unlock ENV``: clear a run lock left by a killed process."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from deployplan.cli.runtime import Runtime
from deployplan.config import Settings

console = Console()


def unlock_cmd(
    env: str = typer.Argument(..., help="Environment whose lock to clear."),
    store: Optional[Path] = typer.Option(
        None, "--store", "-s", help="Path to the deployment store database."
    ),
) -> None:
    """Clear a stale run lock.  Only use this when no run is in progress."""
    runtime = Runtime(Settings(), env=env, store_path=store)
    holder = runtime.store().break_lock(env)
    if holder is None:
        console.print(f"[dim]'{env}' is not locked.[/dim]")
        return
    console.print(f"[yellow]Cleared lock on '{env}' held by run {holder}.[/yellow]")
