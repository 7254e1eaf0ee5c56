"""``deployplan plan``: dry run: show the resolved order and stored status."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape

from deployplan.cli.runtime import Runtime
from deployplan.config import Settings
from deployplan.core.errors import DeployplanError, exit_code_for
from deployplan.monitor.renderer import DeployRenderer

console = Console()


def plan_cmd(
    env: Optional[str] = typer.Option(None, "--env", "-e", help="Target environment."),
    tags: Optional[List[str]] = typer.Option(
        None, "--tags", "-t", help="Only show units with these tags (plus dependencies)."
    ),
    store: Optional[Path] = typer.Option(
        None, "--store", "-s", help="Path to the deployment store database."
    ),
    chain_state: Optional[Path] = typer.Option(
        None, "--chain-state", help="Path to the local chain snapshot."
    ),
    plan: Optional[str] = typer.Option(
        None, "--plan", "-p", help="Plan entry point as 'module:attr'."
    ),
) -> None:
    """Print what a deploy would do, without doing it."""
    runtime = Runtime(
        Settings(), env=env, store_path=store, chain_state_path=chain_state, plan=plan
    )
    try:
        engine, _ = runtime.engine()
        entries = engine.plan(tags or None)
    except DeployplanError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=int(exit_code_for(exc)))
    DeployRenderer(console=console).print_plan(runtime.environment.name, entries)
