"""``deployplan deploy``: run the deployment plan against an environment.

Units already deployed with matching fingerprints are reused and actions
whose effect is already in place are skipped, so running the command
again after a failure picks up where the last run stopped.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape

from deployplan.cli.runtime import Runtime
from deployplan.config import Settings
from deployplan.core.cancellation import CancellationToken, cancel_on_signals
from deployplan.core.errors import DeployplanError, ExitCode, exit_code_for
from deployplan.models.report import RunStatus
from deployplan.monitor.renderer import DeployRenderer

console = Console()


def deploy_cmd(
    env: Optional[str] = typer.Option(
        None, "--env", "-e", help="Target environment (default from settings)."
    ),
    tags: Optional[List[str]] = typer.Option(
        None, "--tags", "-t", help="Only deploy units with these tags (plus dependencies)."
    ),
    redeploy: Optional[List[str]] = typer.Option(
        None, "--redeploy", help="Unit ids allowed to be redeployed if they drifted."
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
    """Deploy the plan, resuming from whatever is already recorded.

    Ctrl+C stops the run after the in-flight step; re-run to resume.
    """
    runtime = Runtime(
        Settings(), env=env, store_path=store, chain_state_path=chain_state, plan=plan
    )
    renderer = DeployRenderer(console=console)
    token = CancellationToken()
    try:
        engine, _ = runtime.engine(redeploy=redeploy, token=token)
        console.print(
            f"[bold cyan]Deploying to '{runtime.environment.name}'"
            f"{' (tags: ' + ', '.join(tags) + ')' if tags else ''}...[/bold cyan]"
        )
        with cancel_on_signals(token):
            report = engine.run(tags or None)
    except DeployplanError as exc:
        if exc.report is not None:
            renderer.print_report(exc.report)
        console.print(f"[bold red]{exc.kind}:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=int(exit_code_for(exc)))

    renderer.print_report(report)
    if report.status is RunStatus.CANCELLED:
        console.print("[yellow]Run cancelled. Re-run the same command to resume.[/yellow]")
        raise typer.Exit(code=int(ExitCode.CANCELLED))
