"""Main Typer application: registers all CLI commands.

Entry point: ``deployplan`` (configured via pyproject.toml console scripts).
"""

from __future__ import annotations

from typing import Optional

import typer

from deployplan.cli.commands.deploy import deploy_cmd
from deployplan.cli.commands.history import history_cmd
from deployplan.cli.commands.plan import plan_cmd
from deployplan.cli.commands.status import status_cmd
from deployplan.cli.commands.unlock import unlock_cmd
from deployplan.cli.runtime import configure_logging
from deployplan.config import Settings

app = typer.Typer(
    name="deployplan",
    help="deployplan: idempotent, resumable smart-contract deployments.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="deploy", help="Deploy the plan to an environment.")(deploy_cmd)
app.command(name="plan", help="Show the resolved order and stored status.")(plan_cmd)
app.command(name="status", help="Show stored artifacts and actions.")(status_cmd)
app.command(name="history", help="Show the run journal.")(history_cmd)
app.command(name="unlock", help="Clear a stale run lock.")(unlock_cmd)


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-l", help="Logging level (default from settings)."
    ),
) -> None:
    """Configure logging before any command runs."""
    configure_logging((log_level or Settings().effective_log_level).upper())


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
