"""Shared wiring for CLI commands: plan loading, accounts, engine, logging."""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from deployplan.config import Settings
from deployplan.core.accounts import DEFAULT_ROLES, NamedAccountResolver
from deployplan.core.artifact_store import ArtifactStore
from deployplan.core.cancellation import CancellationToken
from deployplan.core.engine import ExecutionEngine
from deployplan.core.graph import DeploymentGraph
from deployplan.core.run_journal import RunJournal
from deployplan.models.config import Environment
from deployplan.network.local import LocalChain, SimulatedContract

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Route all deployplan logging through a Rich handler on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_path=False,
                rich_tracebacks=True,
            )
        ],
        force=True,
    )


def load_plan(entry: str) -> tuple[DeploymentGraph, tuple[type[SimulatedContract], ...]]:
    """Import a plan from a ``"module:attr"`` entry point.

    ``attr`` may be a ``DeploymentGraph`` or a zero-argument callable that
    returns one.  A ``SIMULATED_CONTRACTS`` attribute on the same module
    supplies contract behaviour for the local chain.
    """
    module_name, _, attr = entry.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter(
            f"plan entry point must look like 'package.module:attr', got {entry!r}"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"cannot import plan module {module_name!r}: {exc}") from exc
    try:
        target: Any = getattr(module, attr)
    except AttributeError:
        raise typer.BadParameter(f"plan module {module_name!r} has no attribute {attr!r}") from None

    graph = target if isinstance(target, DeploymentGraph) else target()
    if not isinstance(graph, DeploymentGraph):
        raise typer.BadParameter(
            f"{entry} produced {type(graph).__name__}, expected a DeploymentGraph"
        )
    contracts = tuple(getattr(module, "SIMULATED_CONTRACTS", ()))
    logger.debug("Loaded plan %s with %d unit(s).", entry, len(graph))
    return graph, contracts


def load_accounts(
    settings: Settings, environment: str, signers: list[str]
) -> NamedAccountResolver:
    if settings.accounts_path is not None:
        return NamedAccountResolver.from_file(settings.accounts_path, environment, signers)
    return NamedAccountResolver.from_config(environment, DEFAULT_ROLES, signers)


class Runtime:
    """Everything a command needs to talk to one environment."""

    def __init__(
        self,
        settings: Settings,
        *,
        env: str | None = None,
        store_path: Path | None = None,
        chain_state_path: Path | None = None,
        plan: str | None = None,
    ) -> None:
        self.settings = settings
        self.environment: Environment = settings.environment_config(env)
        self.store_path = Path(store_path or settings.store_path)
        self.chain_state_path = Path(chain_state_path or settings.chain_state_path)
        self.plan_entry = plan or settings.plan

    def store(self) -> ArtifactStore:
        return ArtifactStore(self.store_path)

    def journal(self) -> RunJournal:
        return RunJournal(self.store_path)

    def engine(
        self,
        *,
        redeploy: list[str] | None = None,
        token: CancellationToken | None = None,
    ) -> tuple[ExecutionEngine, LocalChain]:
        graph, contracts = load_plan(self.plan_entry)
        chain = LocalChain.load(
            self.chain_state_path, contracts, chain_id=self.environment.chain_id
        )
        accounts = load_accounts(self.settings, self.environment.name, chain.accounts())
        engine = ExecutionEngine(
            graph,
            self.store(),
            self.environment,
            accounts,
            chain,
            config=self.settings.engine_config(redeploy),
            journal=self.journal(),
            token=token,
        )
        return engine, chain
