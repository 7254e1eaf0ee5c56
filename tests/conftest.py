"""Shared test fixtures for deployplan."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from deployplan.core.accounts import DEFAULT_ROLES, NamedAccountResolver
from deployplan.core.artifact_store import ArtifactStore
from deployplan.core.cancellation import CancellationToken
from deployplan.core.engine import ExecutionEngine
from deployplan.core.graph import DeploymentGraph
from deployplan.core.retry import Retrier
from deployplan.core.run_journal import RunJournal
from deployplan.models.config import EngineConfig, Environment, RetryPolicy
from deployplan.models.units import Action, DeploymentUnit, UnitDescription
from deployplan.network.local import LocalChain
from deployplan.plans.lending_contracts import SIMULATED_CONTRACTS


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test databases."""
    return tmp_path


@pytest.fixture
def db_path(tmp_dir: Path) -> Path:
    return tmp_dir / "deployments.db"


@pytest.fixture
def store(db_path: Path) -> ArtifactStore:
    """Provide a fresh ArtifactStore backed by a temp SQLite database."""
    return ArtifactStore(db_path)


@pytest.fixture
def journal(db_path: Path) -> RunJournal:
    """Provide a RunJournal sharing the store's database."""
    return RunJournal(db_path)


@pytest.fixture
def environment() -> Environment:
    return Environment(name="test", chain_id=31337)


@pytest.fixture
def chain() -> LocalChain:
    """Provide a LocalChain that knows the lending contracts."""
    return LocalChain(SIMULATED_CONTRACTS)


@pytest.fixture
def accounts(chain: LocalChain, environment: Environment) -> NamedAccountResolver:
    return NamedAccountResolver.from_config(
        environment.name, DEFAULT_ROLES, chain.accounts()
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by the retrier, recorded instead of slept."""
    return []


@pytest.fixture
def retrier(sleeps: list[float]) -> Retrier:
    """Retrier with a 3-attempt budget that never actually sleeps."""
    return Retrier(
        RetryPolicy(max_attempts=3, base_delay_seconds=0.5, max_delay_seconds=2.0),
        sleep=sleeps.append,
    )


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def make_engine(
    store: ArtifactStore,
    journal: RunJournal,
    environment: Environment,
    accounts: NamedAccountResolver,
    chain: LocalChain,
    retrier: Retrier,
    token: CancellationToken,
) -> Callable[..., ExecutionEngine]:
    """Factory fixture: an engine wired to the shared store, chain and journal."""

    def _factory(graph: DeploymentGraph, **overrides: Any) -> ExecutionEngine:
        params: dict[str, Any] = {
            "config": EngineConfig(),
            "journal": journal,
            "token": token,
            "retrier": retrier,
        }
        params.update(overrides)
        client = params.pop("client", chain)
        return ExecutionEngine(graph, store, environment, accounts, client, **params)

    return _factory


# ---------------------------------------------------------------------------
# Unit and action factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_unit() -> Callable[..., DeploymentUnit]:
    """Factory fixture: a generic storage-contract unit.

    ``args`` defaults to ``[unit_id]``; callables in ``args`` are evaluated
    against the context at describe time (for dependency addresses).
    """

    def _factory(
        unit_id: str,
        dependencies: tuple[str, ...] | list[str] = (),
        *,
        args: list[Any] | None = None,
        code: str = "Storage@1",
        deterministic: bool = False,
        tags: tuple[str, ...] = (),
        actions: tuple[Action, ...] | list[Action] = (),
        **extra: Any,
    ) -> DeploymentUnit:
        raw_args = [unit_id] if args is None else args

        def describe(ctx: Any) -> UnitDescription:
            return UnitDescription(
                contract="Storage",
                code=code,
                args=[a(ctx) if callable(a) else a for a in raw_args],
                deterministic=deterministic,
            )

        return DeploymentUnit(
            id=unit_id,
            describe=describe,
            dependencies=tuple(dependencies),
            tags=tags,
            actions=tuple(actions),
            **extra,
        )

    return _factory


@pytest.fixture
def make_set_action() -> Callable[..., Action]:
    """Factory fixture: an action that sets ``key`` on a storage contract."""

    def _factory(key: str, value: Any, target: str | None = None, **overrides: Any) -> Action:
        def _target(ctx: Any) -> str:
            return target or ctx.unit.id

        params: dict[str, Any] = {
            "name": f"set:{key}",
            "predicate": lambda ctx: ctx.call(_target(ctx), "get", key) == value,
            "apply": lambda ctx: ctx.transact(_target(ctx), "set", key, value),
        }
        params.update(overrides)
        return Action(**params)

    return _factory
