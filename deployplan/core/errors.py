"""Error taxonomy for deployment runs.

Every error raised by the graph, the engine, the sequencer or the store
derives from ``DeployplanError``.  Errors carry the failing ``unit_id`` and a
``details`` dict (fingerprints, action keys, addresses) so that a halted run
can be diagnosed without replaying it.

Categories
----------
- ``ValidationError``: structural, detected before any side effect.
- ``DriftError``: stored artifact no longer matches its declaration.
- ``ExecutionError``: failures while deploying or applying actions.
  Only ``NetworkTimeoutError`` is retried.
- ``ArtifactStoreConsistencyError`` / ``ConcurrentRunError``: internal
  invariant violations, never retried.
"""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from deployplan.models.report import RunReport


class DeployplanError(RuntimeError):
    """Base class for all deployplan errors."""

    def __init__(
        self,
        message: str,
        *,
        unit_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.unit_id = unit_id
        self.details: dict[str, Any] = dict(details or {})
        # Attached by the engine when a run halts.
        self.report: RunReport | None = None

    @property
    def kind(self) -> str:
        """Short error kind used in reports and the run journal."""
        return type(self).__name__


# ---------------------------------------------------------------------------
# Validation (pre-flight, structural)
# ---------------------------------------------------------------------------


class ValidationError(DeployplanError):
    """Structural problem in the deployment graph."""


class DuplicateIdError(ValidationError):
    """Raised when a unit id is registered twice."""


class MissingDependencyError(ValidationError):
    """Raised when a unit depends on an id that was never registered."""


class CycleError(ValidationError):
    """Raised when the dependency relation contains a cycle.

    ``cycle`` lists the unit ids in traversal order; the last id depends on
    the first.
    """

    def __init__(self, cycle: list[str]) -> None:
        path = " -> ".join([*cycle, cycle[0]]) if cycle else ""
        super().__init__(
            f"Dependency cycle detected: {path}",
            unit_id=cycle[0] if cycle else None,
            details={"cycle": list(cycle)},
        )
        self.cycle = list(cycle)


class ChainMismatchError(ValidationError):
    """Saved chain state belongs to a different chain id than configured."""


# ---------------------------------------------------------------------------
# Drift
# ---------------------------------------------------------------------------


class DriftError(DeployplanError):
    """A stored artifact's fingerprints differ from the current declaration."""


# ---------------------------------------------------------------------------
# Programming errors in plan code
# ---------------------------------------------------------------------------


class UndeclaredDependencyAccessError(DeployplanError):
    """A unit read the artifact of a unit it does not declare as a dependency."""


class MissingArtifactError(DeployplanError):
    """A declared dependency has no stored artifact yet."""


class UnknownRoleError(DeployplanError, LookupError):
    """A named account role is not configured for the active environment."""


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ExecutionError(DeployplanError):
    """A unit's deploy step or one of its actions failed."""


class NetworkTimeoutError(ExecutionError, TimeoutError):
    """A network-facing call did not complete within the configured timeout."""


class RevertError(ExecutionError):
    """The target system rejected a deployment or transaction."""


class ActionNotConvergedError(ExecutionError):
    """An action's apply step did not make its predicate true."""


class UnitExecutionError(ExecutionError):
    """Plan code raised an exception outside the deployplan taxonomy."""


# ---------------------------------------------------------------------------
# Internal invariants
# ---------------------------------------------------------------------------


class ArtifactStoreConsistencyError(DeployplanError):
    """The store was asked to do something its append-only contract forbids."""


class ConcurrentRunError(DeployplanError):
    """Another run already holds the write lock for this environment."""


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    """Process exit codes used by the CLI."""

    OK = 0
    EXECUTION_FAILED = 1
    VALIDATION_FAILED = 2
    DRIFT_DETECTED = 3
    STORE_CONFLICT = 4
    CANCELLED = 130


def exit_code_for(exc: BaseException) -> ExitCode:
    """Map an exception to the CLI exit code for its category."""
    if isinstance(exc, ValidationError):
        return ExitCode.VALIDATION_FAILED
    if isinstance(exc, DriftError):
        return ExitCode.DRIFT_DETECTED
    if isinstance(exc, (ArtifactStoreConsistencyError, ConcurrentRunError)):
        return ExitCode.STORE_CONFLICT
    return ExitCode.EXECUTION_FAILED
