"""deployplan: idempotent, resumable, dependency-ordered contract deployments.

A deployment plan is a graph of units.  Each unit describes one contract
deployment plus the post-deployment actions that configure it.  The
engine deploys in dependency order, records every artifact and applied
action in a durable store, and on re-run skips whatever is already done:
  - Dependency-ordered, deterministic execution with tag filtering
  - Fingerprint-based reuse and drift detection
  - Forward-only, predicate-checked post-deployment actions
  - Append-only SQLite store with a single-writer run lock
  - Hash-chained run journal
"""

__version__ = "0.1.0"
__description__ = "Idempotent, resumable, dependency-ordered contract deployments"

from deployplan.core.engine import ExecutionEngine
from deployplan.core.graph import DeploymentGraph
from deployplan.models.units import Action, DeploymentUnit, UnitDescription

__all__ = [
    "Action",
    "DeploymentGraph",
    "DeploymentUnit",
    "ExecutionEngine",
    "UnitDescription",
    "__version__",
]
