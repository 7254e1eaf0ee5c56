"""deployplan data models: all Pydantic v2, all frozen (immutable)."""

from deployplan.models.artifacts import ActionRecord, Artifact
from deployplan.models.config import EngineConfig, Environment, RetryPolicy
from deployplan.models.report import (
    JournalEntry,
    JournalEvent,
    PlanEntry,
    PlanStatus,
    RunReport,
    RunStatus,
    UnitOutcome,
    UnitReport,
)
from deployplan.models.units import (
    Action,
    DeploymentUnit,
    DeployReceipt,
    TxReceipt,
    UnitDescription,
    UnitHandle,
    action_key,
)

__all__ = [
    # units
    "Action",
    "DeploymentUnit",
    "DeployReceipt",
    "TxReceipt",
    "UnitDescription",
    "UnitHandle",
    "action_key",
    # artifacts
    "Artifact",
    "ActionRecord",
    # config
    "Environment",
    "EngineConfig",
    "RetryPolicy",
    # report
    "JournalEntry",
    "JournalEvent",
    "PlanEntry",
    "PlanStatus",
    "RunReport",
    "RunStatus",
    "UnitOutcome",
    "UnitReport",
]
