"""Run reports and run journal entries."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UnitOutcome(str, Enum):
    """What the engine did with a unit during a run."""

    DEPLOYED = "deployed"
    REUSED = "reused"
    REDEPLOYED = "redeployed"
    FAILED = "failed"
    NOT_RUN = "not_run"


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UnitReport(BaseModel):
    """Per-unit summary of a run."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    outcome: UnitOutcome
    address: str = ""
    generation: int = 0
    actions_applied: list[str] = []
    actions_skipped: list[str] = []
    error_kind: str = ""
    error_message: str = ""


class RunReport(BaseModel):
    """Summary of one engine run against one environment."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    environment: str
    status: RunStatus
    order: list[str] = []
    units: list[UnitReport] = []
    failed_unit: str | None = None
    error_kind: str = ""
    error_message: str = ""
    error_details: dict[str, Any] = {}
    started_at: datetime
    finished_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def deployed_count(self) -> int:
        return sum(
            1
            for u in self.units
            if u.outcome in (UnitOutcome.DEPLOYED, UnitOutcome.REDEPLOYED)
        )

    @property
    def actions_applied_count(self) -> int:
        return sum(len(u.actions_applied) for u in self.units)

    def unit(self, unit_id: str) -> UnitReport | None:
        for report in self.units:
            if report.unit_id == unit_id:
                return report
        return None


class JournalEvent(str, Enum):
    RUN_STARTED = "run_started"
    UNIT_DEPLOYED = "unit_deployed"
    UNIT_REUSED = "unit_reused"
    UNIT_REDEPLOYED = "unit_redeployed"
    ACTION_APPLIED = "action_applied"
    ACTION_SKIPPED = "action_skipped"
    UNIT_FAILED = "unit_failed"
    RUN_SUCCEEDED = "run_succeeded"
    RUN_FAILED = "run_failed"
    RUN_CANCELLED = "run_cancelled"


class JournalEntry(BaseModel):
    """A single entry in the append-only, hash-chained run journal."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    environment: str
    unit_id: str = ""
    event: JournalEvent
    detail: dict[str, Any] = {}
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry


class PlanStatus(str, Enum):
    """Stored state of a unit relative to its current declaration."""

    PENDING = "pending"
    UP_TO_DATE = "up_to_date"
    DRIFTED = "drifted"
    UNRESOLVED = "unresolved"  # a dependency is not deployed yet


class PlanEntry(BaseModel):
    """One row of a dry-run plan."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    dependencies: list[str] = []
    tags: list[str] = []
    status: PlanStatus
    address: str = ""
    actions: int = 0
    actions_recorded: int = 0
