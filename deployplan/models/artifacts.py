"""Persisted results: deployed artifacts and applied action records.

Both are append-only. For a given (environment, unit_id) exactly one
artifact is live: the one with the highest ``generation``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Artifact(BaseModel):
    """Durable result of a successful unit deployment."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    environment: str
    address: str
    args_fingerprint: str
    code_fingerprint: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    contract: str = ""
    args: list[Any] = []
    deployer: str = ""
    transaction_hash: str = ""
    generation: int = 0  # bumped only by an operator-approved redeploy

    def matches(self, args_fp: str, code_fp: str) -> bool:
        """True if this artifact was produced from the given fingerprints."""
        return self.args_fingerprint == args_fp and self.code_fingerprint == code_fp


class ActionRecord(BaseModel):
    """Durable result of a successful post-deployment action."""

    model_config = ConfigDict(frozen=True)

    environment: str
    target_unit_id: str
    action_key: str  # "NN:name"
    artifact_generation: int = 0
    applied_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    result_digest: str | None = None
