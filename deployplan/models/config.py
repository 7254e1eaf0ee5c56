"""Environment and engine configuration models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Environment(BaseModel):
    """The target environment of a run.

    Threaded explicitly through the engine and every deploy context, so
    several environments can be orchestrated from one process.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    chain_id: int = 31337


class RetryPolicy(BaseModel):
    """Bounded exponential backoff, applied to network timeouts only."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=4, ge=1)
    base_delay_seconds: float = Field(default=0.5, ge=0)
    max_delay_seconds: float = Field(default=8.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)

    @model_validator(mode="after")
    def _max_not_below_base(self) -> RetryPolicy:
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = self.base_delay_seconds * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


class EngineConfig(BaseModel):
    """Per-run engine settings."""

    model_config = ConfigDict(frozen=True)

    network_timeout_seconds: float = Field(default=30.0, gt=0)
    retry: RetryPolicy = RetryPolicy()
    redeploy: frozenset[str] = frozenset()  # unit ids allowed to redeploy on drift
