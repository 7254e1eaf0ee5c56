"""Runtime configuration: env-driven, read once per process.

Reads ``DEPLOYPLAN_*`` environment variables and a ``.env`` file.  The
settings object is mutable input; the engine only ever sees the frozen
``Environment`` and ``EngineConfig`` built from it.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from deployplan.models.config import EngineConfig, Environment, RetryPolicy

DEFAULT_PLAN = "deployplan.plans.lending:build_plan"


class Settings(BaseSettings):
    """Process configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export DEPLOYPLAN_ENVIRONMENT=staging
        export DEPLOYPLAN_LOG_LEVEL=DEBUG
        export DEPLOYPLAN_STORE_PATH=/data/deployments.db

    Or via .env file::

        DEPLOYPLAN_ENVIRONMENT=localhost
        DEPLOYPLAN_MAX_ATTEMPTS=6
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DEPLOYPLAN_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Target environment
    environment: str = "local"
    chain_id: int = 31337

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    store_path: Path = Path(".deployplan/deployments.db")
    chain_state_path: Path = Path(".deployplan/chain.json")
    accounts_path: Path | None = None

    # Plan entry point, "module:attr"
    plan: str = DEFAULT_PLAN

    # Network and retry
    network_timeout_seconds: float = 30.0
    max_attempts: int = 4
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level.upper()

    def environment_config(self, name: str | None = None) -> Environment:
        """Frozen description of the target environment."""
        name = name or self.environment
        return Environment(name=name, chain_id=self.chain_id)

    def engine_config(self, redeploy: list[str] | None = None) -> EngineConfig:
        """Frozen engine configuration, with optional approved redeploys."""
        return EngineConfig(
            network_timeout_seconds=self.network_timeout_seconds,
            retry=RetryPolicy(
                max_attempts=self.max_attempts,
                base_delay_seconds=self.backoff_base_seconds,
                max_delay_seconds=self.backoff_max_seconds,
            ),
            redeploy=frozenset(redeploy or ()),
        )

