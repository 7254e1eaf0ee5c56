"""Post-deployment action sequencer: forward-only convergence.

For each action of a unit, strictly in declared order:

1. A stored ``ActionRecord`` for (environment, unit, generation, key)
   means the action is done; skip it.
2. Otherwise evaluate the predicate; if it already holds, skip it and
   record nothing.
3. Otherwise apply, re-evaluate the predicate, and persist an
   ``ActionRecord`` only if it now holds.  If it does not, fail with
   ``ActionNotConvergedError``.

Actions are never rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from deployplan.core.artifact_store import ArtifactStore
from deployplan.core.cancellation import CancellationToken
from deployplan.core.context import DeployContext
from deployplan.core.errors import (
    ActionNotConvergedError,
    DeployplanError,
    UnitExecutionError,
)
from deployplan.core.hasher import content_digest
from deployplan.core.retry import Retrier
from deployplan.models.artifacts import ActionRecord, Artifact
from deployplan.models.units import Action, DeploymentUnit, action_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SequenceResult(BaseModel):
    """Which actions a sequencer pass applied and which it skipped."""

    model_config = ConfigDict(frozen=True)

    applied: list[str] = []
    skipped: list[str] = []
    cancelled: bool = False


def _digest_result(result: Any) -> str | None:
    if result is None:
        return None
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json")
    try:
        return content_digest(result)
    except TypeError:
        return content_digest(repr(result))


class ActionSequencer:
    """Runs a unit's actions against its artifact.

    Parameters
    ----------
    store:
        Where action records are read and appended.
    retrier:
        Retry policy for network timeouts in predicates and applies.
    token:
        Polled between actions.
    """

    def __init__(
        self,
        store: ArtifactStore,
        retrier: Retrier | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self._store = store
        self._retrier = retrier or Retrier()
        self._token = token or CancellationToken()

    def run(
        self, unit: DeploymentUnit, artifact: Artifact, ctx: DeployContext
    ) -> SequenceResult:
        environment = ctx.environment.name
        applied: list[str] = []
        skipped: list[str] = []

        for ordinal, action in enumerate(unit.actions):
            if self._token.cancelled:
                logger.info(
                    "Cancellation requested; stopping %s before action %d.",
                    unit.id, ordinal,
                )
                return SequenceResult(applied=applied, skipped=skipped, cancelled=True)

            key = action_key(ordinal, action.name)
            if self._store.get_action(
                environment, unit.id, key, artifact.generation
            ) is not None:
                logger.debug("%s %s: already recorded, skipping.", unit.id, key)
                skipped.append(key)
                continue

            if self._check(action, key, unit, ctx):
                logger.debug("%s %s: predicate already satisfied, skipping.", unit.id, key)
                skipped.append(key)
                continue

            result = self._apply(action, key, unit, ctx)

            if not self._check(action, key, unit, ctx):
                raise ActionNotConvergedError(
                    f"Action '{key}' of '{unit.id}' was applied but its "
                    "predicate still does not hold",
                    unit_id=unit.id,
                    details={
                        "action_key": key,
                        "address": artifact.address,
                        "generation": artifact.generation,
                    },
                )

            self._store.record_action(
                environment,
                ActionRecord(
                    environment=environment,
                    target_unit_id=unit.id,
                    action_key=key,
                    artifact_generation=artifact.generation,
                    result_digest=_digest_result(result),
                ),
            )
            logger.info("%s %s: applied.", unit.id, key)
            applied.append(key)

        return SequenceResult(applied=applied, skipped=skipped)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check(
        self, action: Action, key: str, unit: DeploymentUnit, ctx: DeployContext
    ) -> bool:
        return bool(
            self._guarded(
                lambda: action.predicate(ctx), key, unit, f"{unit.id} {key} predicate"
            )
        )

    def _apply(
        self, action: Action, key: str, unit: DeploymentUnit, ctx: DeployContext
    ) -> Any:
        attempts = 0

        def once() -> Any:
            nonlocal attempts
            attempts += 1
            # A timed-out apply may still have landed; look before re-sending.
            if attempts > 1 and action.predicate(ctx):
                logger.info(
                    "%s %s: took effect despite the earlier timeout.", unit.id, key
                )
                return None
            return action.apply(ctx)

        return self._guarded(once, key, unit, f"{unit.id} {key}")

    def _guarded(
        self,
        fn: Callable[[], T],
        key: str,
        unit: DeploymentUnit,
        operation: str,
    ) -> T:
        try:
            return self._retrier.call(fn, operation=operation)
        except DeployplanError as exc:
            if exc.unit_id is None:
                exc.unit_id = unit.id
            exc.details.setdefault("action_key", key)
            raise
        except Exception as exc:
            raise UnitExecutionError(
                f"Action '{key}' of '{unit.id}' raised {type(exc).__name__}: {exc}",
                unit_id=unit.id,
                details={"action_key": key},
            ) from exc
