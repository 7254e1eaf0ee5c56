"""Execution engine: the central coordinator for deployment runs.

The engine wires together the DeploymentGraph, Resolver, ArtifactStore,
ActionSequencer, NamedAccountResolver and RunJournal.  For each unit in
resolved order it:

1. Describes the unit (side-effect-free) and computes its fingerprints.
2. Reuses the stored artifact when the fingerprints match.
3. Otherwise deploys and persists the new artifact before moving on.
4. Runs the unit's actions against the artifact.

A fingerprint mismatch halts the run with ``DriftError`` unless the
operator listed the unit in ``EngineConfig.redeploy``.  Any failure halts
the run at the failing unit; everything persisted before it stays valid,
so the next run resumes exactly there.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from deployplan.core.accounts import NamedAccountResolver
from deployplan.core.artifact_store import ArtifactStore
from deployplan.core.cancellation import CancellationToken
from deployplan.core.context import DeployContext
from deployplan.core.errors import (
    DeployplanError,
    DriftError,
    MissingArtifactError,
    UnitExecutionError,
)
from deployplan.core.graph import DeploymentGraph
from deployplan.core.resolver import Resolver
from deployplan.core.retry import Retrier
from deployplan.core.run_journal import RunJournal
from deployplan.core.sequencer import ActionSequencer
from deployplan.models.artifacts import Artifact
from deployplan.models.config import EngineConfig, Environment
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
    DeploymentUnit,
    DeployReceipt,
    UnitDescription,
    UnitHandle,
    action_key,
)
from deployplan.network.base import NetworkClient

logger = logging.getLogger(__name__)

_OUTCOME_EVENTS = {
    UnitOutcome.DEPLOYED: JournalEvent.UNIT_DEPLOYED,
    UnitOutcome.REUSED: JournalEvent.UNIT_REUSED,
    UnitOutcome.REDEPLOYED: JournalEvent.UNIT_REDEPLOYED,
}


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"dp-{ts}-{uuid.uuid4().hex[:6]}"


class ExecutionEngine:
    """Idempotent, resumable executor of a deployment graph.

    Parameters
    ----------
    graph:
        The registered units.
    store:
        Durable record of artifacts and applied actions.
    environment:
        Target environment, threaded into every context.
    accounts:
        Named accounts for ``environment``.
    client:
        Network client used by deploy and action steps.
    config:
        Timeouts, retry policy and redeploy allowances.
    journal:
        Optional run history sink.
    token:
        Cancellation token polled between units and actions.
    retrier:
        Override the retrier built from ``config.retry`` (tests inject a
        no-op sleep here).
    """

    def __init__(
        self,
        graph: DeploymentGraph,
        store: ArtifactStore,
        environment: Environment,
        accounts: NamedAccountResolver,
        client: NetworkClient,
        *,
        config: EngineConfig | None = None,
        journal: RunJournal | None = None,
        token: CancellationToken | None = None,
        retrier: Retrier | None = None,
    ) -> None:
        self.graph = graph
        self.store = store
        self.environment = environment
        self.accounts = accounts
        self.client = client
        self.config = config or EngineConfig()
        self.journal = journal
        self.token = token or CancellationToken()
        self.retrier = retrier or Retrier(self.config.retry)
        self.sequencer = ActionSequencer(store, self.retrier, self.token)
        self.last_report: RunReport | None = None

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(self, tags: list[str] | None = None, *, run_id: str | None = None) -> RunReport:
        """Execute the selected units and their dependency closure.

        Validation errors are raised before any side effect.  Execution
        errors are raised after the report has been attached to them as
        ``exc.report`` and the journal has recorded the halt.
        """
        order = Resolver(self.graph).resolve(tags)
        run_id = run_id or new_run_id()
        env = self.environment.name
        started_at = datetime.now(timezone.utc)
        order_ids = [h.id for h in order]

        with self.store.locked(env, run_id):
            logger.info(
                "Run %s on '%s': %d unit(s) in order %s",
                run_id, env, len(order), ", ".join(order_ids),
            )
            self._journal(run_id, JournalEvent.RUN_STARTED, detail={
                "order": order_ids, "tags": list(tags or []),
            })

            reports: list[UnitReport] = []
            try:
                self._preflight(order)
                for handle in order:
                    if self.token.cancelled:
                        return self._finish_cancelled(run_id, order, reports, started_at)
                    unit_report, cancelled = self._run_unit(run_id, handle)
                    reports.append(unit_report)
                    if cancelled:
                        return self._finish_cancelled(run_id, order, reports, started_at)
            except DeployplanError as exc:
                self._finish_failed(run_id, order, reports, started_at, exc)
                raise

            report = RunReport(
                run_id=run_id,
                environment=env,
                status=RunStatus.SUCCEEDED,
                order=order_ids,
                units=reports,
                started_at=started_at,
            )
            self._journal(run_id, JournalEvent.RUN_SUCCEEDED, detail={
                "deployed": report.deployed_count,
                "actions_applied": report.actions_applied_count,
            })
            logger.info(
                "Run %s succeeded: %d deployed, %d action(s) applied.",
                run_id, report.deployed_count, report.actions_applied_count,
            )
            self.last_report = report
            return report

    def plan(self, tags: list[str] | None = None) -> list[PlanEntry]:
        """Dry run: the resolved order with each unit's stored status."""
        order = Resolver(self.graph).resolve(tags)
        env = self.environment.name
        entries: list[PlanEntry] = []
        pending: set[str] = set()

        for handle in order:
            unit = self.graph.unit(handle)
            stored = self.store.get(env, unit.id)
            deps = [d.id for d in self.graph.get_prerequisites(handle)]
            recorded = 0
            if any(dep in pending for dep in deps):
                status = PlanStatus.UNRESOLVED
            elif stored is None:
                status = PlanStatus.PENDING
            else:
                _, args_fp, code_fp = self._fingerprints(unit, self._context(unit))
                if stored.matches(args_fp, code_fp):
                    status = PlanStatus.UP_TO_DATE
                    recorded = sum(
                        1
                        for i, action in enumerate(unit.actions)
                        if self.store.get_action(
                            env, unit.id, action_key(i, action.name), stored.generation
                        ) is not None
                    )
                else:
                    status = PlanStatus.DRIFTED
            if status is not PlanStatus.UP_TO_DATE:
                pending.add(unit.id)
            entries.append(PlanEntry(
                unit_id=unit.id,
                dependencies=deps,
                tags=list(unit.tags),
                status=status,
                address=stored.address if stored else "",
                actions=len(unit.actions),
                actions_recorded=recorded,
            ))
        return entries

    # ------------------------------------------------------------------
    # Per-unit execution
    # ------------------------------------------------------------------

    def _run_unit(self, run_id: str, handle: UnitHandle) -> tuple[UnitReport, bool]:
        unit = self.graph.unit(handle)
        env = self.environment.name
        ctx = self._context(unit)

        description, args_fp, code_fp = self._fingerprints(unit, ctx)
        ctx = ctx.with_description(description)
        stored = self.store.get(env, unit.id)

        if stored is not None and stored.matches(args_fp, code_fp):
            artifact, outcome = stored, UnitOutcome.REUSED
            logger.info("%s: up to date at %s, skipping deploy.", unit.id, stored.address)
        elif stored is not None:
            if unit.id not in self.config.redeploy:
                raise self._drift_error(unit, stored, args_fp, code_fp)
            logger.warning(
                "%s: drifted from generation %d; redeploying as approved.",
                unit.id, stored.generation,
            )
            artifact = self._deploy(unit, ctx, args_fp, code_fp, supersedes=stored)
            outcome = UnitOutcome.REDEPLOYED
        else:
            artifact = self._deploy(unit, ctx, args_fp, code_fp)
            outcome = UnitOutcome.DEPLOYED

        self._journal(run_id, _OUTCOME_EVENTS[outcome], unit.id, {
            "address": artifact.address,
            "generation": artifact.generation,
            "args_fingerprint": artifact.args_fingerprint,
            "code_fingerprint": artifact.code_fingerprint,
        })

        result = self.sequencer.run(unit, artifact, ctx.with_artifact(artifact))
        for key in result.applied:
            self._journal(run_id, JournalEvent.ACTION_APPLIED, unit.id, {"action_key": key})
        for key in result.skipped:
            self._journal(run_id, JournalEvent.ACTION_SKIPPED, unit.id, {"action_key": key})

        report = UnitReport(
            unit_id=unit.id,
            outcome=outcome,
            address=artifact.address,
            generation=artifact.generation,
            actions_applied=result.applied,
            actions_skipped=result.skipped,
        )
        return report, result.cancelled

    def _deploy(
        self,
        unit: DeploymentUnit,
        ctx: DeployContext,
        args_fp: str,
        code_fp: str,
        *,
        supersedes: Artifact | None = None,
    ) -> Artifact:
        deploy_fn = unit.deploy or DeployContext.deploy_description
        receipt = self._guarded(
            unit, lambda: self.retrier.call(
                lambda: deploy_fn(ctx), operation=f"deploy {unit.id}"
            ),
        )
        if not isinstance(receipt, DeployReceipt):
            raise UnitExecutionError(
                f"Deploy step of '{unit.id}' returned {type(receipt).__name__}, "
                "expected DeployReceipt",
                unit_id=unit.id,
            )

        description = ctx.description
        artifact = Artifact(
            unit_id=unit.id,
            environment=self.environment.name,
            address=receipt.address,
            args_fingerprint=args_fp,
            code_fingerprint=code_fp,
            contract=description.contract,
            args=list(description.args),
            deployer=ctx.account(description.sender),
            transaction_hash=receipt.transaction_hash,
        )
        stored = self.store.put(self.environment.name, artifact, supersedes=supersedes)
        logger.info(
            "%s: deployed %s at %s (generation %d).",
            unit.id, description.contract, stored.address, stored.generation,
        )
        return stored

    def _preflight(self, order: list[UnitHandle]) -> None:
        """Raise DriftError before any side effect, where drift is knowable.

        A unit is checked when its own artifact and all of its dependencies'
        artifacts are already stored.
        """
        env = self.environment.name
        for handle in order:
            unit = self.graph.unit(handle)
            stored = self.store.get(env, unit.id)
            if stored is None or unit.id in self.config.redeploy:
                continue
            deps = self.graph.get_prerequisites(handle)
            if any(self.store.get(env, dep.id) is None for dep in deps):
                continue
            _, args_fp, code_fp = self._fingerprints(unit, self._context(unit))
            if not stored.matches(args_fp, code_fp):
                raise self._drift_error(unit, stored, args_fp, code_fp)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _context(self, unit: DeploymentUnit) -> DeployContext:
        env = self.environment.name
        return DeployContext(
            unit,
            self.environment,
            self.accounts,
            self.client,
            lambda uid: self.store.get(env, uid),
            timeout=self.config.network_timeout_seconds,
        )

    def _fingerprints(
        self, unit: DeploymentUnit, ctx: DeployContext
    ) -> tuple[UnitDescription, str, str]:
        description = self._guarded(unit, lambda: unit.describe(ctx))
        if not isinstance(description, UnitDescription):
            raise UnitExecutionError(
                f"Describe step of '{unit.id}' returned "
                f"{type(description).__name__}, expected UnitDescription",
                unit_id=unit.id,
            )
        sender = self._guarded(unit, lambda: ctx.account(description.sender))
        return (
            description,
            description.args_fingerprint(sender),
            description.code_fingerprint(),
        )

    def _drift_error(
        self, unit: DeploymentUnit, stored: Artifact, args_fp: str, code_fp: str
    ) -> DriftError:
        changed = []
        if stored.args_fingerprint != args_fp:
            changed.append("args")
        if stored.code_fingerprint != code_fp:
            changed.append("code")
        dependents = self.graph.get_dependents(unit.id)
        hint = (
            f" Units built on it may drift too: {', '.join(dependents)}." if dependents else ""
        )
        return DriftError(
            f"Unit '{unit.id}' changed ({' and '.join(changed)}) since it was "
            f"deployed at {stored.address} in '{self.environment.name}'. "
            f"Pass it as an approved redeploy to replace it.{hint}",
            unit_id=unit.id,
            details={
                "address": stored.address,
                "generation": stored.generation,
                "changed": changed,
                "dependents": dependents,
                "stored_args_fingerprint": stored.args_fingerprint,
                "current_args_fingerprint": args_fp,
                "stored_code_fingerprint": stored.code_fingerprint,
                "current_code_fingerprint": code_fp,
            },
        )

    @staticmethod
    def _guarded(unit: DeploymentUnit, fn: Any) -> Any:
        """Tag taxonomy errors with the unit id; wrap everything else."""
        try:
            return fn()
        except DeployplanError as exc:
            if exc.unit_id is None:
                exc.unit_id = unit.id
            raise
        except Exception as exc:
            raise UnitExecutionError(
                f"Unit '{unit.id}' raised {type(exc).__name__}: {exc}",
                unit_id=unit.id,
            ) from exc

    def _journal(
        self,
        run_id: str,
        event: JournalEvent,
        unit_id: str = "",
        detail: dict[str, Any] | None = None,
    ) -> None:
        if self.journal is None:
            return
        self.journal.append(JournalEntry(
            run_id=run_id,
            environment=self.environment.name,
            unit_id=unit_id,
            event=event,
            detail=detail or {},
        ))

    def _not_run(self, order: list[UnitHandle], reports: list[UnitReport]) -> list[UnitReport]:
        done = {r.unit_id for r in reports}
        return [
            UnitReport(unit_id=h.id, outcome=UnitOutcome.NOT_RUN)
            for h in order
            if h.id not in done
        ]

    def _finish_cancelled(
        self,
        run_id: str,
        order: list[UnitHandle],
        reports: list[UnitReport],
        started_at: datetime,
    ) -> RunReport:
        report = RunReport(
            run_id=run_id,
            environment=self.environment.name,
            status=RunStatus.CANCELLED,
            order=[h.id for h in order],
            units=reports + self._not_run(order, reports),
            error_message=self.token.reason,
            started_at=started_at,
        )
        self._journal(run_id, JournalEvent.RUN_CANCELLED, detail={
            "reason": self.token.reason,
            "completed": len(reports),
        })
        logger.warning(
            "Run %s cancelled after %d unit(s); re-run to resume.", run_id, len(reports)
        )
        self.last_report = report
        return report

    def _finish_failed(
        self,
        run_id: str,
        order: list[UnitHandle],
        reports: list[UnitReport],
        started_at: datetime,
        exc: DeployplanError,
    ) -> None:
        failed = UnitReport(
            unit_id=exc.unit_id or "",
            outcome=UnitOutcome.FAILED,
            error_kind=exc.kind,
            error_message=str(exc),
        )
        units = list(reports)
        if exc.unit_id and exc.unit_id not in {r.unit_id for r in reports}:
            units.append(failed)
        report = RunReport(
            run_id=run_id,
            environment=self.environment.name,
            status=RunStatus.FAILED,
            order=[h.id for h in order],
            units=units + self._not_run(order, units),
            failed_unit=exc.unit_id,
            error_kind=exc.kind,
            error_message=str(exc),
            error_details=dict(exc.details),
            started_at=started_at,
        )
        detail = {"error_kind": exc.kind, "message": str(exc)}
        if exc.unit_id:
            self._journal(run_id, JournalEvent.UNIT_FAILED, exc.unit_id, detail)
        self._journal(run_id, JournalEvent.RUN_FAILED, detail={
            **detail, "failed_unit": exc.unit_id or "",
        })
        logger.error(
            "Run %s halted at %s: %s: %s",
            run_id, exc.unit_id or "<preflight>", exc.kind, exc,
        )
        exc.report = report
        self.last_report = report
