"""Tests for the ExecutionEngine: reuse, drift, failure, resume, journal."""

from __future__ import annotations

import pytest

from deployplan.core.errors import (
    ConcurrentRunError,
    CycleError,
    DriftError,
    NetworkTimeoutError,
    RevertError,
    UnitExecutionError,
)
from deployplan.core.graph import DeploymentGraph
from deployplan.models.config import EngineConfig
from deployplan.models.report import JournalEvent, PlanStatus, RunStatus, UnitOutcome
from deployplan.models.units import DeploymentUnit


@pytest.fixture
def oracle_lending(make_unit, make_set_action):
    """Factory for the two-unit Oracle/Lending graph."""

    def _build(oracle_args=None) -> DeploymentGraph:
        return DeploymentGraph([
            make_unit("Oracle", args=oracle_args),
            make_unit(
                "Lending",
                ["Oracle"],
                args=[lambda ctx: ctx.address("Oracle")],
                actions=[make_set_action("price", 300, target="Oracle")],
            ),
        ])

    return _build


class TestFirstRun:
    def test_deploys_in_order_and_applies_actions(self, make_engine, oracle_lending, store, chain):
        report = make_engine(oracle_lending()).run()
        assert report.status is RunStatus.SUCCEEDED
        assert report.order == ["Oracle", "Lending"]
        assert [u.outcome for u in report.units] == [UnitOutcome.DEPLOYED] * 2
        assert report.deployed_count == 2
        assert report.actions_applied_count == 1

        oracle = store.get("test", "Oracle")
        lending = store.get("test", "Lending")
        assert lending.args == [oracle.address]
        assert chain.call(to=oracle.address, method="get", args=["price"], timeout=1) == 300

    def test_artifact_records_deployment_details(self, make_engine, oracle_lending, store, accounts):
        make_engine(oracle_lending()).run()
        oracle = store.get("test", "Oracle")
        assert oracle.contract == "Storage"
        assert oracle.deployer == accounts.resolve("deployer")
        assert oracle.transaction_hash.startswith("0x")
        assert oracle.args_fingerprint.startswith("sha256:")

    def test_tag_filter_runs_closure_only(self, make_engine, make_unit, store):
        graph = DeploymentGraph([
            make_unit("Token"),
            make_unit("Oracle", ["Token"], tags=("core",)),
            make_unit("Vault"),
        ])
        report = make_engine(graph).run(["core"])
        assert report.order == ["Token", "Oracle"]
        assert store.get("test", "Vault") is None


class TestIdempotence:
    def test_second_run_is_a_no_op(self, make_engine, oracle_lending, store, chain):
        make_engine(oracle_lending()).run()
        deploys, txs = chain.deploy_count, len(chain.transactions)
        artifacts = store.list_artifacts("test")
        actions = store.list_actions("test")

        report = make_engine(oracle_lending()).run()
        assert report.status is RunStatus.SUCCEEDED
        assert report.deployed_count == 0
        assert report.actions_applied_count == 0
        assert [u.outcome for u in report.units] == [UnitOutcome.REUSED] * 2
        assert report.unit("Lending").actions_skipped == ["00:set:price"]
        assert chain.deploy_count == deploys
        assert len(chain.transactions) == txs
        assert store.list_artifacts("test") == artifacts
        assert store.list_actions("test") == actions

    def test_new_action_on_existing_unit_is_applied(self, make_engine, make_unit, make_set_action, chain):
        make_engine(DeploymentGraph([make_unit("Registry")])).run()
        graph = DeploymentGraph([make_unit("Registry", actions=[make_set_action("a", 1)])])
        report = make_engine(graph).run()
        assert report.unit("Registry").outcome is UnitOutcome.REUSED
        assert report.unit("Registry").actions_applied == ["00:set:a"]
        assert chain.deploy_count == 1


class TestDrift:
    def test_changed_args_raise_drift_before_side_effects(self, make_engine, oracle_lending, chain, make_unit):
        make_engine(oracle_lending()).run()
        deploys = chain.deploy_count
        with pytest.raises(DriftError) as exc_info:
            make_engine(oracle_lending(oracle_args=["v2"])).run()
        exc = exc_info.value
        assert exc.unit_id == "Oracle"
        assert exc.details["changed"] == ["args"]
        assert exc.details["dependents"] == ["Lending"]
        assert "Lending" in str(exc)
        assert exc.details["stored_args_fingerprint"] != exc.details["current_args_fingerprint"]
        assert chain.deploy_count == deploys
        assert exc.report.status is RunStatus.FAILED
        assert exc.report.failed_unit == "Oracle"

    def test_changed_code_is_drift(self, make_engine, make_unit):
        make_engine(DeploymentGraph([make_unit("Oracle")])).run()
        with pytest.raises(DriftError) as exc_info:
            make_engine(DeploymentGraph([make_unit("Oracle", code="Storage@2")])).run()
        assert exc_info.value.details["changed"] == ["code"]

    def test_drift_after_dependency_redeploy_is_detected_in_run(self, make_engine, oracle_lending, store):
        """Redeploying Oracle changes Lending's args; Lending then drifts."""
        make_engine(oracle_lending()).run()
        config = EngineConfig(redeploy=frozenset({"Oracle"}))
        with pytest.raises(DriftError) as exc_info:
            make_engine(oracle_lending(oracle_args=["v2"]), config=config).run()
        assert exc_info.value.unit_id == "Lending"
        assert store.get("test", "Oracle").generation == 1
        assert exc_info.value.report.unit("Oracle").outcome is UnitOutcome.REDEPLOYED

    def test_approved_redeploy_creates_new_generation(self, make_engine, oracle_lending, store, chain):
        make_engine(oracle_lending()).run()
        old = store.get("test", "Oracle")
        config = EngineConfig(redeploy=frozenset({"Oracle", "Lending"}))
        report = make_engine(oracle_lending(oracle_args=["v2"]), config=config).run()

        new = store.get("test", "Oracle")
        assert new.generation == 1 and new.address != old.address
        assert [a.generation for a in store.history("test", "Oracle")] == [0, 1]
        assert report.unit("Lending").outcome is UnitOutcome.REDEPLOYED
        # the action targets the new Oracle, so it runs again for the new generation
        assert report.unit("Lending").actions_applied == ["00:set:price"]
        assert chain.call(to=new.address, method="get", args=["price"], timeout=1) == 300


class TestFailureAndResume:
    def test_validation_fails_before_any_deploy(self, make_engine, make_unit, chain, journal):
        graph = DeploymentGraph([make_unit("A", ["B"]), make_unit("B", ["A"])])
        with pytest.raises(CycleError):
            make_engine(graph).run()
        assert chain.deploy_count == 0
        assert journal.get_run_ids() == []

    def test_revert_halts_at_failing_unit(self, make_engine, make_unit, store):
        def reverting_deploy(ctx):
            raise RevertError("execution reverted: paused")

        graph = DeploymentGraph([
            make_unit("Token"),
            make_unit("Oracle", ["Token"], deploy=reverting_deploy),
            make_unit("Lending", ["Oracle"]),
        ])
        with pytest.raises(RevertError) as exc_info:
            make_engine(graph).run()
        report = exc_info.value.report
        assert report.failed_unit == "Oracle"
        assert report.error_kind == "RevertError"
        assert [(u.unit_id, u.outcome) for u in report.units] == [
            ("Token", UnitOutcome.DEPLOYED),
            ("Oracle", UnitOutcome.FAILED),
            ("Lending", UnitOutcome.NOT_RUN),
        ]
        assert store.get("test", "Token") is not None
        assert store.get("test", "Oracle") is None

    def test_resume_continues_at_failed_unit(self, make_engine, make_unit, chain):
        attempts = {"n": 0}

        def flaky_once(ctx):
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise RevertError("execution reverted: out of gas")
            return ctx.deploy_description()

        graph = DeploymentGraph([
            make_unit("Token"),
            make_unit("Oracle", ["Token"], deploy=flaky_once),
        ])
        with pytest.raises(RevertError):
            make_engine(graph).run()
        report = make_engine(graph).run()
        assert [u.outcome for u in report.units] == [UnitOutcome.REUSED, UnitOutcome.DEPLOYED]
        assert chain.deploy_count == 2

    def test_deploy_timeouts_are_retried(self, make_engine, make_unit, chain, sleeps):
        chain.inject_fault(operation="deploy", times=2)
        report = make_engine(DeploymentGraph([make_unit("Token")])).run()
        assert report.status is RunStatus.SUCCEEDED
        assert sleeps == [0.5, 1.0]

    def test_exhausted_timeouts_halt_the_run(self, make_engine, make_unit, chain, store):
        chain.inject_fault(operation="deploy", times=10)
        with pytest.raises(NetworkTimeoutError) as exc_info:
            make_engine(DeploymentGraph([make_unit("Token")])).run()
        assert exc_info.value.unit_id == "Token"
        assert store.get("test", "Token") is None

    def test_foreign_exception_in_describe_is_wrapped(self, make_engine):
        def describe(ctx):
            raise ZeroDivisionError("bad math")

        graph = DeploymentGraph([DeploymentUnit(id="Broken", describe=describe)])
        with pytest.raises(UnitExecutionError, match="ZeroDivisionError") as exc_info:
            make_engine(graph).run()
        assert exc_info.value.unit_id == "Broken"

    def test_deploy_must_return_receipt(self, make_engine, make_unit):
        graph = DeploymentGraph([make_unit("Token", deploy=lambda ctx: "0x1234")])
        with pytest.raises(UnitExecutionError, match="DeployReceipt"):
            make_engine(graph).run()

    def test_lock_released_after_failure(self, make_engine, make_unit, store):
        graph = DeploymentGraph([make_unit("Token", deploy=lambda ctx: None)])
        with pytest.raises(UnitExecutionError):
            make_engine(graph).run()
        assert store.lock_holder("test") is None


class TestConcurrency:
    def test_concurrent_run_rejected(self, make_engine, make_unit, store, chain):
        store.acquire_lock("test", "other-run")
        with pytest.raises(ConcurrentRunError):
            make_engine(DeploymentGraph([make_unit("Token")])).run()
        assert chain.deploy_count == 0
        assert store.lock_holder("test") == "other-run"

    def test_cancel_before_start(self, make_engine, oracle_lending, token, chain, journal):
        token.cancel("operator")
        report = make_engine(oracle_lending()).run()
        assert report.status is RunStatus.CANCELLED
        assert [u.outcome for u in report.units] == [UnitOutcome.NOT_RUN] * 2
        assert chain.deploy_count == 0
        events = [e.event for e in journal.get_run_entries(report.run_id)]
        assert events == [JournalEvent.RUN_STARTED, JournalEvent.RUN_CANCELLED]

    def test_cancel_between_units(self, make_engine, make_unit, token, store):
        def deploy_then_cancel(ctx):
            receipt = ctx.deploy_description()
            token.cancel("operator")
            return receipt

        graph = DeploymentGraph([
            make_unit("Token", deploy=deploy_then_cancel),
            make_unit("Oracle", ["Token"]),
        ])
        report = make_engine(graph).run()
        assert report.status is RunStatus.CANCELLED
        assert report.unit("Token").outcome is UnitOutcome.DEPLOYED
        assert report.unit("Oracle").outcome is UnitOutcome.NOT_RUN
        assert store.get("test", "Token") is not None
        assert store.lock_holder("test") is None


class TestJournal:
    def test_successful_run_is_journaled(self, make_engine, oracle_lending, journal):
        report = make_engine(oracle_lending()).run(run_id="run-1")
        events = [(e.event, e.unit_id) for e in journal.get_run_entries("run-1")]
        assert events == [
            (JournalEvent.RUN_STARTED, ""),
            (JournalEvent.UNIT_DEPLOYED, "Oracle"),
            (JournalEvent.UNIT_DEPLOYED, "Lending"),
            (JournalEvent.ACTION_APPLIED, "Lending"),
            (JournalEvent.RUN_SUCCEEDED, ""),
        ]
        assert journal.verify_chain("run-1")
        assert report.run_id == "run-1"

    def test_failed_run_is_journaled(self, make_engine, make_unit, journal):
        graph = DeploymentGraph([make_unit("Token", deploy=lambda ctx: None)])
        with pytest.raises(UnitExecutionError):
            make_engine(graph).run(run_id="run-x")
        entries = journal.get_run_entries("run-x")
        assert [e.event for e in entries][-2:] == [JournalEvent.UNIT_FAILED, JournalEvent.RUN_FAILED]
        assert entries[-1].detail["failed_unit"] == "Token"

    def test_generated_run_ids_are_unique(self, make_engine, make_unit):
        graph = DeploymentGraph([make_unit("Token")])
        first = make_engine(graph).run().run_id
        second = make_engine(graph).run().run_id
        assert first != second
        assert first.startswith("dp-")


class TestPlan:
    def test_fresh_environment(self, make_engine, oracle_lending, chain):
        entries = make_engine(oracle_lending()).plan()
        assert [(e.unit_id, e.status) for e in entries] == [
            ("Oracle", PlanStatus.PENDING),
            ("Lending", PlanStatus.UNRESOLVED),
        ]
        assert chain.deploy_count == 0

    def test_after_deploy(self, make_engine, oracle_lending):
        make_engine(oracle_lending()).run()
        entries = make_engine(oracle_lending()).plan()
        assert all(e.status is PlanStatus.UP_TO_DATE for e in entries)
        assert entries[1].actions == 1 and entries[1].actions_recorded == 1
        assert entries[1].dependencies == ["Oracle"]

    def test_drift_is_shown_not_raised(self, make_engine, oracle_lending):
        make_engine(oracle_lending()).run()
        entries = make_engine(oracle_lending(oracle_args=["v2"])).plan()
        assert [e.status for e in entries] == [PlanStatus.DRIFTED, PlanStatus.UNRESOLVED]

    def test_recorded_actions_count_live_generation_only(self, make_engine, oracle_lending):
        make_engine(oracle_lending()).run()
        config = EngineConfig(redeploy=frozenset({"Oracle", "Lending"}))
        make_engine(oracle_lending(oracle_args=["v2"]), config=config).run()

        entries = make_engine(oracle_lending(oracle_args=["v2"])).plan()
        lending = entries[1]
        assert lending.status is PlanStatus.UP_TO_DATE
        assert lending.actions == 1
        assert lending.actions_recorded == 1
