"""Tests for the Typer CLI, run in-process with CliRunner."""

from __future__ import annotations

import sqlite3
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

from deployplan.cli.app import app
from deployplan.cli.runtime import Runtime
from deployplan.config import Settings
from deployplan.core.artifact_store import ArtifactStore
from deployplan.core.run_journal import RunJournal

runner = CliRunner()


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    """Run each CLI test in an empty directory with no DEPLOYPLAN_* overrides."""
    monkeypatch.chdir(tmp_path)
    for name in ("ENVIRONMENT", "STORE_PATH", "CHAIN_STATE_PATH", "PLAN", "ACCOUNTS_PATH", "CHAIN_ID"):
        monkeypatch.delenv(f"DEPLOYPLAN_{name}", raising=False)
    return tmp_path


@pytest.fixture
def paths(workdir: Path) -> list[str]:
    return [
        "--store", str(workdir / "deployments.db"),
        "--chain-state", str(workdir / "chain.json"),
    ]


def _invoke(*args: str):
    return runner.invoke(app, ["--log-level", "WARNING", *args])


class TestHelp:
    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("deploy", "plan", "status", "history", "unlock"):
            assert command in result.output


class TestDeploy:
    def test_deploy_then_redeploy_is_idempotent(self, workdir, paths):
        first = _invoke("deploy", *paths)
        assert first.exit_code == 0, first.output
        assert (workdir / "chain.json").exists()

        store = ArtifactStore(workdir / "deployments.db")
        artifacts = store.list_artifacts("local")
        assert len(artifacts) == 8

        second = _invoke("deploy", *paths)
        assert second.exit_code == 0, second.output
        assert store.list_artifacts("local") == artifacts

    def test_env_option_selects_environment(self, workdir, paths):
        result = _invoke("deploy", "--env", "staging", "--tags", "tokens", *paths)
        assert result.exit_code == 0, result.output
        store = ArtifactStore(workdir / "deployments.db")
        assert store.list_artifacts("local") == []
        assert {a.unit_id for a in store.list_artifacts("staging")} == {
            "DemoToken", "USDCToken",
        }

    def test_drift_exits_3(self, workdir, paths, monkeypatch):
        (workdir / "revised_plan.py").write_text(textwrap.dedent("""
            from deployplan.plans.lending import build_plan
            from deployplan.plans.lending_contracts import SIMULATED_CONTRACTS


            def revised():
                return build_plan(code_revision="2")
        """))
        monkeypatch.syspath_prepend(str(workdir))

        assert _invoke("deploy", *paths).exit_code == 0
        result = _invoke("deploy", "--plan", "revised_plan:revised", *paths)
        assert result.exit_code == 3
        assert "DriftError" in result.output

    def test_locked_environment_exits_4(self, workdir, paths):
        ArtifactStore(workdir / "deployments.db").acquire_lock("local", "ghost-run")
        result = _invoke("deploy", *paths)
        assert result.exit_code == 4
        assert "ConcurrentRunError" in result.output

    def test_bad_plan_entry_is_usage_error(self, paths):
        result = _invoke("deploy", "--plan", "no-colon-here", *paths)
        assert result.exit_code == 2

    @pytest.mark.parametrize("command", ["deploy", "plan"])
    def test_invalid_plan_exits_2(self, workdir, paths, monkeypatch, command):
        """Errors raised while building the graph are validation failures."""
        (workdir / "dup_plan.py").write_text(textwrap.dedent("""
            from deployplan.core.graph import DeploymentGraph
            from deployplan.models.units import DeploymentUnit, UnitDescription


            def build():
                unit = DeploymentUnit(
                    id="Oracle",
                    describe=lambda ctx: UnitDescription(contract="Storage", code="Storage@1"),
                )
                return DeploymentGraph([unit, unit])
        """))
        monkeypatch.syspath_prepend(str(workdir))

        result = _invoke(command, "--plan", "dup_plan:build", *paths)
        assert result.exit_code == 2
        assert "DuplicateIdError" in result.output

    def test_chain_id_mismatch_exits_2(self, workdir, paths, monkeypatch):
        assert _invoke("deploy", *paths).exit_code == 0
        monkeypatch.setenv("DEPLOYPLAN_CHAIN_ID", "5")

        result = _invoke("deploy", *paths)
        assert result.exit_code == 2
        assert "ChainMismatchError" in result.output


class TestUnlock:
    def test_unlock_clears_stale_lock(self, workdir):
        db = workdir / "deployments.db"
        ArtifactStore(db).acquire_lock("local", "ghost-run")
        result = _invoke("unlock", "local", "--store", str(db))
        assert result.exit_code == 0
        assert "ghost-run" in result.output
        assert ArtifactStore(db).lock_holder("local") is None

    def test_unlock_when_not_locked(self, workdir):
        result = _invoke("unlock", "local", "--store", str(workdir / "deployments.db"))
        assert result.exit_code == 0
        assert "not locked" in result.output


class TestInspection:
    def test_plan_before_deploy_changes_nothing(self, workdir, paths):
        result = _invoke("plan", *paths)
        assert result.exit_code == 0, result.output
        assert ArtifactStore(workdir / "deployments.db").list_artifacts("local") == []

    def test_status_without_store_exits_1(self, workdir):
        result = _invoke("status", "--store", str(workdir / "missing.db"))
        assert result.exit_code == 1

    def test_status_after_deploy(self, workdir, paths):
        _invoke("deploy", *paths)
        result = _invoke("status", "--store", paths[1])
        assert result.exit_code == 0
        assert "Deployments in 'local'" in result.output

    def test_history_shows_latest_run(self, workdir, paths):
        _invoke("deploy", *paths)
        result = _invoke("history", "--store", paths[1])
        assert result.exit_code == 0
        assert "is valid" in result.output

    def test_history_unknown_run_exits_1(self, workdir, paths):
        _invoke("deploy", *paths)
        result = _invoke("history", "--run", "nope", "--store", paths[1])
        assert result.exit_code == 1

    def test_history_detects_tampering(self, workdir, paths):
        _invoke("deploy", *paths)
        db = workdir / "deployments.db"
        run_id = RunJournal(db).get_run_ids("local")[0]
        conn = sqlite3.connect(db)
        conn.execute(
            "UPDATE run_journal SET detail_json = '{}' WHERE run_id = ? AND event = ?",
            (run_id, "run_succeeded"),
        )
        conn.commit()
        conn.close()

        result = _invoke("history", "--store", str(db))
        assert result.exit_code == 4


class TestRuntime:
    def test_engine_chain_uses_configured_chain_id(self, workdir):
        runtime = Runtime(
            Settings(_env_file=None, chain_id=5),
            store_path=workdir / "deployments.db",
            chain_state_path=workdir / "chain.json",
        )
        engine, chain = runtime.engine()
        assert chain.chain_id == 5
        assert engine.environment.chain_id == 5
        assert chain.snapshot_path == workdir / "chain.json"
