"""Tests for the ArtifactStore: append-only artifacts, actions and run locks."""

from __future__ import annotations

import pytest

from deployplan.core.artifact_store import ArtifactStore
from deployplan.core.errors import ArtifactStoreConsistencyError, ConcurrentRunError
from deployplan.models.artifacts import ActionRecord, Artifact


def _artifact(unit_id: str = "Oracle", env: str = "test", **overrides) -> Artifact:
    params = {
        "unit_id": unit_id,
        "environment": env,
        "address": "0x" + "ab" * 20,
        "args_fingerprint": "sha256:args",
        "code_fingerprint": "sha256:code",
        "contract": "SimplePriceOracle",
        "args": [10**27, "USD Coin", b"\x01"],
    }
    params.update(overrides)
    return Artifact(**params)


class TestArtifacts:
    def test_get_absent(self, store: ArtifactStore):
        assert store.get("test", "Oracle") is None

    def test_put_then_get(self, store: ArtifactStore):
        stored = store.put("test", _artifact())
        fetched = store.get("test", "Oracle")
        assert fetched is not None
        assert fetched.address == stored.address
        assert fetched.generation == 0
        assert fetched.matches("sha256:args", "sha256:code")
        assert fetched.args == [10**27, "USD Coin", "0x01"]

    def test_second_put_for_same_key_is_fatal(self, store: ArtifactStore):
        store.put("test", _artifact())
        with pytest.raises(ArtifactStoreConsistencyError, match="already exists"):
            store.put("test", _artifact(address="0x" + "cd" * 20))
        assert store.get("test", "Oracle").address == "0x" + "ab" * 20

    def test_environments_are_isolated(self, store: ArtifactStore):
        store.put("test", _artifact())
        store.put("staging", _artifact(env="staging", address="0x" + "ef" * 20))
        assert store.get("test", "Oracle").address != store.get("staging", "Oracle").address
        assert store.environments() == ["staging", "test"]

    def test_environment_mismatch_rejected(self, store: ArtifactStore):
        with pytest.raises(ArtifactStoreConsistencyError):
            store.put("staging", _artifact(env="test"))

    def test_supersede_appends_generation(self, store: ArtifactStore):
        first = store.put("test", _artifact())
        second = store.put(
            "test",
            _artifact(address="0x" + "cd" * 20, args_fingerprint="sha256:new"),
            supersedes=first,
        )
        assert second.generation == 1
        assert store.get("test", "Oracle").generation == 1
        history = store.history("test", "Oracle")
        assert [a.generation for a in history] == [0, 1]
        assert history[0].address == first.address

    def test_stale_supersede_rejected(self, store: ArtifactStore):
        first = store.put("test", _artifact())
        store.put("test", _artifact(address="0x" + "cd" * 20), supersedes=first)
        with pytest.raises(ArtifactStoreConsistencyError, match="supersede"):
            store.put("test", _artifact(address="0x" + "ef" * 20), supersedes=first)

    def test_list_artifacts_returns_live_generation_only(self, store: ArtifactStore):
        first = store.put("test", _artifact())
        store.put("test", _artifact("Lending"))
        store.put("test", _artifact(address="0x" + "cd" * 20), supersedes=first)
        live = {a.unit_id: a.generation for a in store.list_artifacts("test")}
        assert live == {"Oracle": 1, "Lending": 0}

    def test_survives_reopen(self, store: ArtifactStore, db_path):
        store.put("test", _artifact())
        reopened = ArtifactStore(db_path)
        assert reopened.get("test", "Oracle") is not None


class TestActionRecords:
    def _record(self, key: str = "00:set", generation: int = 0) -> ActionRecord:
        return ActionRecord(
            environment="test",
            target_unit_id="Oracle",
            action_key=key,
            artifact_generation=generation,
            result_digest="sha256:abc",
        )

    def test_record_and_get(self, store: ArtifactStore):
        store.record_action("test", self._record())
        found = store.get_action("test", "Oracle", "00:set")
        assert found is not None
        assert found.result_digest == "sha256:abc"

    def test_records_are_scoped_by_generation(self, store: ArtifactStore):
        store.record_action("test", self._record())
        assert store.get_action("test", "Oracle", "00:set", generation=1) is None
        store.record_action("test", self._record(generation=1))
        assert len(store.list_actions("test", "Oracle")) == 2

    def test_duplicate_record_is_fatal(self, store: ArtifactStore):
        store.record_action("test", self._record())
        with pytest.raises(ArtifactStoreConsistencyError):
            store.record_action("test", self._record())

    def test_environment_mismatch_rejected(self, store: ArtifactStore):
        with pytest.raises(ArtifactStoreConsistencyError):
            store.record_action("staging", self._record())


class TestRunLock:
    def test_second_run_is_rejected(self, store: ArtifactStore):
        store.acquire_lock("test", "run-1")
        with pytest.raises(ConcurrentRunError) as exc_info:
            store.acquire_lock("test", "run-2")
        assert exc_info.value.details["holder"] == "run-1"

    def test_reacquire_by_same_run_is_allowed(self, store: ArtifactStore):
        store.acquire_lock("test", "run-1")
        store.acquire_lock("test", "run-1")
        assert store.lock_holder("test") == "run-1"

    def test_locks_are_per_environment(self, store: ArtifactStore):
        store.acquire_lock("test", "run-1")
        store.acquire_lock("staging", "run-2")
        assert store.lock_holder("staging") == "run-2"

    def test_locked_block_releases_on_error(self, store: ArtifactStore):
        with pytest.raises(RuntimeError):
            with store.locked("test", "run-1"):
                raise RuntimeError("boom")
        assert store.lock_holder("test") is None

    def test_break_lock_returns_old_holder(self, store: ArtifactStore):
        store.acquire_lock("test", "run-1")
        assert store.break_lock("test") == "run-1"
        assert store.break_lock("test") is None
        store.acquire_lock("test", "run-2")
