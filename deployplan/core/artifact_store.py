"""Append-only artifact store backed by SQLite.

The store is the sole source of truth for what has already happened in an
environment.  It holds:

- ``artifacts``: one row per (environment, unit_id, generation).  The live
  artifact is the highest generation.  Rows are never updated or deleted.
- ``action_records``: one row per (environment, unit_id, generation,
  action_key).
- ``run_locks``: at most one row per environment, held by the run that is
  currently writing to it.

Design:
- Every write runs in a ``BEGIN IMMEDIATE`` transaction and is committed
  before the method returns (WAL journal, ``synchronous=FULL``).
- A second ``put`` for a live key is an ``ArtifactStoreConsistencyError``;
  only an explicit ``supersedes=`` appends a new generation.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from collections.abc import Iterator
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path

from deployplan.core.errors import ArtifactStoreConsistencyError, ConcurrentRunError
from deployplan.core.hasher import canonical_json_bytes
from deployplan.models.artifacts import ActionRecord, Artifact

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_ARTIFACTS = """
CREATE TABLE IF NOT EXISTS artifacts (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    environment       TEXT NOT NULL,
    unit_id           TEXT NOT NULL,
    generation        INTEGER NOT NULL DEFAULT 0,
    address           TEXT NOT NULL,
    args_fingerprint  TEXT NOT NULL,
    code_fingerprint  TEXT NOT NULL,
    contract          TEXT NOT NULL DEFAULT '',
    args_json         TEXT NOT NULL DEFAULT '[]',
    deployer          TEXT NOT NULL DEFAULT '',
    transaction_hash  TEXT NOT NULL DEFAULT '',
    created_at        TEXT NOT NULL,
    UNIQUE (environment, unit_id, generation)
);
"""

_CREATE_ACTIONS = """
CREATE TABLE IF NOT EXISTS action_records (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    environment         TEXT NOT NULL,
    target_unit_id      TEXT NOT NULL,
    artifact_generation INTEGER NOT NULL DEFAULT 0,
    action_key          TEXT NOT NULL,
    applied_at          TEXT NOT NULL,
    result_digest       TEXT,
    UNIQUE (environment, target_unit_id, artifact_generation, action_key)
);
"""

_CREATE_LOCKS = """
CREATE TABLE IF NOT EXISTS run_locks (
    environment  TEXT PRIMARY KEY,
    run_id       TEXT NOT NULL,
    pid          INTEGER NOT NULL,
    acquired_at  TEXT NOT NULL
);
"""

_ARTIFACT_COLUMNS = (
    "unit_id, environment, generation, address, args_fingerprint, "
    "code_fingerprint, contract, args_json, deployer, transaction_hash, created_at"
)


class ArtifactStore:
    """Durable, append-only store of artifacts and action records.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path), isolation_level=None, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=FULL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction, committed on clean exit."""
        with closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(_CREATE_ARTIFACTS)
            conn.execute(_CREATE_ACTIONS)
            conn.execute(_CREATE_LOCKS)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def get(self, environment: str, unit_id: str) -> Artifact | None:
        """Return the live artifact for (environment, unit_id), or None."""
        with closing(self._connect()) as conn:
            return self._latest(conn, environment, unit_id)

    def put(
        self,
        environment: str,
        artifact: Artifact,
        *,
        supersedes: Artifact | None = None,
    ) -> Artifact:
        """Append an artifact and return it as stored.

        Without ``supersedes`` the key must be absent.  With ``supersedes``
        the given artifact must be the live one; the new artifact becomes
        the next generation and the old row is kept.

        Raises
        ------
        ArtifactStoreConsistencyError
            On an existing key, a stale ``supersedes``, or an environment
            mismatch.
        """
        if artifact.environment != environment:
            raise ArtifactStoreConsistencyError(
                f"Artifact for '{artifact.unit_id}' belongs to environment "
                f"'{artifact.environment}', not '{environment}'",
                unit_id=artifact.unit_id,
            )

        with self._transaction() as conn:
            current = self._latest(conn, environment, artifact.unit_id)
            if supersedes is None:
                if current is not None:
                    raise ArtifactStoreConsistencyError(
                        f"Artifact for '{artifact.unit_id}' already exists in "
                        f"'{environment}' at {current.address}",
                        unit_id=artifact.unit_id,
                        details={"existing_address": current.address},
                    )
                generation = 0
            else:
                if current is None or current.generation != supersedes.generation:
                    raise ArtifactStoreConsistencyError(
                        f"Cannot supersede generation {supersedes.generation} of "
                        f"'{artifact.unit_id}': live generation is "
                        f"{None if current is None else current.generation}",
                        unit_id=artifact.unit_id,
                    )
                generation = current.generation + 1

            stored = artifact.model_copy(update={"generation": generation})
            try:
                conn.execute(
                    f"INSERT INTO artifacts ({_ARTIFACT_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        stored.unit_id,
                        environment,
                        stored.generation,
                        stored.address,
                        stored.args_fingerprint,
                        stored.code_fingerprint,
                        stored.contract,
                        canonical_json_bytes(stored.args).decode("utf-8"),
                        stored.deployer,
                        stored.transaction_hash,
                        stored.created_at.isoformat(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ArtifactStoreConsistencyError(
                    f"Duplicate artifact key for '{artifact.unit_id}': {exc}",
                    unit_id=artifact.unit_id,
                ) from exc

        logger.debug(
            "Stored artifact %s/%s generation %d at %s",
            environment, stored.unit_id, stored.generation, stored.address,
        )
        return stored

    def history(self, environment: str, unit_id: str) -> list[Artifact]:
        """All generations of a unit's artifact, oldest first."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"SELECT {_ARTIFACT_COLUMNS} FROM artifacts "
                "WHERE environment = ? AND unit_id = ? ORDER BY generation ASC",
                (environment, unit_id),
            ).fetchall()
        return [self._row_to_artifact(row) for row in rows]

    def list_artifacts(self, environment: str) -> list[Artifact]:
        """Live artifacts of an environment, in insertion order."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"SELECT {_ARTIFACT_COLUMNS} FROM artifacts AS a "
                "WHERE environment = ? AND generation = ("
                "  SELECT MAX(generation) FROM artifacts AS b"
                "  WHERE b.environment = a.environment AND b.unit_id = a.unit_id"
                ") ORDER BY id ASC",
                (environment,),
            ).fetchall()
        return [self._row_to_artifact(row) for row in rows]

    def environments(self) -> list[str]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT DISTINCT environment FROM artifacts ORDER BY environment"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Action records
    # ------------------------------------------------------------------

    def get_action(
        self,
        environment: str,
        unit_id: str,
        action_key: str,
        generation: int = 0,
    ) -> ActionRecord | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT environment, target_unit_id, artifact_generation, action_key, "
                "applied_at, result_digest FROM action_records "
                "WHERE environment = ? AND target_unit_id = ? "
                "AND artifact_generation = ? AND action_key = ?",
                (environment, unit_id, generation, action_key),
            ).fetchone()
        return self._row_to_action(row) if row else None

    def record_action(self, environment: str, record: ActionRecord) -> ActionRecord:
        """Append an action record; an existing key is a consistency error."""
        if record.environment != environment:
            raise ArtifactStoreConsistencyError(
                f"Action record for '{record.target_unit_id}' belongs to "
                f"'{record.environment}', not '{environment}'",
                unit_id=record.target_unit_id,
            )
        with self._transaction() as conn:
            try:
                conn.execute(
                    "INSERT INTO action_records (environment, target_unit_id, "
                    "artifact_generation, action_key, applied_at, result_digest) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        environment,
                        record.target_unit_id,
                        record.artifact_generation,
                        record.action_key,
                        record.applied_at.isoformat(),
                        record.result_digest,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ArtifactStoreConsistencyError(
                    f"Action '{record.action_key}' of '{record.target_unit_id}' "
                    f"is already recorded in '{environment}'",
                    unit_id=record.target_unit_id,
                    details={"action_key": record.action_key},
                ) from exc
        return record

    def list_actions(
        self, environment: str, unit_id: str | None = None
    ) -> list[ActionRecord]:
        query = (
            "SELECT environment, target_unit_id, artifact_generation, action_key, "
            "applied_at, result_digest FROM action_records WHERE environment = ?"
        )
        params: tuple = (environment,)
        if unit_id is not None:
            query += " AND target_unit_id = ?"
            params = (environment, unit_id)
        with closing(self._connect()) as conn:
            rows = conn.execute(query + " ORDER BY id ASC", params).fetchall()
        return [self._row_to_action(row) for row in rows]

    # ------------------------------------------------------------------
    # Single-writer lock
    # ------------------------------------------------------------------

    def acquire_lock(self, environment: str, run_id: str) -> None:
        """Take the write lock for an environment.

        Raises
        ------
        ConcurrentRunError
            If another run holds the lock.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT run_id, pid, acquired_at FROM run_locks WHERE environment = ?",
                (environment,),
            ).fetchone()
            if row is not None and row["run_id"] != run_id:
                raise ConcurrentRunError(
                    f"Environment '{environment}' is locked by run {row['run_id']} "
                    f"(pid {row['pid']}, since {row['acquired_at']})",
                    details={"holder": row["run_id"], "pid": row["pid"]},
                )
            if row is None:
                conn.execute(
                    "INSERT INTO run_locks (environment, run_id, pid, acquired_at) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        environment,
                        run_id,
                        os.getpid(),
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )

    def release_lock(self, environment: str, run_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM run_locks WHERE environment = ? AND run_id = ?",
                (environment, run_id),
            )

    def lock_holder(self, environment: str) -> str | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT run_id FROM run_locks WHERE environment = ?", (environment,)
            ).fetchone()
        return row[0] if row else None

    def break_lock(self, environment: str) -> str | None:
        """Remove a stale lock left by a killed process. Returns the old holder."""
        holder = self.lock_holder(environment)
        if holder is not None:
            with self._transaction() as conn:
                conn.execute(
                    "DELETE FROM run_locks WHERE environment = ?", (environment,)
                )
            logger.warning(
                "Broke run lock on '%s' held by run %s.", environment, holder
            )
        return holder

    @contextmanager
    def locked(self, environment: str, run_id: str) -> Iterator[None]:
        """Hold the environment's write lock for the duration of a block."""
        self.acquire_lock(environment, run_id)
        try:
            yield
        finally:
            self.release_lock(environment, run_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _latest(
        self, conn: sqlite3.Connection, environment: str, unit_id: str
    ) -> Artifact | None:
        row = conn.execute(
            f"SELECT {_ARTIFACT_COLUMNS} FROM artifacts "
            "WHERE environment = ? AND unit_id = ? "
            "ORDER BY generation DESC LIMIT 1",
            (environment, unit_id),
        ).fetchone()
        return self._row_to_artifact(row) if row else None

    @staticmethod
    def _row_to_artifact(row: sqlite3.Row) -> Artifact:
        return Artifact(
            unit_id=row["unit_id"],
            environment=row["environment"],
            generation=row["generation"],
            address=row["address"],
            args_fingerprint=row["args_fingerprint"],
            code_fingerprint=row["code_fingerprint"],
            contract=row["contract"],
            args=json.loads(row["args_json"]),
            deployer=row["deployer"],
            transaction_hash=row["transaction_hash"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> ActionRecord:
        return ActionRecord(
            environment=row["environment"],
            target_unit_id=row["target_unit_id"],
            artifact_generation=row["artifact_generation"],
            action_key=row["action_key"],
            applied_at=row["applied_at"],
            result_digest=row["result_digest"],
        )
