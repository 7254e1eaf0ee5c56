"""Append-only, hash-chained run journal backed by SQLite.

The journal records what each engine run did, event by event, so a halted
run can be diagnosed after the fact.  It is a history, not a source of
truth: resumption decisions are made from the ``ArtifactStore`` alone.

Design:
- Append-only: only ``append()`` writes; no update, no delete.
- Hash-chained per run: each entry includes the SHA-256 of the previous one.
- ``entry_hash`` UNIQUE constraint for tamper detection.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path

from deployplan.core.hasher import canonical_json_bytes, compute_entry_hash
from deployplan.models.report import JournalEntry


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_JOURNAL = """
CREATE TABLE IF NOT EXISTS run_journal (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id             TEXT NOT NULL UNIQUE,
    run_id               TEXT NOT NULL,
    environment          TEXT NOT NULL,
    unit_id              TEXT NOT NULL DEFAULT '',
    event                TEXT NOT NULL,
    detail_json          TEXT NOT NULL DEFAULT '{}',
    timestamp_utc        TEXT NOT NULL,
    previous_entry_hash  TEXT NOT NULL DEFAULT '',
    entry_hash           TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_journal_run ON run_journal(run_id, id);
"""

_CREATE_IDX_ENV = """
CREATE INDEX IF NOT EXISTS idx_journal_env ON run_journal(environment, id);
"""


class JournalIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunJournal:
    """Append-only, hash-chained history of engine runs.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. May be shared with the
        ``ArtifactStore``.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _init_schema(self) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(_CREATE_JOURNAL)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_IDX_ENV)

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: JournalEntry) -> JournalEntry:
        """Seal an entry onto its run's chain and persist it."""
        previous_hash = self._get_latest_hash(entry.run_id)

        entry_dict = entry.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        entry_dict["entry_hash"] = ""
        sealed = entry.model_copy(
            update={
                "previous_entry_hash": previous_hash,
                "entry_hash": compute_entry_hash(entry_dict),
            }
        )

        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO run_journal
                    (entry_id, run_id, environment, unit_id, event, detail_json,
                     timestamp_utc, previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sealed.entry_id,
                    sealed.run_id,
                    sealed.environment,
                    sealed.unit_id,
                    sealed.event.value,
                    canonical_json_bytes(sealed.detail).decode("utf-8"),
                    sealed.timestamp_utc.isoformat()
                    if isinstance(sealed.timestamp_utc, datetime)
                    else sealed.timestamp_utc,
                    sealed.previous_entry_hash,
                    sealed.entry_hash,
                ),
            )
        return sealed

    def _get_latest_hash(self, run_id: str) -> str:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_journal WHERE run_id = ? "
                "ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[JournalEntry]:
        """All entries of a run, chronologically."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM run_journal WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_run_ids(self, environment: str | None = None) -> list[str]:
        """Run ids, most recent first."""
        query = "SELECT run_id, MAX(id) AS last FROM run_journal"
        params: tuple = ()
        if environment is not None:
            query += " WHERE environment = ?"
            params = (environment,)
        query += " GROUP BY run_id ORDER BY last DESC"
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Recompute every entry hash of a run and check the links.

        Returns True if the chain is valid, raises JournalIntegrityError
        otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise JournalIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise JournalIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> JournalEntry:
        (
            _id,
            entry_id,
            run_id,
            environment,
            unit_id,
            event,
            detail_json,
            timestamp_utc,
            previous_entry_hash,
            entry_hash,
        ) = row
        return JournalEntry(
            entry_id=entry_id,
            run_id=run_id,
            environment=environment,
            unit_id=unit_id,
            event=event,
            detail=json.loads(detail_json),
            timestamp_utc=timestamp_utc,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
