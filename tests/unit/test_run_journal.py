"""Tests for the RunJournal: append-only, hash-chained run history."""

from __future__ import annotations

from deployplan.core.run_journal import RunJournal
from deployplan.models.report import JournalEntry, JournalEvent


def _entry(run_id: str = "run-1", event: JournalEvent = JournalEvent.RUN_STARTED, **kw) -> JournalEntry:
    return JournalEntry(run_id=run_id, environment=kw.pop("environment", "test"), event=event, **kw)


class TestRunJournal:
    def test_append_seals_entry(self, journal: RunJournal):
        sealed = journal.append(_entry())
        assert sealed.entry_hash != ""
        assert sealed.previous_entry_hash == ""

    def test_entries_link_per_run(self, journal: RunJournal):
        e1 = journal.append(_entry())
        other = journal.append(_entry("run-2"))
        e2 = journal.append(_entry(event=JournalEvent.UNIT_DEPLOYED, unit_id="Oracle"))
        assert e2.previous_entry_hash == e1.entry_hash
        assert other.previous_entry_hash == ""

    def test_round_trip_preserves_detail(self, journal: RunJournal):
        journal.append(_entry(detail={"order": ["Oracle", "Lending"], "amount": 10**27}))
        [entry] = journal.get_run_entries("run-1")
        assert entry.detail == {"order": ["Oracle", "Lending"], "amount": 10**27}
        assert entry.event is JournalEvent.RUN_STARTED

    def test_verify_chain_valid(self, journal: RunJournal):
        for event in (JournalEvent.RUN_STARTED, JournalEvent.UNIT_DEPLOYED, JournalEvent.RUN_SUCCEEDED):
            journal.append(_entry(event=event))
        assert journal.verify_chain("run-1") is True

    def test_verify_chain_empty_run(self, journal: RunJournal):
        assert journal.verify_chain("nonexistent") is True

    def test_run_ids_most_recent_first(self, journal: RunJournal):
        journal.append(_entry("run-1"))
        journal.append(_entry("run-2"))
        journal.append(_entry("run-3", environment="staging"))
        assert journal.get_run_ids() == ["run-3", "run-2", "run-1"]
        assert journal.get_run_ids("test") == ["run-2", "run-1"]
