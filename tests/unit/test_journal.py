"""Tests for the StateJournal — append-only, hash-chained, resumable."""

from __future__ import annotations

import sqlite3

import pytest

from deployforge.core.errors import JournalConflictError, JournalIntegrityError
from deployforge.core.journal import StateJournal
from deployforge.models.journal import ActionStatus, DeploymentRecord

from conftest import OWNER


def _record(session_id: str, action_id: str, status: ActionStatus, **extra) -> DeploymentRecord:
    return DeploymentRecord(session_id=session_id, action_id=action_id, status=status, **extra)


class TestStateJournal:
    def test_put_seals_entry(self, journal: StateJournal, session_id):
        sealed = journal.put(_record(session_id, "M#Token", ActionStatus.PENDING))
        assert sealed.entry_hash != ""
        assert sealed.previous_entry_hash == ""  # first entry

    def test_hash_chain_links(self, journal: StateJournal, session_id):
        first = journal.put(_record(session_id, "M#Token", ActionStatus.PENDING))
        second = journal.put(
            _record(session_id, "M#Token", ActionStatus.COMPLETED, resolved_address=OWNER)
        )
        assert second.previous_entry_hash == first.entry_hash

    def test_get_returns_latest_state(self, journal: StateJournal, session_id):
        journal.put(_record(session_id, "M#Token", ActionStatus.PENDING))
        journal.put(_record(session_id, "M#Token", ActionStatus.PENDING, tx_hash="0xabc"))
        current = journal.get(session_id, "M#Token")
        assert current is not None
        assert current.tx_hash == "0xabc"
        assert journal.get(session_id, "M#Other") is None

    def test_failed_record_can_be_superseded(self, journal: StateJournal, session_id):
        journal.put(_record(session_id, "M#Token", ActionStatus.FAILED, error_detail="boom"))
        journal.put(
            _record(session_id, "M#Token", ActionStatus.COMPLETED, resolved_address=OWNER)
        )
        assert journal.get(session_id, "M#Token").is_completed

    def test_completed_record_is_final(self, journal: StateJournal, session_id):
        journal.put(
            _record(session_id, "M#Token", ActionStatus.COMPLETED, resolved_address=OWNER)
        )
        with pytest.raises(JournalConflictError, match="already completed"):
            journal.put(_record(session_id, "M#Token", ActionStatus.PENDING))

    def test_list_completed(self, journal: StateJournal, session_id):
        journal.put(_record(session_id, "M#A", ActionStatus.COMPLETED, resolved_address=OWNER))
        journal.put(_record(session_id, "M#B", ActionStatus.PENDING))
        journal.put(_record(session_id, "M#C", ActionStatus.FAILED, error_detail="reverted"))
        assert list(journal.list_completed(session_id)) == ["M#A"]
        assert {k: v.status for k, v in journal.current_states(session_id).items()} == {
            "M#A": ActionStatus.COMPLETED,
            "M#B": ActionStatus.PENDING,
            "M#C": ActionStatus.FAILED,
        }

    def test_sessions_are_isolated(self, journal: StateJournal):
        journal.put(_record("s1", "M#A", ActionStatus.COMPLETED, resolved_address=OWNER))
        assert journal.list_completed("s2") == {}
        # Completed in s1 does not block s2.
        journal.put(_record("s2", "M#A", ActionStatus.COMPLETED, resolved_address=OWNER))
        assert journal.get_session_records("s2")[0].previous_entry_hash == ""

    def test_session_ids_most_recent_first(self, journal: StateJournal):
        journal.put(_record("s1", "M#A", ActionStatus.PENDING))
        journal.put(_record("s2", "M#A", ActionStatus.PENDING))
        journal.put(_record("s1", "M#B", ActionStatus.PENDING))
        assert journal.get_all_session_ids() == ["s1", "s2"]

    def test_verify_chain(self, journal: StateJournal, session_id):
        for action_id in ("M#A", "M#B", "M#C"):
            journal.put(_record(session_id, action_id, ActionStatus.PENDING))
            journal.put(
                _record(session_id, action_id, ActionStatus.COMPLETED, resolved_address=OWNER)
            )
        assert journal.verify_chain(session_id) is True

    def test_tampering_detected(self, journal: StateJournal, session_id):
        journal.put(_record(session_id, "M#A", ActionStatus.PENDING))
        journal.put(_record(session_id, "M#A", ActionStatus.COMPLETED, resolved_address=OWNER))

        conn = sqlite3.connect(str(journal.path))
        conn.execute(
            "UPDATE deployment_journal SET resolved_address = ? WHERE status = 'completed'",
            ("0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC",),
        )
        conn.commit()
        conn.close()

        with pytest.raises(JournalIntegrityError, match="Tampered"):
            journal.verify_chain(session_id)

    def test_survives_reopen(self, tmp_dir, session_id):
        path = tmp_dir / "nested" / "journal.db"
        StateJournal(path).put(
            _record(session_id, "M#A", ActionStatus.COMPLETED, resolved_address=OWNER, tx_hash="0x01")
        )
        reopened = StateJournal(path)
        record = reopened.get(session_id, "M#A")
        assert record.resolved_address == OWNER
        assert record.timestamp_utc.tzinfo is not None
        assert reopened.verify_chain(session_id)
