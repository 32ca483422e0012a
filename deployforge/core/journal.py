"""Append-only, hash-chained deployment journal backed by SQLite.

The journal is the single source of truth for which actions of a session
already produced an artifact. Records are never updated or deleted: each
``put`` appends a new row and the most recent row for a
``(session_id, action_id)`` key is its current state.

Design:
- Append-only: writes go through ``put()``; no update, no delete.
- Hash-chained per session: each row seals the hash of the previous row.
- WAL journal mode for concurrent readers.
- A completed record is final; a later write for the same key raises
  ``JournalConflictError``.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from deployforge.core.errors import JournalConflictError, JournalIntegrityError
from deployforge.core.hasher import compute_entry_hash
from deployforge.models.journal import ActionStatus, DeploymentRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_JOURNAL = """
CREATE TABLE IF NOT EXISTS deployment_journal (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    session_id            TEXT NOT NULL,
    action_id             TEXT NOT NULL,
    status                TEXT NOT NULL,
    resolved_address      TEXT,
    tx_hash               TEXT,
    error_detail          TEXT,
    input_hash            TEXT NOT NULL DEFAULT '',
    timestamp_utc         TEXT NOT NULL,
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_SESSION = """
CREATE INDEX IF NOT EXISTS idx_session ON deployment_journal(session_id, id);
"""

_CREATE_IDX_SESSION_ACTION = """
CREATE INDEX IF NOT EXISTS idx_session_action
    ON deployment_journal(session_id, action_id, id);
"""

_COLUMNS = (
    "entry_id, session_id, action_id, status, resolved_address, tx_hash, "
    "error_detail, input_hash, timestamp_utc, previous_entry_hash, entry_hash"
)


class StateJournal:
    """Durable record of per-action deployment outcomes.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=FULL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_JOURNAL)
            conn.execute(_CREATE_IDX_SESSION)
            conn.execute(_CREATE_IDX_SESSION_ACTION)
            conn.commit()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def put(self, record: DeploymentRecord) -> DeploymentRecord:
        """Append ``record`` as the new state of its key.

        Returns the sealed record with ``previous_entry_hash`` and
        ``entry_hash`` set. The write is committed before returning.

        Raises ``JournalConflictError`` if the key already has a completed
        record.
        """
        with self._lock, self._connect() as conn:
            current = conn.execute(
                f"SELECT {_COLUMNS} FROM deployment_journal "
                "WHERE session_id = ? AND action_id = ? ORDER BY id DESC LIMIT 1",
                (record.session_id, record.action_id),
            ).fetchone()
            if current is not None and current[3] == ActionStatus.COMPLETED.value:
                raise JournalConflictError(
                    f"Action {record.action_id} in session {record.session_id} "
                    f"is already completed at {current[4]}"
                )

            row = conn.execute(
                "SELECT entry_hash FROM deployment_journal "
                "WHERE session_id = ? ORDER BY id DESC LIMIT 1",
                (record.session_id,),
            ).fetchone()
            previous_hash = row[0] if row else ""

            entry_dict = record.model_dump(mode="json")
            entry_dict["previous_entry_hash"] = previous_hash
            entry_dict["entry_hash"] = ""
            sealed = record.model_copy(
                update={
                    "previous_entry_hash": previous_hash,
                    "entry_hash": compute_entry_hash(entry_dict),
                }
            )

            conn.execute(
                f"INSERT INTO deployment_journal ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    sealed.entry_id,
                    sealed.session_id,
                    sealed.action_id,
                    sealed.status.value,
                    sealed.resolved_address,
                    sealed.tx_hash,
                    sealed.error_detail,
                    sealed.input_hash,
                    entry_dict["timestamp_utc"],
                    sealed.previous_entry_hash,
                    sealed.entry_hash,
                ),
            )
            conn.commit()

        logger.debug(
            "Journal %s %s -> %s", sealed.session_id, sealed.action_id, sealed.status.value
        )
        return sealed

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get(self, session_id: str, action_id: str) -> DeploymentRecord | None:
        """Return the current record for an action, or None."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM deployment_journal "
                "WHERE session_id = ? AND action_id = ? ORDER BY id DESC LIMIT 1",
                (session_id, action_id),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_completed(self, session_id: str) -> dict[str, DeploymentRecord]:
        """Completed records of a session keyed by action id, in completion order."""
        completed: dict[str, DeploymentRecord] = {}
        for record in self.get_session_records(session_id):
            if record.is_completed:
                completed[record.action_id] = record
        return completed

    def current_states(self, session_id: str) -> dict[str, DeploymentRecord]:
        """Most recent record per action id for a session."""
        states: dict[str, DeploymentRecord] = {}
        for record in self.get_session_records(session_id):
            states[record.action_id] = record
        return states

    def get_session_records(self, session_id: str) -> list[DeploymentRecord]:
        """Return every row for a session, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM deployment_journal "
                "WHERE session_id = ? ORDER BY id ASC",
                (session_id,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_all_session_ids(self) -> list[str]:
        """Return all session ids, most recently written first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT session_id, MAX(id) AS last_id FROM deployment_journal "
                "GROUP BY session_id ORDER BY last_id DESC"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, session_id: str) -> bool:
        """Verify the hash chain of a session.

        Returns True if the chain is intact, raises ``JournalIntegrityError``
        otherwise.
        """
        prev_hash = ""
        for record in self.get_session_records(session_id):
            if record.previous_entry_hash != prev_hash:
                raise JournalIntegrityError(
                    f"Chain broken at entry {record.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {record.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(record.model_dump(mode="json"))
            if record.entry_hash != expected_hash:
                raise JournalIntegrityError(
                    f"Tampered entry {record.entry_id}: "
                    f"expected hash={expected_hash!r}, got {record.entry_hash!r}"
                )
            prev_hash = record.entry_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_record(row: tuple) -> DeploymentRecord:
        (
            entry_id,
            session_id,
            action_id,
            status,
            resolved_address,
            tx_hash,
            error_detail,
            input_hash,
            timestamp_utc,
            previous_entry_hash,
            entry_hash,
        ) = row
        return DeploymentRecord(
            entry_id=entry_id,
            session_id=session_id,
            action_id=action_id,
            status=ActionStatus(status),
            resolved_address=resolved_address,
            tx_hash=tx_hash,
            error_detail=error_detail,
            input_hash=input_hash,
            timestamp_utc=datetime.fromisoformat(timestamp_utc),
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
