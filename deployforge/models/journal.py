"""Deployment journal record (append-only, hash-chained per session).

The journal is the single source of truth for whether an artifact already
exists. Each record is keyed by (session_id, action_id); the most recent
record for a key is its current state.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ActionStatus(str, Enum):
    """Outcome of an action within a session."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DeploymentRecord(BaseModel):
    """A single journal entry."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    action_id: str
    status: ActionStatus
    resolved_address: str | None = None
    tx_hash: str | None = None
    error_detail: str | None = None
    input_hash: str = ""  # SHA-256 of the canonical action payload
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed by the journal, seals this entry

    @property
    def is_completed(self) -> bool:
        return self.status == ActionStatus.COMPLETED
