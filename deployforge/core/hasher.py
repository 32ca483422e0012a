"""Canonical hashing helpers for journal sealing and resume drift detection."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: sorted keys, compact separators, ASCII."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def compute_input_hash(
    action_id: str,
    kind: str,
    *,
    sender: str | None,
    to: str | None,
    data: bytes,
    value: int = 0,
) -> str:
    """SHA-256 of the fully resolved transaction an action would submit.

    Identical resolved inputs always hash identically, so a resumed run can
    tell whether a completed action was recorded with the same inputs.
    """
    payload = {
        "action_id": action_id,
        "kind": kind,
        "sender": sender,
        "to": to,
        "data": "0x" + data.hex(),
        "value": value,
    }
    return sha256_hex(canonical_json_bytes(payload))


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a journal entry, excluding the entry_hash field itself."""
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
