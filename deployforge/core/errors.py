"""Error taxonomy for graph building, configuration, network and execution.

Propagation rules:
- ``BuildError`` and ``ConfigurationError`` are raised before anything is
  submitted to the network.
- ``TransientNetworkError`` is retried by the engine a bounded number of
  times, then escalated to ``ExecutionError``.
- ``RevertError`` is never retried; it is escalated immediately.
- ``ExecutionError`` aborts the remaining run. Journal state is kept so the
  session can be resumed.
"""

from __future__ import annotations

from typing import Any


class DeployforgeError(Exception):
    """Base class for all deployforge errors."""


# ---------------------------------------------------------------------------
# Build-time errors
# ---------------------------------------------------------------------------


class BuildError(DeployforgeError):
    """Raised when the action graph cannot be constructed."""


class CyclicDependencyError(BuildError):
    """Raised when modules or actions depend on themselves transitively."""

    def __init__(
        self,
        module_ids: list[str],
        action_ids: list[str] | None = None,
    ) -> None:
        self.module_ids = list(module_ids)
        self.action_ids = list(action_ids or [])
        detail = " -> ".join(self.module_ids)
        message = f"Dependency cycle between modules: {detail}"
        if self.action_ids:
            message += f" (actions: {', '.join(self.action_ids)})"
        super().__init__(message)


class UnresolvedReferenceError(BuildError):
    """Raised when an action reads an artifact no included action produces."""

    def __init__(self, action_id: str, reference: str, reason: str = "") -> None:
        self.action_id = action_id
        self.reference = reference
        message = f"Action {action_id} references {reference!r}"
        message += f": {reason}" if reason else ", which no action in the graph produces"
        super().__init__(message)


class UnknownModuleError(BuildError):
    """Raised when a module id is referenced but never defined."""


class DuplicateActionError(BuildError):
    """Raised when two actions in one graph share an id."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(DeployforgeError):
    """Raised when a required external input is missing or malformed."""


# ---------------------------------------------------------------------------
# Network boundary
# ---------------------------------------------------------------------------


class NetworkError(DeployforgeError):
    """Base class for failures reported by the network boundary."""


class TransientNetworkError(NetworkError):
    """Timeouts and temporary RPC unavailability. Safe to retry."""


class RevertError(NetworkError):
    """Deterministic contract-level rejection of a transaction."""

    def __init__(
        self,
        reason: str,
        *,
        tx_hash: str | None = None,
        receipt: dict[str, Any] | None = None,
    ) -> None:
        self.reason = reason
        self.tx_hash = tx_hash
        self.receipt = receipt or {}
        message = f"Transaction reverted: {reason}"
        if tx_hash:
            message += f" (tx {tx_hash})"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ExecutionError(DeployforgeError):
    """Terminal failure of one action. The remaining run is aborted."""

    def __init__(
        self,
        action_id: str,
        detail: str,
        *,
        session_id: str = "",
        completed: list[str] | None = None,
    ) -> None:
        self.action_id = action_id
        self.detail = detail
        self.session_id = session_id
        self.completed = list(completed or [])
        super().__init__(f"Action {action_id} failed: {detail}")


class DeploymentCancelled(DeployforgeError):
    """Raised when a run is cancelled between actions."""

    def __init__(self, session_id: str, completed: list[str]) -> None:
        self.session_id = session_id
        self.completed = list(completed)
        super().__init__(
            f"Session {session_id} cancelled after {len(self.completed)} completed actions"
        )


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------


class JournalError(DeployforgeError):
    """Base class for journal failures."""


class JournalConflictError(JournalError):
    """Raised when a write would overwrite a completed record."""


class JournalIntegrityError(JournalError):
    """Raised when the journal hash chain is broken."""
