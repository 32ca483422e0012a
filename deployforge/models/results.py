"""Session results reported by the execution engine."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActionOutcome(BaseModel):
    """What happened to one action during a run."""

    model_config = ConfigDict(frozen=True)

    action_id: str
    module_id: str
    kind: str
    address: str | None = None
    tx_hash: str | None = None
    reused: bool = False  # True when taken from the journal without submission
    drifted: bool = False  # reused, but the journaled inputs differ


class SessionResult(BaseModel):
    """Report of a deployment run that completed every action.

    Failed and cancelled runs are reported by ``ExecutionError`` and
    ``DeploymentCancelled`` instead.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    outcomes: list[ActionOutcome] = []
    network: dict[str, Any] = Field(default_factory=dict)

    @property
    def submitted(self) -> list[str]:
        """Action ids that caused a network submission in this run."""
        return [o.action_id for o in self.outcomes if not o.reused and o.tx_hash]

    @property
    def reused(self) -> list[str]:
        return [o.action_id for o in self.outcomes if o.reused]

    @property
    def completed(self) -> list[str]:
        return [o.action_id for o in self.outcomes]

    def addresses(self) -> dict[str, str]:
        """action id -> resolved address, for actions that produce one."""
        return {o.action_id: o.address for o in self.outcomes if o.address}

    def module_artifacts(self) -> dict[str, dict[str, str]]:
        """module id -> {local artifact id -> address}."""
        result: dict[str, dict[str, str]] = {}
        for outcome in self.outcomes:
            if outcome.address:
                local = outcome.action_id.split("#", 1)[1]
                result.setdefault(outcome.module_id, {})[local] = outcome.address
        return result
