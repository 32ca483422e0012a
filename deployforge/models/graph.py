"""Action graph models produced by the builder and consumed by the scheduler."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from deployforge.models.actions import Action


class ActionNode(BaseModel):
    """An action placed in the graph, with its id and dependency edges."""

    model_config = ConfigDict(frozen=True)

    action_id: str
    module_id: str
    module_ordinal: int  # position of the module in expansion order
    index: int  # position of the action within its module
    action: Action
    dependencies: tuple[str, ...] = ()  # action ids that must complete first

    @property
    def kind(self) -> str:
        return self.action.kind

    @property
    def contract_name(self) -> str | None:
        return getattr(self.action, "contract_name", None)

    @property
    def local_id(self) -> str:
        return self.action_id.split("#", 1)[1]

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.module_ordinal, self.index)


class ExpandedModule(BaseModel):
    """Result of expanding one module: its action ids and produced artifacts."""

    model_config = ConfigDict(frozen=True)

    module_id: str
    ordinal: int
    action_ids: tuple[str, ...] = ()
    outputs: dict[str, str] = {}  # local artifact id -> producing action id


class ActionGraph(BaseModel):
    """Flat action set plus dependency edges. No execution state."""

    model_config = ConfigDict(frozen=True)

    nodes: dict[str, ActionNode]
    modules: dict[str, ExpandedModule]  # in expansion order

    @property
    def module_order(self) -> list[str]:
        return list(self.modules)

    def node(self, action_id: str) -> ActionNode:
        return self.nodes[action_id]

    def dependents(self, action_id: str) -> list[str]:
        """Direct dependents of an action."""
        return [n.action_id for n in self.nodes.values() if action_id in n.dependencies]
