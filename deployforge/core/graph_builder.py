"""Action graph construction from module definitions.

Expansion is depth-first: a module's dependencies are expanded before the
module itself, each exactly once (see ``ExpansionCache``). Edges come only
from data references and explicit ``after`` lists, never from declaration
position. Nothing is executed here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from deployforge.core.deduplicator import ExpansionCache
from deployforge.core.errors import (
    CyclicDependencyError,
    DuplicateActionError,
    UnknownModuleError,
    UnresolvedReferenceError,
)
from deployforge.models.actions import referenced_action_ids
from deployforge.models.graph import ActionGraph, ActionNode, ExpandedModule
from deployforge.models.modules import ModuleDefinition, make_action_id

logger = logging.getLogger(__name__)


class ActionGraphBuilder:
    """Builds an ``ActionGraph`` from a registry of module definitions.

    Parameters
    ----------
    modules:
        Module definitions keyed by id, or an iterable of definitions.
    """

    def __init__(
        self, modules: Mapping[str, ModuleDefinition] | Iterable[ModuleDefinition]
    ) -> None:
        if isinstance(modules, Mapping):
            self._registry = dict(modules)
        else:
            self._registry = {m.id: m for m in modules}

    def build(
        self,
        roots: str | Iterable[str],
        cache: ExpansionCache | None = None,
    ) -> ActionGraph:
        """Expand ``roots`` and everything they depend on into a graph.

        Raises ``CyclicDependencyError``, ``UnknownModuleError``,
        ``DuplicateActionError`` or ``UnresolvedReferenceError``.
        """
        root_ids = [roots] if isinstance(roots, str) else list(roots)
        cache = cache if cache is not None else ExpansionCache()
        nodes: dict[str, ActionNode] = {}

        for root_id in root_ids:
            self._expand(root_id, [], cache, nodes)

        self._check_references(nodes)
        graph = ActionGraph(nodes=nodes, modules=cache.expanded())
        logger.debug(
            "Built graph: %d modules, %d actions", len(graph.modules), len(nodes)
        )
        return graph

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    def _expand(
        self,
        module_id: str,
        stack: list[str],
        cache: ExpansionCache,
        nodes: dict[str, ActionNode],
    ) -> ExpandedModule:
        if module_id in stack:
            cycle = stack[stack.index(module_id):] + [module_id]
            raise CyclicDependencyError(cycle)
        return cache.expand(
            module_id,
            lambda: self._build_module(module_id, stack + [module_id], cache, nodes),
        )

    def _build_module(
        self,
        module_id: str,
        stack: list[str],
        cache: ExpansionCache,
        nodes: dict[str, ActionNode],
    ) -> ExpandedModule:
        definition = self._registry.get(module_id)
        if definition is None:
            referrer = f" (required by {stack[-2]})" if len(stack) > 1 else ""
            raise UnknownModuleError(f"Module {module_id!r} is not defined{referrer}")

        for dependency_id in definition.depends_on:
            self._expand(dependency_id, stack, cache, nodes)

        # Ordinal is assigned once dependencies are expanded, so dependency
        # modules always sort ahead of their dependents.
        ordinal = len(cache)
        action_ids: list[str] = []
        outputs: dict[str, str] = {}
        for index, action in enumerate(definition.actions):
            action_id = make_action_id(module_id, action, index)
            if action_id in nodes:
                raise DuplicateActionError(f"Action id {action_id!r} is declared twice")
            dependencies = referenced_action_ids(action)
            for extra in action.after:
                if extra not in dependencies:
                    dependencies.append(extra)
            nodes[action_id] = ActionNode(
                action_id=action_id,
                module_id=module_id,
                module_ordinal=ordinal,
                index=index,
                action=action,
                dependencies=tuple(dependencies),
            )
            action_ids.append(action_id)
            if action.produces_address:
                outputs[action_id.split("#", 1)[1]] = action_id

        logger.debug("Expanded module %s (%d actions)", module_id, len(action_ids))
        return ExpandedModule(
            module_id=module_id,
            ordinal=ordinal,
            action_ids=tuple(action_ids),
            outputs=outputs,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_references(nodes: dict[str, ActionNode]) -> None:
        for node in nodes.values():
            data_refs = set(referenced_action_ids(node.action))
            for dependency in node.dependencies:
                producer = nodes.get(dependency)
                if producer is None:
                    raise UnresolvedReferenceError(node.action_id, dependency)
                if dependency == node.action_id:
                    raise CyclicDependencyError([node.module_id], [node.action_id])
                if dependency in data_refs and not producer.action.produces_address:
                    raise UnresolvedReferenceError(
                        node.action_id,
                        dependency,
                        f"a {producer.kind} action produces no address",
                    )
