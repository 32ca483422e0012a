"""Deterministic topological ordering of an action graph.

Every action is placed after all actions it depends on. Ties are broken by
module expansion order, then by the action's index within its module, so
the same module definitions always produce the same order. The journal
relies on this to correlate a resumed run with earlier records.
"""

from __future__ import annotations

import heapq
import logging

from deployforge.core.errors import CyclicDependencyError
from deployforge.models.graph import ActionGraph, ActionNode

logger = logging.getLogger(__name__)


class TopologicalScheduler:
    """Linearizes an ``ActionGraph`` (Kahn's algorithm with a priority queue)."""

    def schedule(self, graph: ActionGraph) -> list[ActionNode]:
        """Return the actions of ``graph`` in execution order.

        Raises ``CyclicDependencyError`` naming the modules and actions on a
        cycle if the graph is not acyclic.
        """
        nodes = graph.nodes
        in_degree = {aid: len(set(n.dependencies)) for aid, n in nodes.items()}
        dependents: dict[str, list[str]] = {aid: [] for aid in nodes}
        for node in nodes.values():
            for dependency in set(node.dependencies):
                dependents[dependency].append(node.action_id)

        ready = [(nodes[aid].sort_key, aid) for aid, deg in in_degree.items() if deg == 0]
        heapq.heapify(ready)
        ordered: list[ActionNode] = []

        while ready:
            _, action_id = heapq.heappop(ready)
            ordered.append(nodes[action_id])
            for dependent in dependents[action_id]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, (nodes[dependent].sort_key, dependent))

        if len(ordered) != len(nodes):
            remaining = {aid for aid, deg in in_degree.items() if deg > 0}
            cycle = self._find_cycle(graph, remaining)
            module_ids: list[str] = []
            for aid in cycle:
                if nodes[aid].module_id not in module_ids:
                    module_ids.append(nodes[aid].module_id)
            raise CyclicDependencyError(module_ids, cycle)

        logger.debug("Scheduled %d actions", len(ordered))
        return ordered

    @staticmethod
    def _find_cycle(graph: ActionGraph, candidates: set[str]) -> list[str]:
        """Return the action ids of one cycle among ``candidates``."""
        visiting: list[str] = []
        done: set[str] = set()

        def visit(action_id: str) -> list[str] | None:
            if action_id in visiting:
                return visiting[visiting.index(action_id):]
            if action_id in done:
                return None
            visiting.append(action_id)
            for dependency in graph.nodes[action_id].dependencies:
                if dependency in candidates:
                    found = visit(dependency)
                    if found:
                        return found
            visiting.pop()
            done.add(action_id)
            return None

        for action_id in sorted(candidates, key=lambda a: graph.nodes[a].sort_key):
            found = visit(action_id)
            if found:
                return found
        return sorted(candidates)
