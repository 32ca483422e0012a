"""Per-build memoization of module expansion.

A module referenced from several places in one graph is expanded once and
every referencing site receives the same result. The cache lives for a
single build and is passed in explicitly; it is never shared between
builds. Reuse of on-chain results across runs is the journal's concern.
"""

from __future__ import annotations

from collections.abc import Callable

from deployforge.models.graph import ExpandedModule


class ExpansionCache:
    """Mapping of module id to its expanded result for one build pass."""

    def __init__(self) -> None:
        self._expanded: dict[str, ExpandedModule] = {}
        self._hits: dict[str, int] = {}

    def expand(
        self, module_id: str, build: Callable[[], ExpandedModule]
    ) -> ExpandedModule:
        """Return the cached expansion, building and caching it if absent."""
        cached = self._expanded.get(module_id)
        if cached is not None:
            self._hits[module_id] = self._hits.get(module_id, 0) + 1
            return cached
        expanded = build()
        self._expanded[module_id] = expanded
        return expanded

    def __contains__(self, module_id: str) -> bool:
        return module_id in self._expanded

    def __len__(self) -> int:
        return len(self._expanded)

    def hits(self, module_id: str) -> int:
        """How many times a cached expansion was reused."""
        return self._hits.get(module_id, 0)

    def expanded(self) -> dict[str, ExpandedModule]:
        """Expanded modules in the order their expansion finished."""
        return dict(self._expanded)
