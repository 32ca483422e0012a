"""Loads compiled contract interfaces from a Hardhat artifacts directory."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from deployforge.core.errors import ConfigurationError
from deployforge.models.interfaces import ContractInterface

logger = logging.getLogger(__name__)


class ArtifactCatalog:
    """Contract interfaces addressable by name or ``source:Name``.

    A short name that several sources define is ambiguous; callers must use
    the fully qualified name for it.
    """

    def __init__(self, interfaces: Iterable[ContractInterface] = ()) -> None:
        self._by_fq: dict[str, ContractInterface] = {}
        self._by_name: dict[str, list[ContractInterface]] = {}
        for interface in interfaces:
            self.add(interface)

    @classmethod
    def from_directory(cls, artifacts_dir: Path) -> ArtifactCatalog:
        """Scan ``artifacts_dir`` recursively for Hardhat artifact files.

        Debug files (``*.dbg.json``) and files without an ``abi`` are skipped.
        """
        artifacts_dir = Path(artifacts_dir)
        if not artifacts_dir.is_dir():
            raise ConfigurationError(f"Artifacts directory not found: {artifacts_dir}")

        catalog = cls()
        for path in sorted(artifacts_dir.rglob("*.json")):
            if path.name.endswith(".dbg.json"):
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Skipping unreadable artifact %s: %s", path, exc)
                continue
            if not isinstance(data, dict) or "abi" not in data:
                continue
            data.setdefault("contractName", path.stem)
            try:
                catalog.add(ContractInterface.model_validate(data))
            except ValidationError as exc:
                raise ConfigurationError(f"Malformed artifact {path}: {exc}") from exc
        logger.debug("Loaded %d contract artifacts from %s", len(catalog), artifacts_dir)
        return catalog

    def add(self, interface: ContractInterface) -> None:
        self._by_fq[interface.fully_qualified_name] = interface
        self._by_name.setdefault(interface.contract_name, []).append(interface)

    def get(self, name: str) -> ContractInterface:
        """Return the interface for ``name``.

        Raises ``ConfigurationError`` if it is unknown or ambiguous.
        """
        if name in self._by_fq:
            return self._by_fq[name]
        candidates = self._by_name.get(name, [])
        if len(candidates) == 1:
            return candidates[0]
        if not candidates:
            raise ConfigurationError(f"No compiled artifact for contract {name!r}")
        sources = ", ".join(c.fully_qualified_name for c in candidates)
        raise ConfigurationError(
            f"Contract name {name!r} is ambiguous ({sources}); use the fully qualified name"
        )

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        return name in self._by_fq or len(self._by_name.get(name, [])) == 1

    def __len__(self) -> int:
        return len(self._by_fq)

    def names(self) -> list[str]:
        return sorted(self._by_fq)
