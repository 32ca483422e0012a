"""Compiled contract interface: ABI, creation bytecode and link references."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LinkOffset(BaseModel):
    """Byte offset of a library placeholder inside creation bytecode."""

    model_config = ConfigDict(frozen=True)

    start: int
    length: int = 20


class ContractInterface(BaseModel):
    """A compiled contract as described by a Hardhat artifact file.

    ``link_references`` maps source file -> library name -> placeholder
    offsets, matching Hardhat's ``linkReferences``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    contract_name: str = Field(alias="contractName")
    source_name: str = Field(default="", alias="sourceName")
    abi: list[dict[str, Any]] = []
    bytecode: str = "0x"
    link_references: dict[str, dict[str, list[LinkOffset]]] = Field(
        default_factory=dict, alias="linkReferences"
    )

    @field_validator("bytecode")
    @classmethod
    def _prefixed(cls, value: str) -> str:
        value = value or "0x"
        return value if value.startswith("0x") else "0x" + value

    @property
    def is_deployable(self) -> bool:
        return len(self.bytecode) > 2

    @property
    def fully_qualified_name(self) -> str:
        if self.source_name:
            return f"{self.source_name}:{self.contract_name}"
        return self.contract_name

    def required_libraries(self) -> list[str]:
        """Fully qualified names (``file:Library``) of libraries to link."""
        return [
            f"{source}:{library}"
            for source, libraries in self.link_references.items()
            for library in libraries
        ]

    def functions(self, name: str) -> list[dict[str, Any]]:
        return [
            entry
            for entry in self.abi
            if entry.get("type") == "function" and entry.get("name") == name
        ]

    def constructor(self) -> dict[str, Any] | None:
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return entry
        return None
