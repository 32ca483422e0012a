"""Action specifications: the four kinds of on-chain work a module declares."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from deployforge.models.artifacts import (
    AccountRef,
    AddressSource,
    ExternalAddress,
    UnresolvedArtifact,
    iter_deferred,
    parse_address_source,
    parse_argument,
)


class ActionKind(str, Enum):
    """Discriminator values for action specifications."""

    DEPLOY_CONTRACT = "deploy_contract"
    DEPLOY_LIBRARY = "deploy_library"
    REFERENCE_EXISTING = "reference_existing"
    CALL = "call"


class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None  # explicit local id; defaults to the action index
    after: tuple[str, ...] = ()  # ordering-only dependencies (action ids)

    @field_validator("id")
    @classmethod
    def _valid_id(cls, value: str | None) -> str | None:
        if value is not None and (not value or "#" in value):
            raise ValueError(f"Invalid action id {value!r}")
        return value

    @field_validator("args", mode="before", check_fields=False)
    @classmethod
    def _parse_args(cls, value: Any) -> Any:
        return tuple(parse_argument(v) for v in value or ())

    @field_validator("sender", mode="before", check_fields=False)
    @classmethod
    def _parse_sender(cls, value: Any) -> Any:
        if isinstance(value, int):
            return AccountRef(index=value)
        return parse_argument(value)

    @field_validator("libraries", mode="before", check_fields=False)
    @classmethod
    def _parse_libraries(cls, value: Any) -> Any:
        return {name: parse_address_source(src) for name, src in (value or {}).items()}

    @field_validator("address", "target", mode="before", check_fields=False)
    @classmethod
    def _parse_address(cls, value: Any) -> Any:
        return parse_address_source(value)

    @property
    def produces_address(self) -> bool:
        return True

    def deferred_values(self) -> list[Any]:
        """Return every deferred value this action reads."""
        return []


class DeployContract(_ActionBase):
    """Deploy a contract, optionally linking libraries into its bytecode."""

    kind: Literal["deploy_contract"] = "deploy_contract"
    contract_name: str
    args: tuple[Any, ...] = ()
    libraries: dict[str, AddressSource] = {}
    sender: AccountRef = AccountRef()
    value: int = 0

    def deferred_values(self) -> list[Any]:
        values = list(iter_deferred(self.args))
        values.extend(self.libraries.values())
        values.append(self.sender)
        return values


class DeployLibrary(_ActionBase):
    """Deploy a library. Libraries may link other libraries."""

    kind: Literal["deploy_library"] = "deploy_library"
    library_name: str
    libraries: dict[str, AddressSource] = {}
    sender: AccountRef = AccountRef()

    @property
    def contract_name(self) -> str:
        return self.library_name

    def deferred_values(self) -> list[Any]:
        return [*self.libraries.values(), self.sender]


class ReferenceExisting(_ActionBase):
    """Bind an artifact that already exists without deploying anything.

    ``address`` is either another artifact of this graph (a typed view, e.g.
    the implementation's interface over a proxy) or an external address key.
    """

    kind: Literal["reference_existing"] = "reference_existing"
    contract_name: str
    address: AddressSource

    def deferred_values(self) -> list[Any]:
        return [self.address]


class Call(_ActionBase):
    """Send a transaction calling ``function`` on ``target``."""

    kind: Literal["call"] = "call"
    target: AddressSource
    function: str
    args: tuple[Any, ...] = ()
    sender: AccountRef = AccountRef()
    value: int = 0
    contract_name: str | None = None  # required when target is an external address

    @model_validator(mode="after")
    def _interface_known(self) -> Call:
        if isinstance(self.target, ExternalAddress) and not self.contract_name:
            raise ValueError(
                f"Call {self.function} on external address {self.target.key!r} "
                f"needs a contract_name"
            )
        return self

    @property
    def produces_address(self) -> bool:
        return False

    def deferred_values(self) -> list[Any]:
        return [self.target, *iter_deferred(self.args), self.sender]


Action = Annotated[
    Union[DeployContract, DeployLibrary, ReferenceExisting, Call],
    Field(discriminator="kind"),
]


def referenced_action_ids(action: Any) -> list[str]:
    """Return the ids of actions whose artifacts ``action`` reads, in order."""
    seen: list[str] = []
    for value in action.deferred_values():
        if isinstance(value, UnresolvedArtifact) and value.action_id not in seen:
            seen.append(value.action_id)
    return seen


def external_keys(action: Any) -> list[str]:
    """Return the external address keys ``action`` reads."""
    return [v.key for v in action.deferred_values() if isinstance(v, ExternalAddress)]
