"""Module definitions, the fluent module builder, and deployment inputs."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from deployforge.models.actions import (
    Action,
    Call,
    DeployContract,
    DeployLibrary,
    ReferenceExisting,
)
from deployforge.models.artifacts import (
    AccountRef,
    AddressSource,
    EncodedCall,
    ExternalAddress,
    UnresolvedArtifact,
)

ACTION_ID_SEPARATOR = "#"


def make_action_id(module_id: str, action: Any, index: int) -> str:
    """Action id: ``module#explicit_id`` or ``module#index``."""
    local = action.id if action.id is not None else str(index)
    return f"{module_id}{ACTION_ID_SEPARATOR}{local}"


class ModuleDefinition(BaseModel):
    """A named, reusable unit of deployment logic.

    ``depends_on`` lists other module ids. A module is expanded at most once
    per build, however many modules depend on it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    actions: tuple[Action, ...] = ()
    depends_on: tuple[str, ...] = ()

    @field_validator("id")
    @classmethod
    def _valid_id(cls, value: str) -> str:
        if not value or ACTION_ID_SEPARATOR in value:
            raise ValueError(f"Invalid module id {value!r}")
        return value

    def action_ids(self) -> list[str]:
        return [make_action_id(self.id, a, i) for i, a in enumerate(self.actions)]

    def outputs(self) -> dict[str, UnresolvedArtifact]:
        """Artifacts this module produces, keyed by local action id."""
        result: dict[str, UnresolvedArtifact] = {}
        for action_id, action in zip(self.action_ids(), self.actions):
            if action.produces_address:
                local = action_id.split(ACTION_ID_SEPARATOR, 1)[1]
                result[local] = UnresolvedArtifact(action_id=action_id)
        return result


class ModuleOutputs(Mapping[str, UnresolvedArtifact]):
    """Read-only view of another module's artifacts, returned by ``use()``."""

    def __init__(self, module_id: str, known: dict[str, UnresolvedArtifact] | None = None) -> None:
        self._module_id = module_id
        self._known = known

    def __getitem__(self, local_id: str) -> UnresolvedArtifact:
        if self._known is not None:
            return self._known[local_id]
        return UnresolvedArtifact(action_id=f"{self._module_id}{ACTION_ID_SEPARATOR}{local_id}")

    def __getattr__(self, local_id: str) -> UnresolvedArtifact:
        if local_id.startswith("_"):
            raise AttributeError(local_id)
        try:
            return self[local_id]
        except KeyError:
            raise AttributeError(local_id) from None

    def __iter__(self):
        return iter(self._known or {})

    def __len__(self) -> int:
        return len(self._known or {})


class ModuleBuilder:
    """Fluent construction of a ``ModuleDefinition``.

    Deploy and reference actions default their local id to the contract
    name; calls default to ``<target>.<function>``. A second action with the
    same default id must be given an explicit ``id``.

    Example::

        m = ModuleBuilder("VaultModule")
        crypto = m.library("Crypto")
        vault = m.contract("Vault", libraries={"Crypto": crypto})
        definition = m.build()
    """

    def __init__(self, module_id: str) -> None:
        self.module_id = module_id
        self._actions: list[Any] = []
        self._depends_on: list[str] = []
        self._local_ids: set[str] = set()

    # ------------------------------------------------------------------
    # Deferred values
    # ------------------------------------------------------------------

    def account(self, index: int = 0) -> AccountRef:
        return AccountRef(index=index)

    def external(self, key: str) -> ExternalAddress:
        return ExternalAddress(key=key)

    def encode_call(
        self,
        target: AddressSource,
        function: str,
        args: Iterable[Any] = (),
        *,
        contract_name: str | None = None,
    ) -> EncodedCall:
        return EncodedCall(
            target=target, function=function, args=tuple(args), contract_name=contract_name
        )

    def use(self, module: ModuleDefinition | str) -> ModuleOutputs:
        """Depend on another module and return a view of its artifacts."""
        if isinstance(module, ModuleDefinition):
            module_id, known = module.id, module.outputs()
        else:
            module_id, known = module, None
        if module_id not in self._depends_on:
            self._depends_on.append(module_id)
        return ModuleOutputs(module_id, known)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def contract(
        self,
        contract_name: str,
        args: Iterable[Any] = (),
        *,
        libraries: dict[str, AddressSource] | None = None,
        sender: int | AccountRef = 0,
        value: int = 0,
        id: str | None = None,
        after: Iterable[str] = (),
    ) -> UnresolvedArtifact:
        action = DeployContract(
            id=self._free_id(id or contract_name),
            contract_name=contract_name,
            args=tuple(args),
            libraries=libraries or {},
            sender=sender,
            value=value,
            after=tuple(after),
        )
        return self._add(action)

    def library(
        self,
        library_name: str,
        *,
        libraries: dict[str, AddressSource] | None = None,
        sender: int | AccountRef = 0,
        id: str | None = None,
    ) -> UnresolvedArtifact:
        action = DeployLibrary(
            id=self._free_id(id or library_name),
            library_name=library_name,
            libraries=libraries or {},
            sender=sender,
        )
        return self._add(action)

    def contract_at(
        self,
        contract_name: str,
        address: AddressSource,
        *,
        id: str | None = None,
    ) -> UnresolvedArtifact:
        action = ReferenceExisting(
            id=self._free_id(id or contract_name),
            contract_name=contract_name,
            address=address,
        )
        return self._add(action)

    def call(
        self,
        target: AddressSource,
        function: str,
        args: Iterable[Any] = (),
        *,
        sender: int | AccountRef = 0,
        value: int = 0,
        contract_name: str | None = None,
        id: str | None = None,
        after: Iterable[str] = (),
    ) -> str:
        """Add a call and return its action id (usable in ``after``)."""
        if isinstance(target, UnresolvedArtifact):
            target_name = target.action_id.split(ACTION_ID_SEPARATOR, 1)[-1]
        else:
            target_name = target.key
        action = Call(
            id=self._free_id(id or f"{target_name}.{function}"),
            target=target,
            function=function,
            args=tuple(args),
            sender=sender,
            value=value,
            contract_name=contract_name,
            after=tuple(after),
        )
        self._record(action)
        return f"{self.module_id}{ACTION_ID_SEPARATOR}{action.id}"

    def build(self) -> ModuleDefinition:
        return ModuleDefinition(
            id=self.module_id,
            actions=tuple(self._actions),
            depends_on=tuple(self._depends_on),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _free_id(self, local_id: str) -> str:
        if local_id in self._local_ids:
            raise ValueError(
                f"Module {self.module_id} already has an action {local_id!r}; "
                f"pass an explicit id"
            )
        return local_id

    def _record(self, action: Any) -> None:
        # The id is taken only once the action has validated.
        self._local_ids.add(action.id)
        self._actions.append(action)

    def _add(self, action: Any) -> UnresolvedArtifact:
        self._record(action)
        return UnresolvedArtifact(
            action_id=f"{self.module_id}{ACTION_ID_SEPARATOR}{action.id}"
        )


class DeploymentDescription(BaseModel):
    """The declarative input: module definitions plus the roots to deploy.

    When ``roots`` is empty every module is a root.
    """

    model_config = ConfigDict(frozen=True)

    modules: tuple[ModuleDefinition, ...]
    roots: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _unique_module_ids(self) -> DeploymentDescription:
        seen: set[str] = set()
        for module in self.modules:
            if module.id in seen:
                raise ValueError(f"Module {module.id!r} is defined twice")
            seen.add(module.id)
        return self

    @property
    def root_ids(self) -> list[str]:
        return list(self.roots) if self.roots else [m.id for m in self.modules]

    def registry(self) -> dict[str, ModuleDefinition]:
        return {m.id: m for m in self.modules}


class DeploymentInputs(BaseModel):
    """The single explicit set of external addresses a deployment reads."""

    model_config = ConfigDict(frozen=True)

    external_addresses: dict[str, str] = {}

    @field_validator("external_addresses")
    @classmethod
    def _checksum_all(cls, value: dict[str, str]) -> dict[str, str]:
        result = {}
        for key, address in value.items():
            if not is_address(address):
                raise ValueError(f"External address {key!r} is not an address: {address!r}")
            result[key] = to_checksum_address(address)
        return result
