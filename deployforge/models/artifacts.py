"""Artifact references and the other deferred argument values.

An artifact is something that will or does exist on-chain. At build time
it is an ``UnresolvedArtifact`` naming the action that produces it; once
that action completes it becomes a ``ResolvedArtifact`` carrying an address.
Only resolved values may reach the encoder.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, Literal, Union

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class UnresolvedArtifact(BaseModel):
    """Placeholder for the artifact produced by ``action_id``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unresolved"] = "unresolved"
    action_id: str

    def __str__(self) -> str:
        return self.action_id


class ResolvedArtifact(BaseModel):
    """An artifact whose address is known."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["resolved"] = "resolved"
    address: str
    action_id: str | None = None

    @field_validator("address")
    @classmethod
    def _checksum(cls, value: str) -> str:
        if not is_address(value):
            raise ValueError(f"Not an address: {value!r}")
        return to_checksum_address(value)

    def __str__(self) -> str:
        return self.address


ArtifactReference = Union[UnresolvedArtifact, ResolvedArtifact]


class AccountRef(BaseModel):
    """Index into the externally supplied list of signing accounts."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["account"] = "account"
    index: int = 0

    @field_validator("index")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Account index must be >= 0")
        return value


class ExternalAddress(BaseModel):
    """Key into the deployment's external address inputs."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["external"] = "external"
    key: str


class EncodedCall(BaseModel):
    """A function call encoded lazily and passed as a bytes argument.

    Typical use is the initializer data handed to a proxy constructor.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["encode"] = "encode"
    target: UnresolvedArtifact | ExternalAddress
    function: str
    args: tuple[Any, ...] = ()
    contract_name: str | None = None  # interface to encode against; required for external targets

    @field_validator("target", mode="before")
    @classmethod
    def _parse_target(cls, value: Any) -> Any:
        return parse_argument(value)

    @field_validator("args", mode="before")
    @classmethod
    def _parse_args(cls, value: Any) -> Any:
        return tuple(parse_argument(v) for v in value or ())

    @model_validator(mode="after")
    def _interface_known(self) -> EncodedCall:
        if isinstance(self.target, ExternalAddress) and not self.contract_name:
            raise ValueError(
                f"Encoding {self.function} against external address {self.target.key!r} "
                f"needs a contract_name"
            )
        return self


AddressSource = Union[UnresolvedArtifact, ExternalAddress]

_DEFERRED_TYPES = (UnresolvedArtifact, ResolvedArtifact, AccountRef, ExternalAddress, EncodedCall)


# ---------------------------------------------------------------------------
# Marker parsing
# ---------------------------------------------------------------------------


def parse_argument(value: Any) -> Any:
    """Turn JSON argument markers into typed values.

    Recognized single-key markers: ``{"ref": action_id}``,
    ``{"account": index}``, ``{"external": key}`` and
    ``{"encode": {"target": ..., "function": ..., "args": [...]}}``.
    Lists and other dicts are parsed recursively; typed values pass through.
    """
    if isinstance(value, _DEFERRED_TYPES):
        return value
    if isinstance(value, dict):
        if len(value) == 1:
            (marker, payload), = value.items()
            if marker == "ref":
                return UnresolvedArtifact(action_id=str(payload))
            if marker == "account":
                return AccountRef(index=int(payload))
            if marker == "external":
                return ExternalAddress(key=str(payload))
            if marker == "encode":
                return EncodedCall.model_validate(payload)
        return {k: parse_argument(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [parse_argument(v) for v in value]
    return value


def parse_address_source(value: Any) -> AddressSource:
    """Parse a value that must name a graph artifact or an external address."""
    parsed = parse_argument(value)
    if not isinstance(parsed, (UnresolvedArtifact, ExternalAddress)):
        raise ValueError(
            "Expected {'ref': action_id} or {'external': key}; literal addresses "
            "must be supplied through the external address inputs"
        )
    return parsed


def iter_deferred(value: Any) -> Iterator[Any]:
    """Yield every deferred value nested inside ``value``.

    ``EncodedCall`` yields itself, its target, then the deferred values of
    its arguments.
    """
    if isinstance(value, EncodedCall):
        yield value
        yield value.target
        for arg in value.args:
            yield from iter_deferred(arg)
    elif isinstance(value, _DEFERRED_TYPES):
        yield value
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_deferred(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_deferred(v)
