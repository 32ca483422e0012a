"""Call and constructor payload encoding.

Encoding is pure: the same interface, function and resolved arguments
always give the same bytes. Arguments must already be resolved; any
``UnresolvedArtifact`` or other deferred value is rejected with
``TypeError``; values eth-abi cannot encode (an int beyond 256 bits,
say) raise ``ValueError``.
"""

from __future__ import annotations

from typing import Any

from eth_abi import encode as abi_encode
from eth_abi.exceptions import EncodingError
from eth_utils import function_signature_to_4byte_selector, is_address, to_checksum_address

from deployforge.core.errors import ConfigurationError
from deployforge.models.artifacts import (
    AccountRef,
    EncodedCall,
    ExternalAddress,
    ResolvedArtifact,
    UnresolvedArtifact,
)
from deployforge.models.interfaces import ContractInterface

_UNRESOLVED_TYPES = (UnresolvedArtifact, AccountRef, ExternalAddress, EncodedCall)


# ---------------------------------------------------------------------------
# ABI type helpers
# ---------------------------------------------------------------------------


def abi_type_string(inp: dict[str, Any]) -> str:
    """Canonical type string for an ABI input, expanding tuples."""
    t = inp.get("type", "").strip()
    if t.startswith("tuple"):
        inner = ",".join(abi_type_string(c) for c in inp.get("components", []))
        return f"({inner}){t[len('tuple'):]}"
    return t


def function_signature(entry: dict[str, Any]) -> str:
    types = ",".join(abi_type_string(i) for i in entry.get("inputs", []))
    return f"{entry['name']}({types})"


def cast_single(arg: Any, abi_type: str) -> Any:
    """Cast a resolved Python value to what eth-abi expects for ``abi_type``."""
    if isinstance(arg, _UNRESOLVED_TYPES):
        raise TypeError(
            f"Cannot encode unresolved value {arg!r}; resolve it before encoding"
        )
    if isinstance(arg, ResolvedArtifact):
        arg = arg.address

    t = abi_type.strip()
    if t == "bool":
        if isinstance(arg, str):
            return arg.lower() in ("true", "1", "yes")
        return bool(arg)
    if t.startswith("uint") or t.startswith("int"):
        if isinstance(arg, str) and arg.startswith("0x"):
            return int(arg, 16)
        return int(arg)
    if t == "address":
        if not is_address(arg):
            raise ValueError(f"Not an address: {arg!r}")
        return to_checksum_address(arg)
    if t == "string":
        return str(arg)
    if t.startswith("bytes"):
        if isinstance(arg, (bytes, bytearray)):
            return bytes(arg)
        s = str(arg)
        if s.startswith("0x"):
            return bytes.fromhex(s[2:])
        return s.encode("utf-8")
    return arg


def cast_args(args: list[Any] | tuple[Any, ...], abi_inputs: list[dict[str, Any]]) -> list[Any]:
    """Recursively cast arguments to match ABI input definitions."""
    if len(args) != len(abi_inputs):
        raise ValueError(
            f"Argument count mismatch: got {len(args)}, expected {len(abi_inputs)}"
        )
    return [_cast_value(arg, inp) for arg, inp in zip(args, abi_inputs)]


def _encode_values(types: list[str], values: list[Any], context: str) -> bytes:
    """ABI-encode ``values``; eth-abi rejections surface as ``ValueError``."""
    try:
        return abi_encode(types, values)
    except EncodingError as exc:
        raise ValueError(f"Cannot encode arguments of {context}: {exc}") from exc


def _cast_value(arg: Any, inp: dict[str, Any]) -> Any:
    t = inp.get("type", "").strip()
    components = inp.get("components")

    # Arrays: "uint256[]", "address[3]", "tuple[]"
    if t.endswith("]"):
        element_inp = {"type": t[: t.rindex("[")]}
        if components:
            element_inp["components"] = components
        if not isinstance(arg, (list, tuple)):
            raise TypeError(f"Expected list for {t}, got {type(arg).__name__}")
        return [_cast_value(a, element_inp) for a in arg]

    if t == "tuple":
        components = components or []
        if isinstance(arg, dict):
            arg = [arg[c["name"]] for c in components]
        if not isinstance(arg, (list, tuple)):
            raise TypeError(f"Expected list or dict for tuple, got {type(arg).__name__}")
        return tuple(cast_args(list(arg), components))

    return cast_single(arg, t)


# ---------------------------------------------------------------------------
# Encoder
# ---------------------------------------------------------------------------


class CallEncoder:
    """Encodes function calls and contract creation payloads."""

    def encode(
        self,
        interface: ContractInterface,
        function_name: str,
        args: list[Any] | tuple[Any, ...] = (),
    ) -> bytes:
        """Return ``selector + abi.encode(args)`` for ``function_name``.

        ``function_name`` may be a bare name or a full signature such as
        ``initialize(address,uint256)`` to pick one overload.
        """
        entry = self._select_function(interface, function_name, len(args))
        inputs = entry.get("inputs", [])
        types = [abi_type_string(i) for i in inputs]
        selector = function_signature_to_4byte_selector(function_signature(entry))
        values = cast_args(list(args), inputs)
        return selector + _encode_values(types, values, function_signature(entry))

    def encode_constructor(
        self,
        interface: ContractInterface,
        args: list[Any] | tuple[Any, ...] = (),
        libraries: dict[str, str] | None = None,
    ) -> bytes:
        """Return linked creation bytecode followed by encoded constructor args."""
        if not interface.is_deployable:
            raise ConfigurationError(
                f"{interface.contract_name} has no creation bytecode "
                f"(abstract contract or interface?)"
            )
        bytecode = self.link_bytecode(interface, libraries or {})
        constructor = interface.constructor()
        inputs = constructor.get("inputs", []) if constructor else []
        encoded_args = b""
        if inputs or args:
            types = [abi_type_string(i) for i in inputs]
            values = cast_args(list(args), inputs)
            encoded_args = _encode_values(
                types, values, f"{interface.contract_name} constructor"
            )
        return bytes.fromhex(bytecode[2:]) + encoded_args

    @staticmethod
    def link_bytecode(interface: ContractInterface, libraries: dict[str, str]) -> str:
        """Substitute library addresses into placeholder offsets.

        ``libraries`` is keyed by library name or ``source:Library``.
        """
        required = interface.required_libraries()
        short_names = {fq.split(":", 1)[1]: fq for fq in required}
        by_fq: dict[str, str] = {}
        for key, address in libraries.items():
            fq = key if key in required else short_names.get(key)
            if fq is None:
                raise ConfigurationError(
                    f"{interface.contract_name} does not link a library named {key!r}"
                )
            if isinstance(address, _UNRESOLVED_TYPES):
                raise TypeError(f"Cannot link unresolved library {key!r}")
            if isinstance(address, ResolvedArtifact):
                address = address.address
            by_fq[fq] = address

        missing = [fq for fq in required if fq not in by_fq]
        if missing:
            raise ConfigurationError(
                f"{interface.contract_name} requires libraries that were not provided: "
                f"{', '.join(missing)}"
            )

        code = interface.bytecode[2:]
        for source, libs in interface.link_references.items():
            for library, offsets in libs.items():
                address_hex = to_checksum_address(by_fq[f"{source}:{library}"])[2:].lower()
                for offset in offsets:
                    start = offset.start * 2
                    code = code[:start] + address_hex + code[start + offset.length * 2:]
        return "0x" + code

    @staticmethod
    def _select_function(
        interface: ContractInterface, function_name: str, arg_count: int
    ) -> dict[str, Any]:
        if "(" in function_name:
            name = function_name.split("(", 1)[0]
            for entry in interface.functions(name):
                if function_signature(entry) == function_name.replace(" ", ""):
                    return entry
            raise ValueError(f"{interface.contract_name} has no function {function_name}")

        candidates = interface.functions(function_name)
        if not candidates:
            raise ValueError(f"{interface.contract_name} has no function {function_name!r}")
        matching = [c for c in candidates if len(c.get("inputs", [])) == arg_count]
        if len(matching) == 1:
            return matching[0]
        if not matching:
            raise ValueError(
                f"{interface.contract_name}.{function_name} takes "
                f"{[len(c.get('inputs', [])) for c in candidates]} arguments, got {arg_count}"
            )
        signatures = ", ".join(function_signature(c) for c in matching)
        raise ValueError(
            f"{interface.contract_name}.{function_name} is overloaded ({signatures}); "
            f"pass the full signature"
        )
