# SPDX-License-Identifier: AGPL-3.0

import json
import re
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from eth_abi import decode, encode

from .exceptions import InterfaceResolutionError
from .utils import ZERO_ADDRESS, decode_hex, normalize_address, selector_of


@dataclass(frozen=True)
class Type:
    var: str


@dataclass(frozen=True)
class BaseType(Type):
    typ: str


@dataclass(frozen=True)
class FixedArrayType(Type):
    base: Type
    size: int


@dataclass(frozen=True)
class DynamicArrayType(Type):
    base: Type


@dataclass(frozen=True)
class TupleType(Type):
    items: list[Type]


# integer aliases allowed in json abi
TYPE_ALIASES = {"uint": "uint256", "int": "int256"}


def parse_type(var: str, typ: str, item: dict) -> Type:
    """Parse ABI type in JSON format"""

    # parse array type
    match = re.search(r"^(.*)(\[([0-9]*)\])$", typ)
    if match:
        base_type = match.group(1)
        array_len = match.group(3)

        # recursively parse base type
        base = parse_type("", base_type, item)

        if array_len == "":  # dynamic array
            return DynamicArrayType(var, base)
        else:
            return FixedArrayType(var, base, int(array_len))

    typ = TYPE_ALIASES.get(typ, typ)

    # check supported type
    match = re.search(r"^(u?int[0-9]*|address|bool|bytes[0-9]*|string|tuple)$", typ)
    if not match:
        # TODO: support fixedMxN, ufixedMxN, function types
        raise NotImplementedError(f"Not supported type: {typ}")

    # parse tuple type
    if typ == "tuple":
        return parse_tuple_type(var, item["components"])

    # parse primitive types
    return BaseType(var, typ)


def parse_tuple_type(var: str, items: list[dict]) -> TupleType:
    parsed_items = [
        parse_type(item.get("name", ""), item["type"], item) for item in items
    ]
    return TupleType(var, parsed_items)


def abi_type_str(typ: Type) -> str:
    """Canonical type string, as used in signatures and by eth_abi"""

    if isinstance(typ, TupleType):
        return "(" + ",".join(abi_type_str(item) for item in typ.items) + ")"
    if isinstance(typ, FixedArrayType):
        return f"{abi_type_str(typ.base)}[{typ.size}]"
    if isinstance(typ, DynamicArrayType):
        return f"{abi_type_str(typ.base)}[]"
    if isinstance(typ, BaseType):
        return typ.typ
    raise ValueError(typ)


def str_abi(item: dict) -> str:
    """
    Construct a function signature string from the given function abi item.
    """

    if item["type"] != "function":
        raise ValueError(item)
    return item["name"] + abi_type_str(parse_tuple_type("", item.get("inputs", [])))


#
# Decoded values
#


@dataclass(frozen=True)
class Struct:
    """
    Decoded tuple value: ordered members, accessible by position or by name.
    """

    names: tuple[str, ...]
    values: tuple

    def __getitem__(self, key):
        if isinstance(key, str):
            try:
                return self.values[self.names.index(key)]
            except ValueError:
                raise KeyError(key) from None
        return self.values[key]

    def __getattr__(self, name):
        names = object.__getattribute__(self, "names")
        if name in names:
            return object.__getattribute__(self, "values")[names.index(name)]
        raise AttributeError(name)

    def __iter__(self):
        return iter(self.values)

    def __len__(self):
        return len(self.values)

    def to_list(self) -> list:
        return [to_plain(v, as_dict=False) for v in self.values]

    def to_dict(self) -> dict:
        return {k: to_plain(v, as_dict=True) for k, v in zip(self.names, self.values)}


def to_plain(value: Any, as_dict: bool = True) -> Any:
    """Recursively convert structs into dicts (or lists)"""

    if isinstance(value, Struct):
        return value.to_dict() if as_dict else value.to_list()
    if isinstance(value, list | tuple):
        return [to_plain(v, as_dict) for v in value]
    return value


def wrap_decoded(typ: Type, value: Any) -> Any:
    if isinstance(typ, TupleType):
        return Struct(
            tuple(item.var for item in typ.items),
            tuple(wrap_decoded(item, v) for item, v in zip(typ.items, value)),
        )
    if isinstance(typ, FixedArrayType | DynamicArrayType):
        return [wrap_decoded(typ.base, v) for v in value]
    return value


def decode_values(typ: TupleType, data: bytes) -> list:
    types = [abi_type_str(item) for item in typ.items]
    decoded = decode(types, data)
    return [wrap_decoded(item, v) for item, v in zip(typ.items, decoded)]


#
# Encoding
#


def prepare_value(typ: Type, value: Any) -> Any:
    """Convert a user supplied value into the shape eth_abi expects"""

    if isinstance(typ, TupleType):
        if isinstance(value, Struct):
            value = value.values
        elif isinstance(value, Mapping):
            missing = [item.var for item in typ.items if item.var not in value]
            if missing:
                raise ValueError(f"missing tuple members: {', '.join(missing)}")
            value = [value[item.var] for item in typ.items]

        if not _is_sequence(value) or len(value) != len(typ.items):
            raise ValueError(f"expected {len(typ.items)} values, got {value!r}")
        return tuple(prepare_value(item, v) for item, v in zip(typ.items, value))

    if isinstance(typ, FixedArrayType | DynamicArrayType):
        if not _is_sequence(value):
            raise ValueError(f"expected a sequence, got {value!r}")
        if isinstance(typ, FixedArrayType) and len(value) != typ.size:
            raise ValueError(f"expected {typ.size} elements, got {len(value)}")
        return [prepare_value(typ.base, v) for v in value]

    base = typ.typ
    if base.startswith("bytes"):
        if isinstance(value, str):
            decoded = decode_hex(value)
            if decoded is None:
                raise ValueError(f"invalid hex string: {value!r}")
            return decoded
        if isinstance(value, bytearray | list):
            return bytes(value)
        return value

    if base == "address":
        if value is None:
            return ZERO_ADDRESS
        return normalize_address(value)

    if re.match(r"^u?int", base) and isinstance(value, str):
        return int(value, 0)

    return value


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, str | bytes)


def encode_values(typ: TupleType, values: Sequence) -> bytes:
    types = [abi_type_str(item) for item in typ.items]
    return encode(types, list(prepare_value(typ, values)))


def zero_value(typ: Type) -> Any:
    if isinstance(typ, TupleType):
        return tuple(zero_value(item) for item in typ.items)
    if isinstance(typ, FixedArrayType):
        return [zero_value(typ.base) for _ in range(typ.size)]
    if isinstance(typ, DynamicArrayType):
        return []

    base = typ.typ
    if base == "bool":
        return False
    if base == "address":
        return ZERO_ADDRESS
    if base == "string":
        return ""
    if base == "bytes":
        return b""
    if base.startswith("bytes"):
        return bytes(int(base[5:]))
    return 0


#
# Revert reasons
#

ERROR_SELECTOR = bytes.fromhex("08c379a0")  # bytes4(keccak256("Error(string)"))


def encode_revert_reason(reason: str | None) -> bytes:
    if not reason:
        return b""
    return ERROR_SELECTOR + encode(["string"], [reason])


def decode_revert_reason(data: bytes) -> str | None:
    if data[:4] != ERROR_SELECTOR:
        return None
    try:
        return decode(["string"], data[4:])[0]
    except Exception:
        return None


#
# Contract interface
#


@dataclass(frozen=True)
class FunctionInfo:
    name: str | None = None
    sig: str | None = None
    selector: str | None = None
    inputs: TupleType = field(default_factory=lambda: TupleType("", []))
    outputs: TupleType = field(default_factory=lambda: TupleType("", []))
    payable: bool = False

    @property
    def is_fallback(self) -> bool:
        return self.selector is None

    @staticmethod
    def from_abi(item: dict) -> "FunctionInfo":
        sig = str_abi(item)
        return FunctionInfo(
            name=item["name"],
            sig=sig,
            selector=selector_of(sig),
            inputs=parse_tuple_type("", item.get("inputs", [])),
            outputs=parse_tuple_type("", item.get("outputs", [])),
            payable=item.get("stateMutability") == "payable",
        )


FALLBACK = FunctionInfo(name="fallback", payable=True)


class ContractInterface:
    """Functions of a contract, indexed by signature, selector and name."""

    def __init__(self, abi: list[dict]):
        self.abi = abi
        self.functions: dict[str, FunctionInfo] = {}
        self.selectors: dict[str, FunctionInfo] = {}
        self.names: dict[str, list[FunctionInfo]] = defaultdict(list)

        for item in abi:
            if item.get("type", "function") != "function":
                continue
            fun_info = FunctionInfo.from_abi(item)
            self.functions[fun_info.sig] = fun_info
            self.selectors[fun_info.selector] = fun_info
            self.names[fun_info.name].append(fun_info)

    def __iter__(self):
        return iter(self.functions.values())

    def __contains__(self, key: str) -> bool:
        try:
            self.get_function(key)
            return True
        except KeyError:
            return False

    def get_function(self, key: str) -> FunctionInfo:
        """Look up a function by selector, full signature or unique name."""

        if key.startswith("0x"):
            return self.selectors[key.lower()]

        if "(" in key:
            return self.functions[key]

        candidates = self.names.get(key, [])
        if len(candidates) != 1:
            raise KeyError(
                f"{key} is overloaded, use the full signature"
                if candidates
                else key
            )
        return candidates[0]

    def encode_function_data(self, fun_info: FunctionInfo, args: Sequence) -> bytes:
        return bytes.fromhex(fun_info.selector[2:]) + encode_values(
            fun_info.inputs, args
        )

    def decode_function_data(self, fun_info: FunctionInfo, data: bytes) -> list:
        return decode_values(fun_info.inputs, data[4:])

    def encode_function_result(
        self, fun_info: FunctionInfo, values: Sequence
    ) -> bytes:
        return encode_values(fun_info.outputs, values)

    def decode_function_result(self, fun_info: FunctionInfo, data: bytes) -> list:
        return decode_values(fun_info.outputs, data)


def interface_from_spec(spec: Any, config=None) -> ContractInterface:
    """
    Turn a user supplied spec into a contract interface.

    Accepts an interface, a raw abi list, a dict carrying `abi` or
    `interface`, a json string (abi list or artifact), or a contract name to
    be looked up in the build output.
    """

    if isinstance(spec, ContractInterface):
        return spec

    if isinstance(spec, str):
        text = spec.strip()
        if text[:1] in ("{", "["):
            try:
                return interface_from_spec(json.loads(text), config)
            except (ValueError, KeyError, TypeError) as err:
                raise InterfaceResolutionError("abi string", [("json", err)]) from err
        return _interface_from_contract_name(text, config)

    if isinstance(spec, Mapping):
        if "abi" in spec:
            return interface_from_spec(spec["abi"], config)
        if "interface" in spec:
            return interface_from_spec(spec["interface"], config)
        raise InterfaceResolutionError(
            "dict", [("keys", KeyError("expected `abi` or `interface`"))]
        )

    if isinstance(spec, list):
        return ContractInterface(spec)

    raise InterfaceResolutionError(
        "spec", [("type", TypeError(f"unsupported spec type: {type(spec)}"))]
    )


def _interface_from_contract_name(name: str, config) -> ContractInterface:
    from .build import load_artifact

    errors = []
    for source in ("forge", "hardhat"):
        try:
            artifact = load_artifact(name, config, sources=(source,))
            return ContractInterface(artifact["abi"])
        except Exception as err:
            errors.append((source, err))

    raise InterfaceResolutionError("contract name", errors)
