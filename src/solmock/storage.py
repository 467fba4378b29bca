# SPDX-License-Identifier: AGPL-3.0

"""
Solidity storage layout codec.

Translates named (possibly nested) state variables into the 32-byte words
they occupy, following the layout emitted by solc with
`outputSelection: storageLayout`.

See https://docs.soliditylang.org/en/latest/internals/layout_in_storage.html
"""

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from eth_utils import to_checksum_address

from .abi import Struct
from .exceptions import StorageDecodingError, StorageEncodingError, StorageLookupError
from .logs import debug_once
from .utils import (
    WORD_SIZE,
    decode_hex,
    from_word,
    normalize_address,
    sha3,
    to_word,
    uint256,
)
from .vm import VMManager

ReadWord = Callable[[int], int]


@dataclass(eq=False)
class TypeDescriptor:
    id: str
    label: str
    encoding: str  # inplace, bytes (aka dynamic_bytes), dynamic_array, mapping
    number_of_bytes: int
    base: "TypeDescriptor | None" = None
    key: "TypeDescriptor | None" = None
    value: "TypeDescriptor | None" = None
    members: list["StorageSlotDescriptor"] | None = None

    def __repr__(self) -> str:
        return f"TypeDescriptor({self.id!r})"

    @property
    def is_mapping(self) -> bool:
        return self.encoding == "mapping"

    @property
    def is_bytes(self) -> bool:
        return self.encoding in ("bytes", "dynamic_bytes")

    @property
    def is_dynamic_array(self) -> bool:
        return self.encoding == "dynamic_array"

    @property
    def is_static_array(self) -> bool:
        return self.encoding == "inplace" and self.base is not None

    @property
    def is_struct(self) -> bool:
        return self.members is not None

    @property
    def is_string(self) -> bool:
        return self.label == "string"

    @property
    def length(self) -> int:
        """Number of elements of a static array"""
        match = re.search(r"\[(\d+)\]$", self.label)
        if match:
            return int(match.group(1))
        return self.number_of_bytes // max(self.base.number_of_bytes, WORD_SIZE)

    @property
    def scalar_kind(self) -> str:
        label = self.label
        if label == "bool":
            return "bool"
        if label.startswith(("address", "contract ")):
            return "address"
        if re.match(r"^int\d*$", label):
            return "int"
        if re.match(r"^bytes\d+$", label):
            return "bytes"
        # uintN, enums and user defined value types
        return "uint"


@dataclass(frozen=True)
class StorageSlotDescriptor:
    label: str
    slot: int
    offset: int
    type: TypeDescriptor


@dataclass(frozen=True)
class SlotWrite:
    slot: int
    offset: int  # in bytes, from the low-order end of the word
    size: int  # in bytes
    value: int

    @property
    def is_full_word(self) -> bool:
        return self.offset == 0 and self.size == WORD_SIZE


@dataclass
class StorageLayout:
    variables: dict[str, StorageSlotDescriptor] = field(default_factory=dict)
    types: dict[str, TypeDescriptor] = field(default_factory=dict)

    def __getitem__(self, label: str) -> StorageSlotDescriptor:
        try:
            return self.variables[label]
        except KeyError:
            raise StorageLookupError(
                f"variable {label} not found in the storage layout"
            ) from None

    def __contains__(self, label: str) -> bool:
        return label in self.variables

    def __iter__(self):
        return iter(self.variables.values())

    @staticmethod
    def from_json(layout: dict) -> "StorageLayout":
        """Parse the `storageLayout` output of solc."""

        raw_types = layout.get("types") or {}

        # first pass: create descriptors, second pass: link them,
        # so that recursive types (e.g. struct Node { mapping(uint => Node) m; }) work
        types = {
            type_id: TypeDescriptor(
                id=type_id,
                label=raw.get("label", type_id),
                encoding=raw["encoding"],
                number_of_bytes=int(raw["numberOfBytes"]),
            )
            for type_id, raw in raw_types.items()
        }

        for type_id, raw in raw_types.items():
            desc = types[type_id]
            if "base" in raw:
                desc.base = types[raw["base"]]
            if "key" in raw:
                desc.key = types[raw["key"]]
            if "value" in raw:
                desc.value = types[raw["value"]]
            if "members" in raw:
                desc.members = [_parse_entry(member, types) for member in raw["members"]]

        variables = {}
        for entry in layout.get("storage", []):
            desc = _parse_entry(entry, types)
            if desc.label in variables:
                # shadowed variables of parent contracts, keep the most derived
                debug_once(f"duplicate storage variable {desc.label}")
            variables[desc.label] = desc

        return StorageLayout(variables, types)


def _parse_entry(entry: dict, types: dict[str, TypeDescriptor]) -> StorageSlotDescriptor:
    return StorageSlotDescriptor(
        label=entry["label"],
        slot=int(entry["slot"]),
        offset=int(entry.get("offset", 0)),
        type=types[entry["type"]],
    )


#
# scalars
#


def _to_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise StorageEncodingError(f"expected an integer for {what}, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            pass
    raise StorageEncodingError(f"expected an integer for {what}, got {value!r}")


def _to_bytes(value: Any, what: str) -> bytes:
    if isinstance(value, bytes | bytearray):
        return bytes(value)
    if isinstance(value, str):
        decoded = decode_hex(value)
        if decoded is not None:
            return decoded
    raise StorageEncodingError(f"expected bytes for {what}, got {value!r}")


def encode_scalar(typ: TypeDescriptor, value: Any) -> int:
    """Encode a value type into its `number_of_bytes`-wide integer form."""

    size = typ.number_of_bytes
    kind = typ.scalar_kind

    if kind == "bool":
        if value not in (True, False):
            raise StorageEncodingError(f"expected a boolean, got {value!r}")
        return int(bool(value))

    if kind == "address":
        try:
            return int(normalize_address(value), 16)
        except ValueError as err:
            raise StorageEncodingError(str(err)) from err

    if kind == "bytes":
        data = _to_bytes(value, typ.label)
        if len(data) > size:
            raise StorageEncodingError(
                f"{typ.label} value too long: {len(data)} bytes"
            )
        return int.from_bytes(data.ljust(size, b"\0"), "big")

    n = _to_int(value, typ.label)
    bits = 8 * size
    if kind == "int":
        if not -(1 << (bits - 1)) <= n < (1 << (bits - 1)):
            raise StorageEncodingError(f"value {n} out of range for {typ.label}")
        return n & ((1 << bits) - 1)

    if not 0 <= n < (1 << bits):
        raise StorageEncodingError(f"value {n} out of range for {typ.label}")
    return n


def decode_scalar(typ: TypeDescriptor, n: int) -> Any:
    size = typ.number_of_bytes
    kind = typ.scalar_kind

    if kind == "bool":
        return n != 0
    if kind == "address":
        return to_checksum_address(n.to_bytes(20, "big"))
    if kind == "bytes":
        return n.to_bytes(size, "big")
    if kind == "int" and n >> (8 * size - 1):
        return n - (1 << (8 * size))
    return n


def extract_field(word: int, offset: int, size: int) -> int:
    return (word >> (8 * offset)) & ((1 << (8 * size)) - 1)


def merge_field(word: int, write: SlotWrite) -> int:
    mask = ((1 << (8 * write.size)) - 1) << (8 * write.offset)
    return (word & ~mask) | (write.value << (8 * write.offset))


#
# slot computation
#


def mapping_key(key_type: TypeDescriptor, key: Any) -> bytes:
    """Encoding of a mapping key as hashed together with the mapping slot."""

    if key_type.is_bytes:
        # string and bytes keys are hashed unpadded
        if key_type.is_string and isinstance(key, str):
            return key.encode("utf-8")
        return _to_bytes(key, key_type.label)

    if key_type.scalar_kind == "bytes":
        # bytesN is left-aligned
        return encode_scalar(key_type, key).to_bytes(
            key_type.number_of_bytes, "big"
        ).ljust(WORD_SIZE, b"\0")

    if key_type.scalar_kind == "int":
        return to_word(_to_int(key, key_type.label))

    return to_word(encode_scalar(key_type, key))


def mapping_slot(key_type: TypeDescriptor, key: Any, slot: int) -> int:
    return sha3(mapping_key(key_type, key) + to_word(slot))


def element_position(base: TypeDescriptor, start: int, index: int) -> tuple[int, int]:
    """(slot, offset) of the index-th element of an array starting at `start`"""

    size = base.number_of_bytes
    if size <= WORD_SIZE // 2:
        per_slot = WORD_SIZE // size
        return uint256(start + index // per_slot), (index % per_slot) * size

    slots_per_element = (size + WORD_SIZE - 1) // WORD_SIZE
    return uint256(start + index * slots_per_element), 0


def data_slot(slot: int) -> int:
    """First slot of the data of a dynamic array or long bytes"""
    return sha3(to_word(slot))


def _as_index(key: Any, label: str) -> int:
    try:
        index = _to_int(key, label)
    except StorageEncodingError:
        raise StorageLookupError(f"invalid array index for {label}: {key!r}") from None
    if index < 0:
        raise StorageLookupError(f"invalid array index for {label}: {key!r}")
    return index


#
# write planning
#


def plan_writes(
    typ: TypeDescriptor,
    slot: int,
    offset: int,
    value: Any,
    read_word: ReadWord | None = None,
    label: str = "",
) -> list[SlotWrite]:
    """
    Compute the slot writes storing `value` in a variable of type `typ`.

    Nothing is written: validation errors are raised before any storage is
    touched. `read_word` is only used to clear the stale data words of a
    previous long bytes/string value.
    """

    if typ.is_mapping:
        if not isinstance(value, Mapping):
            raise StorageEncodingError(f"expected a dict for mapping {label}")
        writes = []
        for key, v in value.items():
            writes += plan_writes(
                typ.value,
                mapping_slot(typ.key, key, slot),
                0,
                v,
                read_word,
                f"{label}[{key}]",
            )
        return writes

    if typ.is_struct:
        if isinstance(value, Struct):
            value = value.to_dict()
        members = typ.members
        if isinstance(value, Mapping):
            unknown = set(value) - {m.label for m in members}
            if unknown:
                raise StorageLookupError(
                    f"unknown members of {typ.label}: {', '.join(sorted(unknown))}"
                )
            items = [(m, value[m.label]) for m in members if m.label in value]
        elif isinstance(value, Sequence) and not isinstance(value, str | bytes):
            if len(value) != len(members):
                raise StorageEncodingError(
                    f"expected {len(members)} members for {typ.label}, got {len(value)}"
                )
            items = list(zip(members, value))
        else:
            raise StorageEncodingError(f"expected a dict for struct {label}")

        writes = []
        for member, v in items:
            writes += plan_writes(
                member.type,
                uint256(slot + member.slot),
                member.offset,
                v,
                read_word,
                f"{label}.{member.label}",
            )
        return writes

    if typ.is_static_array or typ.is_dynamic_array:
        if not isinstance(value, Sequence) or isinstance(value, str | bytes):
            raise StorageEncodingError(f"expected a list for array {label}")

        writes = []
        if typ.is_dynamic_array:
            writes.append(SlotWrite(slot, 0, WORD_SIZE, len(value)))
            start = data_slot(slot)
        else:
            if len(value) > typ.length:
                raise StorageLookupError(
                    f"index {len(value) - 1} out of range for {label} of length {typ.length}"
                )
            start = slot

        for i, v in enumerate(value):
            element_slot, element_offset = element_position(typ.base, start, i)
            writes += plan_writes(
                typ.base, element_slot, element_offset, v, read_word, f"{label}[{i}]"
            )
        return writes

    if typ.is_bytes:
        return plan_bytes_writes(typ, slot, value, read_word, label)

    return [SlotWrite(slot, offset, typ.number_of_bytes, encode_scalar(typ, value))]


def plan_bytes_writes(
    typ: TypeDescriptor,
    slot: int,
    value: Any,
    read_word: ReadWord | None = None,
    label: str = "",
) -> list[SlotWrite]:
    if isinstance(value, str) and (typ.is_string or decode_hex(value) is None):
        data = value.encode("utf-8")
    else:
        data = _to_bytes(value, label or typ.label)

    length = len(data)
    writes = []

    if length <= WORD_SIZE - 1:
        # short: data and 2 * length share the slot
        word = int.from_bytes(data.ljust(WORD_SIZE - 1, b"\0") + bytes([2 * length]), "big")
        writes.append(SlotWrite(slot, 0, WORD_SIZE, word))
        new_words = 0
    else:
        # long: 2 * length + 1 in the slot, data from keccak(slot)
        writes.append(SlotWrite(slot, 0, WORD_SIZE, 2 * length + 1))
        start = data_slot(slot)
        for i in range(0, length, WORD_SIZE):
            chunk = data[i : i + WORD_SIZE].ljust(WORD_SIZE, b"\0")
            writes.append(
                SlotWrite(uint256(start + i // WORD_SIZE), 0, WORD_SIZE, from_word(chunk))
            )
        new_words = (length + WORD_SIZE - 1) // WORD_SIZE

    if read_word is not None:
        old = read_word(slot)
        if old & 1:
            old_words = ((old - 1) // 2 + WORD_SIZE - 1) // WORD_SIZE
            start = data_slot(slot)
            for j in range(new_words, old_words):
                writes.append(SlotWrite(uint256(start + j), 0, WORD_SIZE, 0))

    return writes


#
# reading
#


def read_bytes(typ: TypeDescriptor, slot: int, read_word: ReadWord) -> bytes | str:
    word = read_word(slot)
    if word & 1 == 0:
        length = (word & 0xFF) // 2
        data = to_word(word)[:length]
    else:
        length = (word - 1) // 2
        start = data_slot(slot)
        num_words = (length + WORD_SIZE - 1) // WORD_SIZE
        data = b"".join(
            to_word(read_word(uint256(start + i))) for i in range(num_words)
        )[:length]

    if not typ.is_string:
        return data

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise StorageDecodingError(
            f"{typ.label} at slot {hex(slot)} is not utf-8: {err}"
        ) from err


def read_value(
    typ: TypeDescriptor,
    slot: int,
    offset: int,
    path: Sequence,
    read_word: ReadWord,
    label: str = "",
) -> Any:
    """Read the value at `path` (keys, indices, member names) under a variable."""

    if typ.is_mapping:
        if not path:
            raise StorageLookupError(f"reading mapping {label} requires a key")
        key, rest = path[0], path[1:]
        return read_value(
            typ.value,
            mapping_slot(typ.key, key, slot),
            0,
            rest,
            read_word,
            f"{label}[{key}]",
        )

    if typ.is_struct:
        if path:
            member = _find_member(typ, path[0], label)
            return read_value(
                member.type,
                uint256(slot + member.slot),
                member.offset,
                path[1:],
                read_word,
                f"{label}.{member.label}",
            )
        return {
            m.label: read_value(
                m.type,
                uint256(slot + m.slot),
                m.offset,
                (),
                read_word,
                f"{label}.{m.label}",
            )
            for m in typ.members
        }

    if typ.is_static_array or typ.is_dynamic_array:
        if typ.is_dynamic_array:
            length = read_word(slot)
            start = data_slot(slot)
        else:
            length = typ.length
            start = slot

        if path:
            index = _as_index(path[0], label)
            if index >= length:
                raise StorageLookupError(
                    f"index {index} out of range for {label} of length {length}"
                )
            indices, rest = [index], path[1:]
        else:
            indices, rest = range(length), ()

        values = []
        for i in indices:
            element_slot, element_offset = element_position(typ.base, start, i)
            values.append(
                read_value(
                    typ.base, element_slot, element_offset, rest, read_word, f"{label}[{i}]"
                )
            )
        return values[0] if path else values

    if path:
        raise StorageLookupError(f"{label} of type {typ.label} cannot be indexed")

    if typ.is_bytes:
        return read_bytes(typ, slot, read_word)

    return decode_scalar(typ, extract_field(read_word(slot), offset, typ.number_of_bytes))


def _find_member(typ: TypeDescriptor, name: Any, label: str) -> StorageSlotDescriptor:
    for member in typ.members:
        if member.label == name:
            return member
    raise StorageLookupError(f"{label} of type {typ.label} has no member {name}")


def locate(
    desc: StorageSlotDescriptor, path: Sequence
) -> tuple[int, int, TypeDescriptor]:
    """
    Slot, offset and type reached by following `path` from a variable,
    without reading storage (dynamic array bounds are not checked).
    """

    typ, slot, offset = desc.type, desc.slot, desc.offset
    label = desc.label

    for key in path:
        if typ.is_mapping:
            slot, offset, typ = mapping_slot(typ.key, key, slot), 0, typ.value
        elif typ.is_struct:
            member = _find_member(typ, key, label)
            slot, offset, typ = uint256(slot + member.slot), member.offset, member.type
        elif typ.is_static_array or typ.is_dynamic_array:
            index = _as_index(key, label)
            if typ.is_static_array and index >= typ.length:
                raise StorageLookupError(
                    f"index {index} out of range for {label} of length {typ.length}"
                )
            start = data_slot(slot) if typ.is_dynamic_array else slot
            (slot, offset), typ = element_position(typ.base, start, index), typ.base
        else:
            raise StorageLookupError(f"{label} of type {typ.label} cannot be indexed")
        label = f"{label}[{key}]"

    return slot, offset, typ


#
# storage access through the execution environment
#


class ReadableStorage:
    def __init__(self, layout: StorageLayout, manager: VMManager, address: str):
        self.layout = layout
        self.manager = manager
        self.address = address

    def read_word(self, slot: int) -> int:
        return from_word(self.manager.get_contract_storage(self.address, to_word(slot)))

    def get_variable(self, label: str, keys: Sequence | None = None) -> Any:
        desc = self.layout[label]
        return read_value(
            desc.type, desc.slot, desc.offset, list(keys or ()), self.read_word, label
        )


class EditableStorage(ReadableStorage):
    def write_word(self, slot: int, word: int) -> None:
        self.manager.put_contract_storage(self.address, to_word(slot), to_word(word))

    def set_variable(self, label: str, value: Any) -> None:
        desc = self.layout[label]
        writes = plan_writes(
            desc.type, desc.slot, desc.offset, value, self.read_word, label
        )
        self.apply(writes)

    def set_variables(self, values: Mapping[str, Any]) -> None:
        # not atomic: variables written before a failing one stay written
        for label, value in values.items():
            self.set_variable(label, value)

    def apply(self, writes: list[SlotWrite]) -> None:
        by_slot: dict[int, list[SlotWrite]] = {}
        for write in writes:
            by_slot.setdefault(write.slot, []).append(write)

        for slot, slot_writes in by_slot.items():
            word = None
            for write in slot_writes:
                if write.is_full_word:
                    word = write.value
                else:
                    # packed field: keep the sibling fields sharing the slot
                    if word is None:
                        word = self.read_word(slot)
                    word = merge_field(word, write)
            self.write_word(slot, word)
