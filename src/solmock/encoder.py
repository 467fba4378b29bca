# SPDX-License-Identifier: AGPL-3.0

from collections.abc import Mapping
from typing import Any

from .abi import (
    ContractInterface,
    FunctionInfo,
    Struct,
    TupleType,
    Type,
    zero_value,
)
from .exceptions import EncodingError
from .logs import debug
from .utils import decode_hex, is_hexstr


def encode_raw(value: Any) -> bytes:
    """Normalize a programmed fallback answer into raw return data."""

    if value is None:
        return b""
    if isinstance(value, bytes | bytearray):
        return bytes(value)
    if isinstance(value, list | tuple):
        return bytes(value)
    if isinstance(value, str):
        if is_hexstr(value):
            return decode_hex(value)
        return value.encode("utf-8")
    raise EncodingError(f"cannot use {type(value).__name__} as fallback return data")


def struct_from_record(record: Mapping, outputs: list[Type]) -> list:
    """
    Convert a dict keyed by output names into positional values, walking
    nested tuple members by name.
    """

    result = []
    for item in outputs:
        value = record[item.var]
        if isinstance(item, TupleType) and isinstance(value, Mapping):
            value = struct_from_record(value, item.items)
        result.append(value)
    return result


class FunctionEncoder:
    """Turns programmed answers into return data for one function."""

    def __init__(self, interface: ContractInterface, fun_info: FunctionInfo):
        self.interface = interface
        self.fun_info = fun_info

    def default(self) -> bytes:
        if self.fun_info.is_fallback:
            return b""
        return self.interface.encode_function_result(
            self.fun_info, zero_value(self.fun_info.outputs)
        )

    def encode(self, value: Any) -> bytes:
        if self.fun_info.is_fallback:
            return encode_raw(value)

        outputs = self.fun_info.outputs
        if value is None:
            return self.default()

        # 1. a single return value
        try:
            return self.interface.encode_function_result(self.fun_info, [value])
        except Exception as err:
            debug(f"{self.fun_info.sig}: not a single return value ({err})")

        # 2. a tuple of return values
        if isinstance(value, list | tuple | Struct):
            try:
                return self.interface.encode_function_result(self.fun_info, value)
            except Exception as err:
                debug(f"{self.fun_info.sig}: not a tuple of return values ({err})")

        # 3. a record keyed by output names
        if isinstance(value, Mapping):
            try:
                values = struct_from_record(value, outputs.items)
                return self.interface.encode_function_result(self.fun_info, values)
            except Exception as err:
                raise EncodingError(
                    f"failed to encode return value for {self.fun_info.sig}: {err}"
                ) from err

        raise EncodingError(
            f"failed to encode return value for {self.fun_info.sig}: {value!r}"
        )
