# SPDX-License-Identifier: AGPL-3.0

from collections.abc import Mapping
from typing import Any

from .abi import Struct, to_plain
from .utils import decode_hex, is_hexstr


def _as_int(x: Any) -> int | None:
    if isinstance(x, bool):
        return None
    if isinstance(x, int):
        return x
    if isinstance(x, str):
        try:
            return int(x, 0)
        except ValueError:
            return None
    return None


def _is_seq(x: Any) -> bool:
    return isinstance(x, list | tuple)


def is_deep_equal(actual: Any, expected: Any) -> bool:
    """
    Structural equality between decoded call arguments and expectations.

    Integers compare by value whatever their representation, decoded
    structs compare against lists positionally and against dicts by member
    name, bytes compare against their hex string and addresses compare
    case-insensitively.
    """

    # numbers
    if isinstance(actual, int) and not isinstance(actual, bool):
        return _as_int(expected) == actual
    if isinstance(expected, int) and not isinstance(expected, bool):
        return _as_int(actual) == expected

    # structs
    if isinstance(actual, Struct) or isinstance(expected, Struct):
        if _is_seq(expected) or _is_seq(actual):
            actual = to_plain(actual, as_dict=False)
            expected = to_plain(expected, as_dict=False)
        else:
            actual = to_plain(actual)
            expected = to_plain(expected)

    # bytes vs hex
    if isinstance(actual, bytes) and is_hexstr(expected):
        return actual == decode_hex(expected)
    if isinstance(expected, bytes) and is_hexstr(actual):
        return expected == decode_hex(actual)

    if isinstance(actual, str) and isinstance(expected, str):
        if is_hexstr(actual) and is_hexstr(expected):
            return actual.lower() == expected.lower()
        return actual == expected

    if _is_seq(actual) and _is_seq(expected):
        return len(actual) == len(expected) and all(
            is_deep_equal(a, e) for a, e in zip(actual, expected)
        )

    if isinstance(actual, Mapping) and isinstance(expected, Mapping):
        return actual.keys() == expected.keys() and all(
            is_deep_equal(actual[k], expected[k]) for k in actual
        )

    return actual == expected
