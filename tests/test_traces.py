import re

import pytest

from solmock.abi import Struct
from solmock.history import ContractCall, WatchableFunction
from solmock.traces import (
    rendered_call,
    rendered_history,
    rendered_outcome,
    rendered_value,
)
from solmock.vm import Faulted, Returned, Reverted


def strip_colors(text: str) -> str:
    return re.sub(r"\033\[[0-9;]*m", "", text)


@pytest.mark.parametrize(
    "value, expected",
    [
        (1, "1"),
        ("a", "'a'"),
        (b"\x01\x02", "0x0102"),
        ([1, b"\x0f"], "[1, 0x0f]"),
        ({"k": True}, "{k: True}"),
        (Struct(("x", "y"), (1, "z")), "{x: 1, y: 'z'}"),
    ],
)
def test_rendered_value(value, expected):
    assert rendered_value(value) == expected


def test_rendered_call():
    call = ContractCall(args=[1, "0xab"], nonce=3, value=5, target="0xTarget")

    assert strip_colors(rendered_call("foo", call)) == (
        "#3 0xTarget::foo{value: 5}(1, '0xab')"
    )


def test_rendered_delegated_fallback_call():
    call = ContractCall(
        args="0x1234", nonce=0, value=0, target="0xTarget", delegated_from="0xProxy"
    )

    assert strip_colors(rendered_call("fallback", call)) == (
        "#0 0xTarget::fallback(0x1234) delegated from 0xProxy"
    )


def test_rendered_outcome():
    assert strip_colors(rendered_outcome(Returned(b"\x01"))) == "↩ 0x01"
    assert strip_colors(rendered_outcome(Reverted("no"))) == "↩ REVERT 'no'"
    assert "boom" in strip_colors(rendered_outcome(Faulted(ValueError("boom"))))


def test_rendered_history():
    watchable = WatchableFunction("foo")
    watchable._record_call(ContractCall(args=[], nonce=0, value=0, target="0xT"))

    lines = strip_colors(rendered_history(watchable)).splitlines()

    assert lines == ["foo: 1 call(s)", "    #0 0xT::foo()"]
