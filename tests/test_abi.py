import json

import pytest
from contracts import TOKEN, TOKEN_ABI

from solmock.abi import (
    FALLBACK,
    BaseType,
    ContractInterface,
    DynamicArrayType,
    FixedArrayType,
    Struct,
    TupleType,
    decode_revert_reason,
    encode_revert_reason,
    interface_from_spec,
    parse_type,
    str_abi,
    zero_value,
)
from solmock.exceptions import InterfaceResolutionError


def test_parse_type():
    assert parse_type("x", "uint", {}) == BaseType("x", "uint256")
    assert parse_type("x", "address[]", {}) == DynamicArrayType(
        "x", BaseType("", "address")
    )
    assert parse_type("x", "bytes32[2][]", {}) == DynamicArrayType(
        "x", FixedArrayType("", BaseType("", "bytes32"), 2)
    )

    item = {"components": [{"name": "a", "type": "uint8"}, {"name": "b", "type": "bool"}]}
    assert parse_type("s", "tuple", item) == TupleType(
        "s", [BaseType("a", "uint8"), BaseType("b", "bool")]
    )

    with pytest.raises(NotImplementedError):
        parse_type("x", "fixed128x18", {})


def test_str_abi():
    assert str_abi(TOKEN_ABI[1]) == "transfer(address,uint256)"
    assert str_abi(TOKEN_ABI[6]) == "setPosition((address,uint128,bool))"


def test_function_info():
    fun_info = TOKEN.get_function("balanceOf")
    assert fun_info.sig == "balanceOf(address)"
    assert fun_info.selector == "0x70a08231"
    assert not fun_info.payable
    assert not fun_info.is_fallback

    assert TOKEN.get_function("deposit").payable
    assert FALLBACK.is_fallback


def test_get_function_by_key():
    by_selector = TOKEN.get_function("0xa9059cbb")
    by_sig = TOKEN.get_function("transfer(address,uint256)")
    assert by_selector is by_sig

    # overloaded names require the full signature
    with pytest.raises(KeyError):
        TOKEN.get_function("transfer")

    with pytest.raises(KeyError):
        TOKEN.get_function("mint")

    assert "balanceOf" in TOKEN
    assert "transfer" not in TOKEN
    assert "transfer(address,uint256,bytes)" in TOKEN


def test_events_are_not_functions():
    assert "Transfer" not in TOKEN
    assert len(list(TOKEN)) == len(TOKEN_ABI) - 1


def test_struct_access():
    struct = Struct(("owner", "liquidity"), ("0xabc", 7))

    assert struct[1] == 7
    assert struct["liquidity"] == 7
    assert struct.owner == "0xabc"
    assert list(struct) == ["0xabc", 7]
    assert len(struct) == 2
    assert struct.to_dict() == {"owner": "0xabc", "liquidity": 7}

    with pytest.raises(KeyError):
        struct["missing"]
    with pytest.raises(AttributeError):
        struct.missing  # noqa: B018


def test_decode_struct_argument(alice):
    fun_info = TOKEN.get_function("setPosition")
    data = TOKEN.encode_function_data(
        fun_info, [{"owner": alice, "liquidity": 10, "active": True}]
    )

    (pos,) = TOKEN.decode_function_data(fun_info, data)

    assert isinstance(pos, Struct)
    assert pos.owner.lower() == alice.lower()
    assert pos.liquidity == 10
    assert pos.to_list()[1:] == [10, True]


def test_encode_accepts_loose_values():
    fun_info = TOKEN.get_function("transfer(address,uint256,bytes)")
    address = "0x" + "ab" * 20  # not checksummed

    data = TOKEN.encode_function_data(fun_info, [address, "0x10", "0xdead"])
    to, amount, payload = TOKEN.decode_function_data(fun_info, data)

    assert to.lower() == address
    assert amount == 16
    assert payload == b"\xde\xad"


def test_zero_value():
    outputs = TOKEN.get_function("getReserves").outputs
    assert zero_value(outputs) == (0, 0, 0)

    outputs = TOKEN.get_function("position").outputs
    assert zero_value(outputs) == (
        ("0x0000000000000000000000000000000000000000", 0, False),
    )

    assert zero_value(BaseType("", "bytes4")) == b"\x00" * 4
    assert zero_value(BaseType("", "string")) == ""
    assert zero_value(FixedArrayType("", BaseType("", "bool"), 2)) == [False, False]


def test_revert_reason():
    assert encode_revert_reason(None) == b""
    assert encode_revert_reason("") == b""

    data = encode_revert_reason("nope")
    assert data[:4].hex() == "08c379a0"
    assert decode_revert_reason(data) == "nope"
    assert decode_revert_reason(b"\x12\x34") is None


def test_interface_from_spec_shapes():
    assert interface_from_spec(TOKEN) is TOKEN

    from_list = interface_from_spec(TOKEN_ABI)
    from_json = interface_from_spec(json.dumps(TOKEN_ABI))
    from_artifact = interface_from_spec({"abi": TOKEN_ABI})
    from_interface_key = interface_from_spec({"interface": json.dumps(TOKEN_ABI)})

    for interface in (from_list, from_json, from_artifact, from_interface_key):
        assert isinstance(interface, ContractInterface)
        assert set(interface.functions) == set(TOKEN.functions)


def test_interface_from_spec_errors(args):
    with pytest.raises(InterfaceResolutionError) as exc_info:
        interface_from_spec({"bytecode": "0x"})
    assert "unable to generate solmock spec from dict" in str(exc_info.value)

    with pytest.raises(InterfaceResolutionError):
        interface_from_spec(42)

    # unknown contract names report every lookup strategy
    with pytest.raises(InterfaceResolutionError) as exc_info:
        interface_from_spec("NoSuchContract", args)
    strategies = [strategy for strategy, _ in exc_info.value.errors]
    assert strategies == ["forge", "hardhat"]
