import pytest
from contracts import TOKEN

from solmock.abi import FALLBACK
from solmock.classifier import (
    classify_calls,
    matches_function,
    pair_results,
    parse_message,
)
from solmock.events import Message, MessageResult
from solmock.exceptions import DecodingError
from solmock.vm import ObservableVM

FAKE = "0x00000000000000000000000000000000000000Fa"
CALLER = "0x00000000000000000000000000000000000000Ca"


@pytest.fixture
def balance_of():
    return TOKEN.get_function("balanceOf")


def balance_of_message(to=FAKE, account=CALLER, **kwargs):
    fun_info = TOKEN.get_function("balanceOf")
    data = TOKEN.encode_function_data(fun_info, [account])
    return Message(data=data, value=0, caller=CALLER, to=to, **kwargs)


def test_matches_function(balance_of):
    message = balance_of_message()

    assert matches_function(message, balance_of)
    assert not matches_function(message, TOKEN.get_function("name"))
    assert not matches_function(message, FALLBACK)

    empty = Message(data=b"", value=0, caller=CALLER, to=FAKE)
    assert matches_function(empty, FALLBACK)
    assert not matches_function(empty, balance_of)


def test_parse_message(balance_of, nonces):
    call = parse_message(balance_of_message(), TOKEN, balance_of, nonces)

    assert call.nonce == 0
    assert call.args[0].lower() == CALLER.lower()
    assert call.target == FAKE
    assert call.delegated_from is None


def test_parse_delegated_message(balance_of, nonces):
    delegator = "0x00000000000000000000000000000000000000dE"
    message = balance_of_message(to=delegator, delegatecall=True, code_address=FAKE)

    call = parse_message(message, TOKEN, balance_of, nonces)

    assert call.target == FAKE
    assert call.delegated_from == delegator


def test_parse_fallback_message(nonces):
    message = Message(data=b"", value=3, caller=CALLER, to=FAKE)

    call = parse_message(message, TOKEN, FALLBACK, nonces)

    assert call.args == "0x"
    assert call.value == 3


def test_parse_undecodable_message(balance_of, nonces):
    data = bytes.fromhex("70a08231") + b"\x01"
    message = Message(data=data, value=0, caller=CALLER, to=FAKE)

    with pytest.raises(DecodingError) as exc_info:
        parse_message(message, TOKEN, balance_of, nonces)

    assert str(exc_info.value).startswith(
        "Failed to decode message data for balanceOf(address): "
    )


def test_classify_calls(balance_of, nonces):
    vm = ObservableVM(manager=None)
    calls = classify_calls(vm, TOKEN, FAKE.lower(), balance_of, nonces)

    first, second = [], []
    calls.subscribe(first.append)
    calls.subscribe(second.append)

    vm.on_message(balance_of_message())
    vm.on_message(balance_of_message(to=CALLER))  # other contract
    vm.on_message(Message(data=b"", value=0, caller=CALLER, to=FAKE))  # other function

    assert len(first) == 1
    # parsed once for all subscribers
    assert first[0] is second[0]
    assert nonces.peek() == 1


def test_pair_results(balance_of, nonces):
    vm = ObservableVM(manager=None)
    calls = classify_calls(vm, TOKEN, FAKE, balance_of, nonces)
    pairs = []
    pair_results(vm, calls).subscribe(pairs.append)

    vm.on_result(MessageResult(b"\x00"))  # no call yet
    vm.on_message(balance_of_message())
    vm.on_result(MessageResult(b"\x01"))
    vm.on_result(MessageResult(b"\x02"))  # call already paired

    assert len(pairs) == 1
    result, call = pairs[0]
    assert result.return_data == b"\x01"
    assert call.nonce == 0
