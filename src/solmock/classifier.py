# SPDX-License-Identifier: AGPL-3.0

from .abi import ContractInterface, FunctionInfo
from .events import EventStream, Message, MessageResult
from .exceptions import DecodingError
from .history import ContractCall, NonceSequence
from .utils import hexify, same_address
from .vm import ObservableVM


def matches_function(message: Message, fun_info: FunctionInfo) -> bool:
    if fun_info.is_fallback:
        # calls without data are routed to the fallback function
        return len(message.data) == 0
    return "0x" + message.data[:4].hex() == fun_info.selector


def parse_message(
    message: Message,
    interface: ContractInterface,
    fun_info: FunctionInfo,
    nonces: NonceSequence,
) -> ContractCall:
    if fun_info.is_fallback:
        args = hexify(message.data)
    else:
        try:
            args = interface.decode_function_data(fun_info, message.data)
        except Exception as err:
            raise DecodingError(
                f"Failed to decode message data for {fun_info.sig}: {err}"
            ) from err

    return ContractCall(
        args=args,
        nonce=nonces.next(),
        value=message.value,
        target=message.target,
        delegated_from=message.to if message.delegatecall else None,
    )


def classify_calls(
    vm: ObservableVM,
    interface: ContractInterface,
    address: str,
    fun_info: FunctionInfo,
    nonces: NonceSequence,
) -> EventStream[ContractCall]:
    """
    Calls to `fun_info` of the contract at `address`, decoded.

    The returned stream is shared: parsing, and therefore nonce allocation,
    happens once per message regardless of the number of subscribers.
    """

    return (
        vm.before_messages.filter(lambda message: matches_function(message, fun_info))
        .filter(lambda message: same_address(message.target, address))
        .map(lambda message: parse_message(message, interface, fun_info, nonces))
    )


def pair_results(
    vm: ObservableVM, calls: EventStream[ContractCall]
) -> EventStream[tuple[MessageResult, ContractCall]]:
    """Every call paired with the first post-call event observed after it."""

    return vm.after_messages.with_latest_from(calls, distinct=True)
