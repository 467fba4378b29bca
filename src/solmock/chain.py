# SPDX-License-Identifier: AGPL-3.0

"""
In-memory reference execution environment.

Contract logic is written in Python as `NativeContract` subclasses whose
methods are dispatched by ABI selector. Every message, including nested
calls and delegate calls, is reported to the attached `ObservableVM`
before it runs and after it completes, so that fakes and mocks can
intercept it.
"""

from typing import Any

from .abi import ContractInterface, FunctionInfo, decode_revert_reason, encode_revert_reason
from .events import Message, MessageResult
from .exceptions import Revert, TransactionRevert
from .logs import debug
from .storage import EditableStorage, StorageLayout
from .utils import (
    ZERO_ADDRESS,
    from_word,
    hexify,
    normalize_address,
    random_address,
    to_word,
)
from .vm import Faulted, ObservableVM, Returned, Reverted

DEFAULT_BALANCE = 10**24

# marker stored as the code of accounts backed by a NativeContract
NATIVE_CODE = bytes.fromhex("fe")


class NativeContract:
    """
    Contract logic implemented in Python.

    Subclasses declare their `abi` (and optionally the solc `storage_layout`
    of the equivalent Solidity contract) and implement one method per ABI
    function, taking the call context followed by the decoded arguments:

        def transfer(self, ctx, to, amount): ...

    Raise `Revert` to revert the current call frame.
    """

    abi: list[dict] = []
    storage_layout: dict | None = None

    def __init__(self):
        self.interface = ContractInterface(self.abi)
        self.layout = (
            StorageLayout.from_json(self.storage_layout) if self.storage_layout else None
        )

    def constructor(self, ctx: "CallContext", *args) -> None:
        pass

    def fallback(self, ctx: "CallContext", data: bytes) -> bytes:
        raise Revert()

    def dispatch(self, ctx: "CallContext", data: bytes) -> bytes:
        fun_info = self.interface.selectors.get(hexify(data[:4])) if len(data) >= 4 else None
        if fun_info is None:
            return self.fallback(ctx, data) or b""

        if ctx.value and not fun_info.payable:
            raise Revert()

        args = self.interface.decode_function_data(fun_info, data)
        result = getattr(self, fun_info.name)(ctx, *args)
        return self.encode_result(fun_info, result)

    def encode_result(self, fun_info: FunctionInfo, result: Any) -> bytes:
        num_outputs = len(fun_info.outputs.items)
        if num_outputs == 0:
            return b""
        values = [result] if num_outputs == 1 else result
        return self.interface.encode_function_result(fun_info, values)


class CallContext:
    """What native code sees of the current call frame."""

    def __init__(self, chain: "Chain", runtime: NativeContract, message: Message):
        self.chain = chain
        self.runtime = runtime
        self.message = message

    @property
    def address(self) -> str:
        """Address whose storage and balance the code operates on"""
        return self.message.to

    @property
    def sender(self) -> str:
        return self.message.caller

    @property
    def value(self) -> int:
        return self.message.value

    @property
    def depth(self) -> int:
        return self.message.depth

    @property
    def storage(self) -> EditableStorage:
        if self.runtime.layout is None:
            raise AttributeError(
                f"{type(self.runtime).__name__} does not declare a storage layout"
            )
        return EditableStorage(self.runtime.layout, self.chain, self.address)

    def sload(self, slot: int) -> int:
        return self.chain.load(self.address, slot)

    def sstore(self, slot: int, value: int) -> None:
        self.chain.store(self.address, slot, value)

    def call(self, to: str, data: bytes = b"", value: int = 0) -> bytes:
        return self.chain.execute(
            Message(
                data=data,
                value=value,
                caller=self.address,
                to=normalize_address(to),
                depth=self.depth + 1,
            )
        )

    def delegatecall(self, to: str, data: bytes = b"") -> bytes:
        return self.chain.execute(
            Message(
                data=data,
                value=self.value,
                caller=self.sender,
                to=self.address,
                delegatecall=True,
                code_address=normalize_address(to),
                depth=self.depth + 1,
            )
        )

    def invoke(
        self,
        to: str,
        interface: ContractInterface,
        key: str,
        *args,
        value: int = 0,
        delegate: bool = False,
    ) -> Any:
        """Call a function of another contract by name or signature."""

        fun_info = interface.get_function(key)
        data = interface.encode_function_data(fun_info, args)
        if delegate:
            result = self.delegatecall(to, data)
        else:
            result = self.call(to, data, value=value)

        values = interface.decode_function_result(fun_info, result)
        if not values:
            return None
        return values[0] if len(values) == 1 else values


class Chain:
    """Accounts, code, storage and balances, plus the call machinery."""

    def __init__(self, num_accounts: int = 10):
        self.vm = ObservableVM(self)
        self.code: dict[str, bytes] = {}
        self.runtimes: dict[str, NativeContract] = {}
        self.storage: dict[str, dict[int, int]] = {}
        self.balances: dict[str, int] = {}

        self.accounts = [random_address() for _ in range(num_accounts)]
        for account in self.accounts:
            self.balances[account] = DEFAULT_BALANCE

    @property
    def default_sender(self) -> str:
        return self.accounts[0] if self.accounts else ZERO_ADDRESS

    #
    # VMManager
    #

    def put_contract_code(self, address: str, code: bytes) -> None:
        self.code[normalize_address(address)] = code

    def get_contract_storage(self, address: str, slot: bytes) -> bytes:
        return to_word(self.load(address, from_word(slot)))

    def put_contract_storage(self, address: str, slot: bytes, value: bytes) -> None:
        self.store(address, from_word(slot), from_word(value))

    #
    # raw state
    #

    def get_code(self, address: str) -> bytes:
        return self.code.get(normalize_address(address), b"")

    def load(self, address: str, slot: int) -> int:
        return self.storage.get(normalize_address(address), {}).get(slot, 0)

    def store(self, address: str, slot: int, value: int) -> None:
        account_storage = self.storage.setdefault(normalize_address(address), {})
        if value:
            account_storage[slot] = value
        else:
            account_storage.pop(slot, None)

    def get_balance(self, address: str) -> int:
        return self.balances.get(normalize_address(address), 0)

    def set_balance(self, address: str, amount: int) -> None:
        self.balances[normalize_address(address)] = amount

    def snapshot(self) -> tuple:
        return (
            {address: dict(slots) for address, slots in self.storage.items()},
            dict(self.balances),
        )

    def restore(self, snapshot: tuple) -> None:
        storage, balances = snapshot
        self.storage = {address: dict(slots) for address, slots in storage.items()}
        self.balances = dict(balances)

    #
    # execution
    #

    def deploy(self, runtime: NativeContract, *args, sender: str | None = None) -> str:
        """Install `runtime` at a fresh address and run its constructor."""

        sender = normalize_address(sender) if sender else self.default_sender
        address = random_address()

        snapshot = self.snapshot()
        self.put_contract_code(address, NATIVE_CODE)
        self.runtimes[address] = runtime

        message = Message(data=b"", value=0, caller=sender, to=address)
        try:
            runtime.constructor(CallContext(self, runtime, message), *args)
        except Revert as err:
            self.restore(snapshot)
            del self.code[address]
            del self.runtimes[address]
            raise TransactionRevert(_revert_reason(err), _revert_data(err)) from err

        debug(f"deployed {type(runtime).__name__} at {address}")
        return address

    def call(
        self,
        to: str,
        data: bytes = b"",
        value: int = 0,
        sender: str | None = None,
    ) -> bytes:
        """Send a top-level transaction; reverts surface as `TransactionRevert`."""

        message = Message(
            data=data,
            value=value,
            caller=normalize_address(sender) if sender else self.default_sender,
            to=normalize_address(to),
        )
        try:
            return self.execute(message)
        except Revert as err:
            raise TransactionRevert(_revert_reason(err), _revert_data(err)) from err

    def execute(self, message: Message) -> bytes:
        """Run one message frame, giving interceptors the chance to answer it."""

        snapshot = self.snapshot()
        try:
            data = self._execute(message)
        except Revert as err:
            self.restore(snapshot)
            self.vm.on_result(
                MessageResult(_revert_data(err), reverted=True, depth=message.depth)
            )
            raise
        except Exception as err:
            self.restore(snapshot)
            self.vm.on_result(
                MessageResult(b"", reverted=True, error=err, depth=message.depth)
            )
            raise

        self.vm.on_result(MessageResult(data, depth=message.depth))
        return data

    def _execute(self, message: Message) -> bytes:
        outcome = self.vm.on_message(message)

        match outcome:
            case Returned(data=data):
                self._transfer(message)
                return data
            case Reverted(reason=reason):
                raise Revert(reason, outcome.data)
            case Faulted(error=error):
                raise error

        self._transfer(message)

        runtime = self.runtimes.get(message.target)
        if runtime is None:
            # no code, or placeholder code of a fake
            return b""

        return runtime.dispatch(CallContext(self, runtime, message), message.data)

    def _transfer(self, message: Message) -> None:
        if message.delegatecall or not message.value:
            return

        balance = self.get_balance(message.caller)
        if balance < message.value:
            raise Revert("insufficient balance")

        self.balances[message.caller] = balance - message.value
        self.balances[message.to] = self.get_balance(message.to) + message.value


def _revert_data(err: Revert) -> bytes:
    return err.data if err.data is not None else encode_revert_reason(err.reason)


def _revert_reason(err: Revert) -> str | None:
    if err.reason is not None:
        return err.reason
    return decode_revert_reason(err.data) if err.data else None
