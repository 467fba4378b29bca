# SPDX-License-Identifier: AGPL-3.0

from collections.abc import Mapping, Sequence
from typing import Any

from .abi import FALLBACK, ContractInterface, FunctionInfo
from .chain import Chain, NativeContract
from .encoder import encode_raw
from .exceptions import StorageLookupError
from .history import NonceSequence
from .programmable import ProgrammableFunction
from .storage import EditableStorage, StorageLayout


class FakeContract:
    """
    A contract whose every function, fallback included, answers with
    programmed responses and records its calls.

    Functions are reachable by name (`fake.balanceOf`) or, for overloaded
    names, by signature (`fake["transfer(address,uint256)"]`).

    The chain does not check signatures, so any call can be sent from the
    fake's own address:
    `token.transfer(bob, 1, sender=fake.address)` impersonates it.
    """

    call_through = False

    def __init__(
        self,
        chain: Chain,
        interface: ContractInterface,
        address: str,
        nonces: NonceSequence,
        trace: bool = False,
    ):
        self.chain = chain
        self.interface = interface
        self.address = address

        self.functions: dict[str, ProgrammableFunction] = {
            fun_info.sig: ProgrammableFunction(
                chain.vm, self, fun_info, nonces, self.call_through, trace
            )
            for fun_info in interface
        }
        self.fallback = ProgrammableFunction(
            chain.vm, self, FALLBACK, nonces, self.call_through, trace
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"

    def __getattr__(self, name: str) -> ProgrammableFunction:
        if name.startswith("_") or "interface" not in self.__dict__:
            raise AttributeError(name)
        try:
            fun_info = self.interface.get_function(name)
        except KeyError as err:
            raise AttributeError(f"{self!r} has no function {name}: {err}") from None
        return self.functions[fun_info.sig]

    def __getitem__(self, sig: str) -> ProgrammableFunction:
        return self.functions[self.interface.get_function(sig).sig]

    def call_function(
        self,
        fun_info: FunctionInfo,
        args: Sequence,
        value: int = 0,
        sender: str | None = None,
    ) -> Any:
        if fun_info.is_fallback:
            data = encode_raw(args[0]) if args else b""
            return self.chain.call(self.address, data, value=value, sender=sender)

        data = self.interface.encode_function_data(fun_info, args)
        result = self.chain.call(self.address, data, value=value, sender=sender)

        values = self.interface.decode_function_result(fun_info, result)
        if not values:
            return None
        return values[0] if len(values) == 1 else values

    def reset(self) -> None:
        """Clear the programmed responses and call history of every function."""
        for fn in self.functions.values():
            fn.reset()
        self.fallback.reset()

    def detach(self) -> None:
        """
        Stop intercepting calls. The recorded history stays readable, but
        calls to the address are no longer answered by this contract.
        """
        for fn in self.functions.values():
            fn.detach()
        self.fallback.detach()


class MockContract(FakeContract):
    """
    A deployed contract whose functions run the real code unless programmed
    otherwise, with direct access to its storage variables.
    """

    call_through = True

    def __init__(
        self,
        chain: Chain,
        interface: ContractInterface,
        address: str,
        nonces: NonceSequence,
        layout: StorageLayout | None = None,
        trace: bool = False,
    ):
        super().__init__(chain, interface, address, nonces, trace)
        self.layout = layout

    @property
    def storage(self) -> EditableStorage:
        if self.layout is None:
            raise StorageLookupError(f"no storage layout available for {self!r}")
        return EditableStorage(self.layout, self.chain, self.address)

    def set_variable(self, label: str, value: Any) -> None:
        self.storage.set_variable(label, value)

    def set_variables(self, values: Mapping[str, Any]) -> None:
        self.storage.set_variables(values)

    def get_variable(self, label: str, keys: Sequence | None = None) -> Any:
        return self.storage.get_variable(label, keys)


class MockContractFactory:
    """Deploys `runtime` and wraps each deployment in a `MockContract`."""

    def __init__(
        self,
        chain: Chain,
        runtime: type[NativeContract],
        interface: ContractInterface,
        nonces: NonceSequence,
        layout: StorageLayout | None = None,
        sender: str | None = None,
        trace: bool = False,
        deployed: list[MockContract] | None = None,
    ):
        self.chain = chain
        self.runtime = runtime
        self.interface = interface
        self.nonces = nonces
        self.layout = layout
        self.sender = sender
        self.trace = trace
        # shared with the factories returned by connect()
        self.deployed = deployed if deployed is not None else []

    def deploy(self, *args, sender: str | None = None) -> MockContract:
        address = self.chain.deploy(self.runtime(), *args, sender=sender or self.sender)
        contract = MockContract(
            self.chain,
            self.interface,
            address,
            self.nonces,
            layout=self.layout,
            trace=self.trace,
        )
        self.deployed.append(contract)
        return contract

    def connect(self, sender: str) -> "MockContractFactory":
        return MockContractFactory(
            self.chain,
            self.runtime,
            self.interface,
            self.nonces,
            layout=self.layout,
            sender=sender,
            trace=self.trace,
            deployed=self.deployed,
        )
