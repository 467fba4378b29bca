# SPDX-License-Identifier: AGPL-3.0

from typing import Any

from .abi import ContractInterface, interface_from_spec
from .build import load_storage_layout
from .chain import Chain, NativeContract
from .config import Config, ConfigSource, default_config
from .contract import FakeContract, MockContractFactory
from .exceptions import ArtifactNotFound
from .history import NonceSequence
from .logs import debug, info, set_verbosity
from .storage import StorageLayout
from .utils import normalize_address, random_address


class Sandbox:
    """
    Owns the chain, its observable vm and the nonce sequence shared by all
    the fakes and mocks created through it.
    """

    def __init__(
        self,
        chain: Chain | None = None,
        config: Config | None = None,
        nonces: NonceSequence | None = None,
        **overrides,
    ):
        config = config or default_config()
        if overrides:
            config = config.with_overrides(ConfigSource.sandbox, **overrides)

        self.config = config
        self.chain = chain or Chain()
        self.vm = self.chain.vm
        self.nonces = nonces or NonceSequence()
        self.fakes: list[FakeContract] = []
        self.factories: list[MockContractFactory] = []

        set_verbosity(config.verbose, config.debug)

    def fake(self, spec: Any, address: str | None = None) -> FakeContract:
        interface = interface_from_spec(spec, self.config)
        address = normalize_address(address) if address else random_address()

        self.chain.put_contract_code(address, self.config.fake_code)
        info(f"fake with {len(interface.functions)} functions at {address}")

        fake = FakeContract(
            self.chain, interface, address, self.nonces, trace=self.config.trace_calls
        )
        self.fakes.append(fake)
        return fake

    def mock(
        self, spec: Any, runtime: type[NativeContract]
    ) -> MockContractFactory:
        if spec is None:
            interface = ContractInterface(runtime.abi)
        else:
            interface = interface_from_spec(spec, self.config)

        factory = MockContractFactory(
            self.chain,
            runtime,
            interface,
            self.nonces,
            layout=self._storage_layout(spec, runtime),
            trace=self.config.trace_calls,
        )
        self.factories.append(factory)
        return factory

    def release(self) -> None:
        """Detach every fake and mock created through this sandbox."""

        mocks = [mock for factory in self.factories for mock in factory.deployed]
        for contract in [*self.fakes, *mocks]:
            contract.detach()

        debug(f"released {len(self.fakes)} fakes and {len(mocks)} mocks")
        self.fakes = []
        self.factories = []

    def _storage_layout(
        self, spec: Any, runtime: type[NativeContract]
    ) -> StorageLayout | None:
        if runtime.storage_layout:
            return StorageLayout.from_json(runtime.storage_layout)

        if isinstance(spec, str) and spec.strip()[:1] not in ("{", "["):
            try:
                return StorageLayout.from_json(load_storage_layout(spec, self.config))
            except ArtifactNotFound as err:
                debug(f"no storage layout for {spec}: {err}")

        return None


#
# default sandbox
#

_sandbox: Sandbox | None = None


def get_sandbox() -> Sandbox:
    global _sandbox
    if _sandbox is None:
        _sandbox = Sandbox()
    return _sandbox


def reset_sandbox() -> None:
    global _sandbox
    if _sandbox is not None:
        _sandbox.release()
    _sandbox = None


def fake(spec: Any, address: str | None = None) -> FakeContract:
    return get_sandbox().fake(spec, address)


def mock(spec: Any, runtime: type[NativeContract]) -> MockContractFactory:
    return get_sandbox().mock(spec, runtime)
