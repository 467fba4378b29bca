import pytest
from contracts import Counter, TokenUser, fn
from eth_utils import to_checksum_address

from solmock.chain import DEFAULT_BALANCE, NATIVE_CODE, NativeContract
from solmock.events import Message
from solmock.exceptions import Revert, TransactionRevert
from solmock.utils import same_address


class Vault(NativeContract):
    abi = [
        fn("deposit", mutability="payable"),
        fn("poke"),
        fn("fail", [("reason", "string")]),
    ]

    def deposit(self, ctx):
        pass

    def poke(self, ctx):
        ctx.sstore(0, ctx.sload(0) + 1)

    def fail(self, ctx, reason):
        ctx.sstore(0, 42)
        raise Revert(reason)


class Reverting(NativeContract):
    def constructor(self, ctx):
        raise Revert("constructor failed")


@pytest.fixture
def vault_address(chain):
    return chain.deploy(Vault())


def test_accounts_are_funded(chain):
    assert len(chain.accounts) == 10
    assert chain.get_balance(chain.default_sender) == DEFAULT_BALANCE


def test_deploy(chain, vault_address):
    assert chain.get_code(vault_address) == NATIVE_CODE
    assert isinstance(chain.runtimes[vault_address], Vault)


def test_deploy_revert(chain):
    with pytest.raises(TransactionRevert, match="constructor failed"):
        chain.deploy(Reverting())

    assert chain.runtimes == {}


def test_value_transfer(chain, vault_address, alice):
    interface = chain.runtimes[vault_address].interface
    data = interface.encode_function_data(interface.get_function("deposit"), [])

    chain.call(vault_address, data, value=10, sender=alice)

    assert chain.get_balance(vault_address) == 10
    assert chain.get_balance(alice) == DEFAULT_BALANCE - 10


def test_insufficient_balance(chain, vault_address):
    poor = "0x" + "77" * 20

    with pytest.raises(TransactionRevert, match="insufficient balance"):
        chain.call(vault_address, b"", value=1, sender=poor)


def test_non_payable_function_rejects_value(chain, vault_address):
    runtime = chain.runtimes[vault_address]
    poke = runtime.interface.get_function("poke")
    data = runtime.interface.encode_function_data(poke, [])

    with pytest.raises(TransactionRevert):
        chain.call(vault_address, data, value=1)


def test_unknown_selector_reverts(chain, vault_address):
    with pytest.raises(TransactionRevert):
        chain.call(vault_address, b"\x00\x00\x00\x01")


def test_call_to_empty_account(chain):
    assert chain.call("0x" + "99" * 20, b"\x01\x02") == b""


def test_revert_restores_state(chain, vault_address):
    interface = chain.runtimes[vault_address].interface
    poke = interface.encode_function_data(interface.get_function("poke"), [])
    fail = interface.encode_function_data(interface.get_function("fail"), ["nope"])

    chain.call(vault_address, poke)
    with pytest.raises(TransactionRevert) as exc_info:
        chain.call(vault_address, fail)

    assert exc_info.value.reason == "nope"
    assert exc_info.value.data[:4] == bytes.fromhex("08c379a0")
    assert chain.load(vault_address, 0) == 1


def test_events_for_nested_calls(chain, vault_address):
    user = chain.deploy(TokenUser())
    user_interface = chain.runtimes[user].interface
    vault_interface = chain.runtimes[vault_address].interface

    poke = vault_interface.encode_function_data(
        vault_interface.get_function("poke"), []
    )
    data = user_interface.encode_function_data(
        user_interface.get_function("forward"), [vault_address, poke]
    )

    messages, results = [], []
    chain.vm.before_messages.subscribe(messages.append)
    chain.vm.after_messages.subscribe(results.append)

    chain.call(user, data)

    assert [m.depth for m in messages] == [0, 1]
    assert same_address(messages[1].caller, user)
    assert same_address(messages[1].to, vault_address)
    # inner frame completes first
    assert [r.depth for r in results] == [1, 0]
    assert chain.load(vault_address, 0) == 1


def test_delegatecall_uses_caller_storage(chain):
    user = chain.deploy(TokenUser())
    counter = Counter()
    counter_address = chain.deploy(counter, 1)

    # run Counter.add on the storage of the TokenUser account
    message = Message(
        data=counter.interface.encode_function_data(
            counter.interface.get_function("add"), [4]
        ),
        value=0,
        caller=chain.default_sender,
        to=user,
        delegatecall=True,
        code_address=counter_address,
    )
    chain.execute(message)

    assert chain.load(user, 0) == 4
    assert chain.load(counter_address, 0) == 1


def test_vm_manager_primitives(chain):
    address = "0x" + "55" * 20
    slot = (3).to_bytes(32, "big")

    chain.put_contract_storage(address, slot, (9).to_bytes(32, "big"))
    assert chain.get_contract_storage(address, slot) == (9).to_bytes(32, "big")

    chain.put_contract_code(address, b"\x00")
    assert chain.get_code(address) == b"\x00"

    # zero words are not kept around
    chain.put_contract_storage(address, slot, bytes(32))
    assert chain.storage[to_checksum_address(address)] == {}

