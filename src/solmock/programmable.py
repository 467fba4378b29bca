# SPDX-License-Identifier: AGPL-3.0

from dataclasses import dataclass
from typing import Any

from .abi import FunctionInfo
from .classifier import classify_calls, pair_results
from .encoder import FunctionEncoder
from .history import ContractCall, NonceSequence, WatchableFunction
from .logs import debug
from .matchers import is_deep_equal
from .traces import rendered_call, rendered_outcome
from .utils import run_sync
from .vm import CallOutcome, Faulted, ObservableVM, Returned, Reverted

#
# Response rules
#


@dataclass(frozen=True)
class Returns:
    # a value, or a (possibly async) function of the call arguments
    value: Any = None


@dataclass(frozen=True)
class Reverts:
    reason: str | None = None


ResponseRule = Returns | Reverts


class ResponseProgram:
    """
    Programmed answers of one function.

    For a call at index i, the rule programmed for that index wins, then the
    most recent rule whose arguments match the call, then the default rule.
    """

    def __init__(self):
        self.default: ResponseRule | None = None
        self.at_call: dict[int, ResponseRule] = {}
        self.argument_matches: list[tuple[list, ResponseRule]] = []

    def set_default(self, rule: ResponseRule) -> None:
        self.default = rule

    def set_at_call(self, index: int, rule: ResponseRule) -> None:
        self.at_call[index] = rule

    def set_when_called_with(self, args: list, rule: ResponseRule) -> None:
        # last write wins per argument tuple, and becomes the most recent match
        self.argument_matches = [
            (expected, r)
            for expected, r in self.argument_matches
            if not is_deep_equal(expected, args)
        ]
        self.argument_matches.append((args, rule))

    def resolve(self, call_index: int, args: Any) -> ResponseRule | None:
        if call_index in self.at_call:
            return self.at_call[call_index]

        for expected, rule in reversed(self.argument_matches):
            if is_deep_equal(args, expected):
                return rule

        return self.default

    def clear(self) -> None:
        self.default = None
        self.at_call = {}
        self.argument_matches = []


class WhenCalledWith:
    def __init__(self, program: ResponseProgram, args: list):
        self._program = program
        self._args = args

    def returns(self, value: Any = None) -> None:
        self._program.set_when_called_with(self._args, Returns(value))

    def reverts(self, reason: str | None = None) -> None:
        self._program.set_when_called_with(self._args, Reverts(reason))


class ProgrammableFunction(WatchableFunction):
    """
    Handle of one function of a fake or mock contract.

    Bundles the on-chain invocation (calling the handle), the call history
    and the programmed responses. Unprogrammed calls are answered with the
    zero value of the outputs, or left to the real code when `call_through`
    is set.
    """

    def __init__(
        self,
        vm: ObservableVM,
        contract,
        fun_info: FunctionInfo,
        nonces: NonceSequence,
        call_through: bool = False,
        trace: bool = False,
    ):
        calls = classify_calls(vm, contract.interface, contract.address, fun_info, nonces)
        super().__init__(fun_info.name, calls, pair_results(vm, calls))

        self.vm = vm
        self.contract = contract
        self.fun_info = fun_info
        self.encoder = FunctionEncoder(contract.interface, fun_info)
        self.program = ResponseProgram()
        self.call_through = call_through
        self.trace = trace
        self._call_index = 0

    def __call__(self, *args, value: int = 0, sender: str | None = None) -> Any:
        return self.contract.call_function(self.fun_info, args, value=value, sender=sender)

    #
    # programming
    #

    def returns(self, value: Any = None) -> None:
        self.program.set_default(Returns(value))

    def returns_at_call(self, index: int, value: Any = None) -> None:
        self.program.set_at_call(index, Returns(value))

    def reverts(self, reason: str | None = None) -> None:
        self.program.set_default(Reverts(reason))

    def reverts_at_call(self, index: int, reason: str | None = None) -> None:
        self.program.set_at_call(index, Reverts(reason))

    def when_called_with(self, *args: Any) -> WhenCalledWith:
        return WhenCalledWith(self.program, list(args))

    def reset(self) -> None:
        self.program.clear()
        self.reset_history()
        self._call_index = 0

    #
    # interception
    #

    def _record_call(self, call: ContractCall) -> None:
        super()._record_call(call)

        call_index = self._call_index
        self._call_index += 1

        outcome = self.resolve(call_index, call)
        if outcome is None:
            return

        if self.trace:
            debug(f"{rendered_call(self.name, call)} {rendered_outcome(outcome)}")

        self.vm.answer(outcome)

    def resolve(self, call_index: int, call: ContractCall) -> CallOutcome | None:
        try:
            rule = self.program.resolve(call_index, call.args)

            if rule is None:
                return None if self.call_through else Returned(self.encoder.default())

            if isinstance(rule, Reverts):
                return Reverted(rule.reason or "")

            value = run_sync(self._evaluate(rule.value, call.args))
            return Returned(self.encoder.encode(value))

        except Exception as err:
            # never leave the call unanswered
            return Faulted(err)

    def _evaluate(self, value: Any, args: Any) -> Any:
        if not callable(value):
            return value
        if isinstance(args, list):
            return value(*args)
        return value(args)
