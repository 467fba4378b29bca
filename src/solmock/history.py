# SPDX-License-Identifier: AGPL-3.0

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .events import EventStream, MessageResult, Subscription
from .exceptions import CallCountError, UnsupportedAlwaysModifier
from .matchers import is_deep_equal
from .utils import humanize_times, same_address


class NonceSequence:
    """Session-wide call counter used to order calls across contracts."""

    def __init__(self, start: int = 0):
        self._start = start
        self._next = start

    def next(self) -> int:
        nonce = self._next
        self._next += 1
        return nonce

    def peek(self) -> int:
        return self._next

    def reset(self) -> None:
        self._next = self._start


@dataclass(frozen=True)
class ContractCall:
    # decoded arguments, or the hex encoded call data for fallback calls
    args: list | str
    nonce: int
    value: int
    target: str
    delegated_from: str | None = None


class WatchableFunction:
    """
    Ordered record of the calls matched by one function of one contract,
    with the predicates used to make assertions about them.
    """

    def __init__(
        self,
        name: str,
        calls: EventStream[ContractCall] | None = None,
        results: EventStream[tuple[MessageResult, ContractCall]] | None = None,
    ):
        self.name = name
        self.call_history: list[ContractCall] = []
        self.call_results: dict[int, MessageResult] = {}
        self._subscriptions: list[Subscription] = []

        if calls is not None:
            self._subscriptions.append(calls.subscribe(self._record_call))
        if results is not None:
            self._subscriptions.append(results.subscribe(self._record_result))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, calls={self.call_count})"

    def __len__(self) -> int:
        return self.call_count

    def detach(self) -> None:
        """Stop watching for calls; the history recorded so far is kept."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    def _record_call(self, call: ContractCall) -> None:
        self.call_history.append(call)

    def _record_result(self, pair: tuple[MessageResult, ContractCall]) -> None:
        result, call = pair
        if any(c is call for c in self.call_history):
            self.call_results[call.nonce] = result

    #
    # call access
    #

    def get_call(self, index: int) -> ContractCall:
        if not 0 <= index < self.call_count:
            raise CallCountError(
                f"expected {self.name} to have been called {humanize_times(index + 1)}, "
                f"but it was called {humanize_times(self.call_count)}"
            )
        return self.call_history[index]

    def get_call_result(self, index: int) -> MessageResult | None:
        return self.call_results.get(self.get_call(index).nonce)

    def at_call(self, index: int) -> "WatchableFunction":
        call = self.get_call(index)
        view = WatchableFunction(self.name)
        view.call_history.append(call)
        if call.nonce in self.call_results:
            view.call_results[call.nonce] = self.call_results[call.nonce]
        return view

    @property
    def always(self) -> "AlwaysModifier":
        return AlwaysModifier(self)

    #
    # call counts
    #

    @property
    def call_count(self) -> int:
        return len(self.call_history)

    @property
    def called(self) -> bool:
        return self.call_count > 0

    @property
    def called_once(self) -> bool:
        return self.call_count == 1

    @property
    def called_twice(self) -> bool:
        return self.call_count == 2

    @property
    def called_thrice(self) -> bool:
        return self.call_count == 3

    def called_times(self, n: int) -> bool:
        return self.call_count == n

    #
    # call arguments
    #

    def called_with(self, *expected_args: Any) -> bool:
        return any(
            is_deep_equal(call.args, list(expected_args)) for call in self.call_history
        )

    def always_called_with(self, *expected_args: Any) -> bool:
        return self.called and all(
            is_deep_equal(call.args, list(expected_args)) for call in self.call_history
        )

    def called_once_with(self, *expected_args: Any) -> bool:
        return self.called_once and self.called_with(*expected_args)

    def called_with_value(self, value: int) -> bool:
        return any(call.value == value for call in self.call_history)

    def delegated_from(self, delegator: str) -> bool:
        return any(
            same_address(call.delegated_from, delegator) for call in self.call_history
        )

    #
    # call ordering
    #

    def _compare_nonces(
        self, other: "WatchableFunction", comparison: Callable[[int, int], bool]
    ) -> bool:
        return any(
            comparison(a.nonce, b.nonce)
            for a in self.call_history
            for b in other.call_history
        )

    def called_before(self, other: "WatchableFunction") -> bool:
        return self._compare_nonces(other, lambda a, b: a < b)

    def called_after(self, other: "WatchableFunction") -> bool:
        return self._compare_nonces(other, lambda a, b: a > b)

    def called_immediately_before(self, other: "WatchableFunction") -> bool:
        return self._compare_nonces(other, lambda a, b: a == b - 1)

    def called_immediately_after(self, other: "WatchableFunction") -> bool:
        return self._compare_nonces(other, lambda a, b: a == b + 1)

    def always_called_before(self, other: "WatchableFunction") -> bool:
        if not self.called or not other.called:
            return False
        return self.call_history[-1].nonce < other.call_history[0].nonce

    def always_called_after(self, other: "WatchableFunction") -> bool:
        if not self.called or not other.called:
            return False
        return self.call_history[0].nonce > other.call_history[-1].nonce

    def always_called_immediately_before(self, other: "WatchableFunction") -> bool:
        if not self.called or self.call_count != other.call_count:
            return False
        return all(
            a.nonce == b.nonce - 1
            for a, b in zip(self.call_history, other.call_history)
        )

    def always_called_immediately_after(self, other: "WatchableFunction") -> bool:
        if not self.called or self.call_count != other.call_count:
            return False
        return all(
            a.nonce == b.nonce + 1
            for a, b in zip(self.call_history, other.call_history)
        )

    def reset_history(self) -> None:
        self.call_history = []
        self.call_results = {}


class AlwaysModifier:
    """
    `fn.always.called_with(...)` is `fn.always_called_with(...)`; predicates
    without an "always" variant are rejected.
    """

    SUPPORTED = {
        "called_with",
        "called_before",
        "called_after",
        "called_immediately_before",
        "called_immediately_after",
    }

    def __init__(self, watchable: WatchableFunction):
        self._watchable = watchable

    def __getattr__(self, predicate: str):
        if predicate.startswith("_"):
            raise AttributeError(predicate)
        if predicate not in self.SUPPORTED:
            raise UnsupportedAlwaysModifier(predicate)
        return getattr(self._watchable, f"always_{predicate}")
