# SPDX-License-Identifier: AGPL-3.0

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Message:
    """Pre-call event emitted by the execution environment."""

    data: bytes
    value: int
    caller: str
    to: str | None
    delegatecall: bool = False
    # address whose code runs; differs from `to` for delegate calls
    code_address: str | None = None
    depth: int = 0

    @property
    def target(self) -> str | None:
        return self.code_address if self.delegatecall else self.to


@dataclass(frozen=True)
class MessageResult:
    """Post-call event, one per completed message."""

    return_data: bytes
    reverted: bool = False
    error: Exception | None = None
    depth: int = 0


class Subscription:
    def __init__(self, stream: "EventStream", callback: Callable):
        self.stream = stream
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.stream._remove(self.callback)


class EventStream(Generic[T]):
    """
    Synchronous, ordered, multicast stream of events.

    Derived streams (filter, map, ...) subscribe once to their parent and
    fan out to their own subscribers, so an operator runs exactly once per
    upstream event no matter how many subscribers there are. Once its last
    subscriber leaves, a derived stream unsubscribes from its parents.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._callbacks: list[Callable[[T], Any]] = []
        # subscriptions of a derived stream to its parents
        self._upstream: list[Subscription] = []

    def __repr__(self) -> str:
        return f"EventStream({self.name!r}, subscribers={self.subscriber_count})"

    def subscribe(self, callback: Callable[[T], Any]) -> Subscription:
        self._callbacks.append(callback)
        return Subscription(self, callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def _remove(self, callback: Callable) -> None:
        for i, cb in enumerate(self._callbacks):
            if cb is callback:
                del self._callbacks[i]
                break

        # a derived stream nobody listens to lets go of its parents for good
        if not self._callbacks and self._upstream:
            upstream, self._upstream = self._upstream, []
            for subscription in upstream:
                subscription.unsubscribe()

    def emit(self, item: T) -> None:
        # copy: callbacks may subscribe or unsubscribe while being notified
        for callback in list(self._callbacks):
            callback(item)

    def filter(self, predicate: Callable[[T], bool]) -> "EventStream[T]":
        derived = EventStream(f"{self.name}|filter")

        def on_item(item):
            if predicate(item):
                derived.emit(item)

        derived._upstream.append(self.subscribe(on_item))
        return derived

    def map(self, fn: Callable[[T], U]) -> "EventStream[U]":
        derived = EventStream(f"{self.name}|map")
        derived._upstream.append(self.subscribe(lambda item: derived.emit(fn(item))))
        return derived

    def with_latest_from(
        self, other: "EventStream[U]", distinct: bool = False
    ) -> "EventStream[tuple[T, U]]":
        """
        Pair every item with the latest item seen on `other`.

        Items arriving before `other` has produced anything are dropped. With
        `distinct`, an item of `other` is used for at most one pair.
        """

        derived = EventStream(f"{self.name}|with_latest_from")
        latest = []
        used = []

        def on_other(item):
            latest[:] = [item]

        def on_item(item):
            if not latest:
                return
            other_item = latest[0]
            if distinct and any(u is other_item for u in used):
                return
            if distinct:
                used[:] = [other_item]
            derived.emit((item, other_item))

        derived._upstream.append(other.subscribe(on_other))
        derived._upstream.append(self.subscribe(on_item))
        return derived
