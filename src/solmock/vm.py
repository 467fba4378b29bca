# SPDX-License-Identifier: AGPL-3.0

from dataclasses import dataclass
from typing import Protocol

from .abi import encode_revert_reason
from .events import EventStream, Message, MessageResult
from .logs import debug


class VMManager(Protocol):
    """Raw state primitives of the execution environment."""

    def put_contract_code(self, address: str, code: bytes) -> None: ...

    def get_contract_storage(self, address: str, slot: bytes) -> bytes: ...

    def put_contract_storage(self, address: str, slot: bytes, value: bytes) -> None: ...


#
# Outcome of an intercepted call
#


@dataclass(frozen=True)
class Returned:
    data: bytes


@dataclass(frozen=True)
class Reverted:
    """A programmed revert; not an error from the interceptor's point of view."""

    reason: str | None = None

    @property
    def data(self) -> bytes:
        return encode_revert_reason(self.reason)


@dataclass(frozen=True)
class Faulted:
    """The interceptor failed to produce an answer."""

    error: Exception


CallOutcome = Returned | Reverted | Faulted


class ObservableVM:
    """
    Bridge between the execution environment and the interceptors.

    The environment reports every message with `on_message()` before running
    it and every completion with `on_result()`. Interceptors subscribe to the
    event streams and, while a message is being dispatched, may claim it by
    registering an outcome with `answer()`.
    """

    def __init__(self, manager: VMManager):
        self.manager = manager
        self.before_messages: EventStream[Message] = EventStream("before_messages")
        self.after_messages: EventStream[MessageResult] = EventStream("after_messages")
        self._dispatching: Message | None = None
        self._answer: CallOutcome | None = None

    def get_manager(self) -> VMManager:
        return self.manager

    def on_message(self, message: Message) -> CallOutcome | None:
        """Dispatch a pre-call event; returns the outcome if it was intercepted."""

        previous = (self._dispatching, self._answer)
        self._dispatching, self._answer = message, None
        try:
            self.before_messages.emit(message)
            return self._answer
        finally:
            self._dispatching, self._answer = previous

    def on_result(self, result: MessageResult) -> None:
        self.after_messages.emit(result)

    def answer(self, outcome: CallOutcome) -> None:
        if self._dispatching is None:
            raise RuntimeError("answer() called outside of message dispatch")
        if self._answer is not None:
            debug(f"message to {self._dispatching.target} answered more than once")
        self._answer = outcome
