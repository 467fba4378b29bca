import pytest

from solmock.events import EventStream, Message, MessageResult
from solmock.vm import ObservableVM, Returned, Reverted


def test_filter_and_map():
    stream = EventStream("numbers")
    seen = []
    stream.filter(lambda x: x % 2 == 0).map(lambda x: x * 10).subscribe(seen.append)

    for i in range(5):
        stream.emit(i)

    assert seen == [0, 20, 40]


def test_derived_stream_runs_once_per_event():
    stream = EventStream()
    calls = []

    def expensive(x):
        calls.append(x)
        return x + 1

    derived = stream.map(expensive)
    first, second = [], []
    derived.subscribe(first.append)
    derived.subscribe(second.append)

    stream.emit(1)

    assert calls == [1]
    assert first == second == [2]


def test_unsubscribe():
    stream = EventStream()
    seen = []
    subscription = stream.subscribe(seen.append)

    stream.emit(1)
    subscription.unsubscribe()
    stream.emit(2)

    assert seen == [1]


def test_unsubscribe_releases_derived_streams():
    items, others = EventStream(), EventStream()
    seen = []
    derived = items.filter(lambda x: x > 0).map(str).with_latest_from(others)
    first = derived.subscribe(seen.append)
    second = derived.subscribe(seen.append)

    first.unsubscribe()
    assert items.subscriber_count == 1

    second.unsubscribe()
    second.unsubscribe()
    assert items.subscriber_count == 0
    assert others.subscriber_count == 0


def test_with_latest_from():
    items, others = EventStream(), EventStream()
    pairs = []
    items.with_latest_from(others).subscribe(pairs.append)

    items.emit("dropped")  # nothing seen on the other stream yet
    others.emit("a")
    items.emit(1)
    items.emit(2)
    others.emit("b")
    items.emit(3)

    assert pairs == [(1, "a"), (2, "a"), (3, "b")]


def test_with_latest_from_distinct():
    items, others = EventStream(), EventStream()
    pairs = []
    items.with_latest_from(others, distinct=True).subscribe(pairs.append)

    others.emit("a")
    items.emit(1)
    items.emit(2)  # "a" was already paired
    others.emit("b")
    items.emit(3)

    assert pairs == [(1, "a"), (3, "b")]


def test_message_target():
    call = Message(data=b"", value=0, caller="0x01", to="0x02")
    assert call.target == "0x02"

    delegated = Message(
        data=b"", value=0, caller="0x01", to="0x02", delegatecall=True, code_address="0x03"
    )
    assert delegated.target == "0x03"


#
# ObservableVM
#


@pytest.fixture
def observable():
    return ObservableVM(manager=None)


def message(to="0x02", data=b""):
    return Message(data=data, value=0, caller="0x01", to=to)


def test_unanswered_message(observable):
    seen = []
    observable.before_messages.subscribe(seen.append)

    assert observable.on_message(message()) is None
    assert len(seen) == 1


def test_answered_message(observable):
    observable.before_messages.subscribe(lambda m: observable.answer(Returned(b"\x01")))

    assert observable.on_message(message()) == Returned(b"\x01")

    # answers do not leak into the next dispatch
    observable.before_messages._callbacks.clear()
    assert observable.on_message(message()) is None


def test_last_answer_wins(observable):
    observable.before_messages.subscribe(lambda m: observable.answer(Returned(b"")))
    observable.before_messages.subscribe(lambda m: observable.answer(Reverted("no")))

    assert observable.on_message(message()) == Reverted("no")


def test_answer_outside_dispatch(observable):
    with pytest.raises(RuntimeError):
        observable.answer(Returned(b""))


def test_nested_dispatch(observable):
    def on_message(m):
        if m.to == "0x02":
            # a message dispatched while another one is being classified
            assert observable.on_message(message(to="0x03")) is None
            observable.answer(Returned(b"\x02"))

    observable.before_messages.subscribe(on_message)

    assert observable.on_message(message(to="0x02")) == Returned(b"\x02")


def test_results(observable):
    results = []
    observable.after_messages.subscribe(results.append)

    observable.on_result(MessageResult(b"\x01"))

    assert results == [MessageResult(b"\x01")]


def test_reverted_data():
    assert Reverted("").data == b""
    assert Reverted("oops").data[:4] == bytes.fromhex("08c379a0")
