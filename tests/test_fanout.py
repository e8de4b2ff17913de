# tests/test_fanout.py

from __future__ import annotations

import asyncio
import threading

import pytest

from robojs.core.fanout import ConnectionHub
from robojs.schemas.fanout import FanoutEvent


def ev(n: int, kind: str = "task") -> FanoutEvent:
    return FanoutEvent(type=kind, action="update", payload={"id": n})


class Sink:
    def __init__(self, *, fail: bool = False) -> None:
        self.messages = []
        self.closed = False
        self.fail = fail

    async def send(self, message) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        self.messages.append(message)

    async def close(self) -> None:
        self.closed = True


async def settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_events_reach_only_the_owners_connections_in_order() -> None:
    hub = ConnectionHub()
    a1, a2, b = Sink(), Sink(), Sink()
    hub.register("alice", a1.send)
    hub.register("alice", a2.send)
    hub.register("bob", b.send)

    for n in range(3):
        assert hub.publish("alice", ev(n)) == 2
    await settle()

    expected = [{"type": "task", "action": "update", "payload": {"id": n}} for n in range(3)]
    assert a1.messages == expected
    assert a2.messages == expected
    assert b.messages == []


@pytest.mark.asyncio
async def test_unregistered_connection_gets_nothing() -> None:
    hub = ConnectionHub()
    sink = Sink()
    conn = hub.register("alice", sink.send)

    await hub.unregister(conn)

    assert hub.publish("alice", ev(1)) == 0
    assert hub.connection_count == 0


@pytest.mark.asyncio
async def test_failed_send_drops_connection_and_closes_it() -> None:
    hub = ConnectionHub()
    broken = Sink(fail=True)
    hub.register("alice", broken.send, close=broken.close)

    hub.publish("alice", ev(1))
    await settle()

    assert hub.connections_for("alice") == []
    assert broken.closed is True


@pytest.mark.asyncio
async def test_slow_consumer_is_dropped_when_queue_overflows() -> None:
    hub = ConnectionHub(queue_size=2)
    gate = asyncio.Event()
    sink = Sink()

    async def stuck(message) -> None:
        await gate.wait()

    hub.register("alice", stuck, close=sink.close)
    delivered = [hub.publish("alice", ev(n)) for n in range(5)]
    await settle()

    assert 0 in delivered
    assert hub.connection_count == 0
    assert sink.closed is True


@pytest.mark.asyncio
async def test_publish_threadsafe_from_worker_thread() -> None:
    hub = ConnectionHub()
    hub.bind_loop(asyncio.get_running_loop())
    sink = Sink()
    hub.register("alice", sink.send)

    t = threading.Thread(target=hub.publish_threadsafe, args=("alice", ev(9, "result")))
    t.start()
    t.join()
    await settle()

    assert sink.messages == [{"type": "result", "action": "update", "payload": {"id": 9}}]
