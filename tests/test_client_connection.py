# tests/test_client_connection.py

from __future__ import annotations

import asyncio

import httpx
import pytest
from websockets.protocol import State

from robojs.client.connection import ConnectionManager, ConnectionState
from robojs.client.session import LiveSession
from robojs.client.store import ClientStore

from .fakes import FakeConnector

URL = "ws://api.test/ws"


async def eventually(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def make_manager(connector, reloads, *, health: float = 60.0, store=None) -> ConnectionManager:
    async def reload_all() -> None:
        reloads.append(True)

    return ConnectionManager(
        URL,
        "tok",
        store or ClientStore(),
        reload_all=reload_all,
        connector=connector,
        health_check_seconds=health,
    )


@pytest.mark.asyncio
async def test_start_authenticates_and_applies_pushed_events() -> None:
    store = ClientStore()
    store.replace_all(collections=[], tasks=[{"id": 1, "name": "a", "result": None}], notifications=[])
    connector, reloads = FakeConnector(), []
    manager = make_manager(connector, reloads, store=store)

    await manager.start()
    connector.latest.feed({"type": "task", "action": "update", "payload": {"id": 1, "name": "b"}})
    await eventually(lambda: store.snapshot.tasks[1]["name"] == "b")

    assert manager.state is ConnectionState.AUTHENTICATED
    assert connector.latest.sent == [{"type": "authenticate", "payload": {"token": "tok"}}]
    assert reloads == []
    await manager.close()


@pytest.mark.asyncio
async def test_unexpected_close_reconnects_and_reloads_exactly_once() -> None:
    connector, reloads = FakeConnector(), []
    # the health check and the receive loop both notice the outage
    manager = make_manager(connector, reloads, health=0.01)
    await manager.start()

    connector.latest.drop()
    await eventually(lambda: len(connector.sockets) == 2 and manager.state is ConnectionState.AUTHENTICATED)
    await asyncio.sleep(0.05)

    assert len(connector.sockets) == 2
    assert reloads == [True]
    assert connector.latest.sent == [{"type": "authenticate", "payload": {"token": "tok"}}]
    await manager.close()


@pytest.mark.asyncio
async def test_failed_reconnects_are_retried_by_health_check() -> None:
    connector, reloads = FakeConnector(), []
    manager = make_manager(connector, reloads, health=0.01)
    await manager.start()

    connector.fail_next = 3
    connector.latest.drop()
    await eventually(lambda: len(connector.sockets) == 2 and manager.state is ConnectionState.AUTHENTICATED)

    assert connector.fail_next == 0
    assert reloads == [True]
    await manager.close()


@pytest.mark.asyncio
async def test_intentional_close_never_reconnects() -> None:
    connector, reloads = FakeConnector(), []
    manager = make_manager(connector, reloads, health=0.01)
    await manager.start()
    ws = connector.latest

    await manager.close()
    await asyncio.sleep(0.05)

    assert manager.state is ConnectionState.CLOSED
    assert ws.sent[-1] == {"type": "close", "payload": {"token": "tok"}}
    assert len(connector.sockets) == 1
    assert reloads == []


@pytest.mark.asyncio
async def test_live_session_reloads_then_logs_out_on_user_delete() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        bodies = {
            "/collections": [{"id": 1, "name": "c"}],
            "/tasks": [{"id": 2, "collection_id": 1, "result": None}],
            "/notifications": [],
        }
        return httpx.Response(200, json=bodies[request.url.path])

    connector = FakeConnector()
    session = LiveSession(
        "http://api.test",
        URL,
        "tok",
        transport=httpx.MockTransport(handler),
        connector=connector,
        health_check_seconds=60,
    )

    res = await session.start()
    assert res.ok is True
    assert list(session.store.snapshot.tasks) == [2]

    connector.latest.feed({"type": "user", "action": "delete", "payload": {"id": "u-1"}})
    await eventually(lambda: session.connection.state is ConnectionState.CLOSED)

    assert session.store.snapshot.token is None
    assert session.store.snapshot.tasks == {}
    await session.close()


@pytest.mark.asyncio
async def test_close_during_reconnect_reload_stays_closed() -> None:
    connector = FakeConnector()
    reloading = asyncio.Event()
    release = asyncio.Event()

    async def slow_reload() -> None:
        reloading.set()
        await release.wait()

    manager = ConnectionManager(
        URL, "tok", ClientStore(), reload_all=slow_reload, connector=connector, health_check_seconds=60
    )
    await manager.start()

    connector.latest.drop()
    await asyncio.wait_for(reloading.wait(), timeout=2)
    await manager.close()
    release.set()
    await asyncio.sleep(0.05)

    assert manager.state is ConnectionState.CLOSED
    assert len(connector.sockets) == 2
    # the reconnected socket was closed without ever authenticating
    assert {"type": "authenticate", "payload": {"token": "tok"}} not in connector.latest.sent
    assert connector.latest.state is State.CLOSED
