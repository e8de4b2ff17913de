"""
One logical websocket connection per client session.

    Disconnected -> Connecting -> Authenticated -> (Closed | Disconnected)

An unexpected close (seen by the receive loop or by the periodic health check)
leads to a reconnect with is_reconnect=True, which reloads all data instead of
trying to replay what was missed. An intentional close detaches that trigger
before anything else, so it never reconnects.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from robojs.client.store import ClientStore

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


def socket_closed(ws: Any) -> bool:
    return ws is None or getattr(ws, "state", None) is State.CLOSED


class ConnectionManager:
    def __init__(
        self,
        url: str,
        token: str,
        store: ClientStore,
        *,
        reload_all: Callable[[], Awaitable[Any]],
        connector: Optional[Connector] = None,
        health_check_seconds: float = 5.0,
    ) -> None:
        self.url = url
        self.token = token
        self.store = store
        self.reload_all = reload_all
        self.health_check_seconds = health_check_seconds
        self._connector: Connector = connector or ws_connect
        self.state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._receiver: Optional[asyncio.Task] = None
        self._health: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        # the "close handler": cleared by an intentional close
        self._reconnect_on_close = True

    @property
    def websocket(self) -> Any:
        return self._ws

    async def start(self) -> None:
        await self.connect(is_reconnect=False)
        if self._health is None and self._reconnect_on_close:
            self._health = asyncio.create_task(self._health_check_loop(), name="ws-health-check")

    async def connect(self, *, is_reconnect: bool) -> bool:
        async with self._lock:
            if not self._reconnect_on_close:
                return False
            if (
                is_reconnect
                and self.state is ConnectionState.AUTHENTICATED
                and not socket_closed(self._ws)
            ):
                # another path already reconnected
                return False

            self._stop_receiver()
            self.state = ConnectionState.CONNECTING
            try:
                ws = await self._connector(self.url)
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                logger.warning("ws: connect to %s failed: %s", self.url, exc)
                self._ws = None
                self.state = ConnectionState.DISCONNECTED
                return False

            if not self._reconnect_on_close:
                # closed intentionally while we were connecting
                await self._close_quietly(ws)
                return False

            self._ws = ws
            logger.info("ws: connected%s", " (reconnect)" if is_reconnect else "")

            if is_reconnect:
                logger.info("ws: reloading data")
                try:
                    await self.reload_all()
                except Exception:
                    logger.exception("ws: reload after reconnect failed")
                if not self._reconnect_on_close:
                    # closed intentionally during the reload
                    return False

            try:
                await ws.send(json.dumps({"type": "authenticate", "payload": {"token": self.token}}))
            except (ConnectionClosed, OSError) as exc:
                logger.warning("ws: authenticate failed: %s", exc)
                if self.state is not ConnectionState.CLOSED:
                    self.state = ConnectionState.DISCONNECTED
                return False
            if not self._reconnect_on_close:
                return False

            self.state = ConnectionState.AUTHENTICATED
            self._receiver = asyncio.create_task(self._receive(ws), name="ws-receive")
            return True

    async def close(self) -> None:
        """Intentional disconnect (logout, shutdown). Never followed by a reconnect."""
        self._reconnect_on_close = False
        if self._health is not None:
            self._health.cancel()
            await self._wait_cancelled(self._health)
            self._health = None

        self.state = ConnectionState.CLOSED
        ws = self._ws
        if ws is not None:
            try:
                await ws.send(json.dumps({"type": "close", "payload": {"token": self.token}}))
            except (ConnectionClosed, OSError) as exc:
                logger.debug("ws: close notice not sent: %s", exc)
            await self._close_quietly(ws)
        self._stop_receiver()
        logger.info("ws: closed")

    async def _receive(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("ws: dropping non-JSON frame")
                    continue
                if isinstance(message, dict):
                    logger.debug("ws: received %s=>%s", message.get("type"), message.get("action"))
                    self.store.apply_event(message)
        except ConnectionClosed:
            pass
        except Exception:
            logger.exception("ws: receive loop failed")

        if ws is not self._ws:
            # superseded by a newer connection
            return
        await self._on_unexpected_close()

    async def _on_unexpected_close(self) -> None:
        if not self._reconnect_on_close:
            return
        logger.info("ws: connection lost; reconnecting")
        self.state = ConnectionState.DISCONNECTED
        await self.connect(is_reconnect=True)

    async def _health_check_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_check_seconds)
            if not self._reconnect_on_close:
                return
            if socket_closed(self._ws) and self.state is not ConnectionState.CONNECTING:
                logger.info("ws: health check found the connection closed")
                await self.connect(is_reconnect=True)

    def _stop_receiver(self) -> None:
        task = self._receiver
        self._receiver = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    @staticmethod
    async def _wait_cancelled(task: asyncio.Task) -> None:
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    @staticmethod
    async def _close_quietly(ws: Any) -> None:
        try:
            await ws.close()
        except (ConnectionClosed, OSError) as exc:
            logger.debug("ws: close failed: %s", exc)
