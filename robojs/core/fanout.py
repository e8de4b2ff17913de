"""
Per-user websocket fanout.

Each authenticated connection gets its own FIFO queue drained by one sender
task, so a connection sees events in the order they were published. Events are
only ever routed to the connections of the row's owner.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from robojs.schemas.fanout import FanoutEvent

logger = logging.getLogger(__name__)

SendFn = Callable[[Dict[str, Any]], Awaitable[None]]
CloseFn = Callable[[], Awaitable[None]]


class Connection:
    def __init__(
        self,
        user_id: str,
        send: SendFn,
        *,
        close: Optional[CloseFn] = None,
        queue_size: int = 1000,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self._send = send
        self._close = close
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=max(1, queue_size))
        self.sender: Optional[asyncio.Task] = None
        self.dropped = False

    def __repr__(self) -> str:
        return f"Connection(id={self.id[:8]}, user={self.user_id})"


class ConnectionHub:
    def __init__(self, *, queue_size: int = 1000) -> None:
        self.queue_size = queue_size
        self._by_user: Dict[str, Set[Connection]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def connections_for(self, user_id: str) -> List[Connection]:
        return list(self._by_user.get(user_id, ()))

    @property
    def connection_count(self) -> int:
        return sum(len(v) for v in self._by_user.values())

    def register(self, user_id: str, send: SendFn, *, close: Optional[CloseFn] = None) -> Connection:
        """Must be called from the hub's event loop."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        conn = Connection(user_id, send, close=close, queue_size=self.queue_size)
        conn.sender = asyncio.create_task(self._drain(conn), name=f"fanout-{conn.id[:8]}")
        self._by_user.setdefault(user_id, set()).add(conn)
        logger.info("fanout: registered %r (user now has %s)", conn, len(self._by_user[user_id]))
        return conn

    async def unregister(self, conn: Connection) -> None:
        self._forget(conn)
        if conn.sender is not None and conn.sender is not asyncio.current_task():
            conn.sender.cancel()
            try:
                await conn.sender
            except asyncio.CancelledError:
                pass
        logger.info("fanout: unregistered %r", conn)

    def publish(self, user_id: str, ev: FanoutEvent) -> int:
        """Queue an event for every connection of `user_id`. Loop thread only."""
        message = ev.model_dump(mode="json")
        delivered = 0
        for conn in self.connections_for(user_id):
            try:
                conn.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("fanout: %r is not keeping up; dropping it", conn)
                self._drop(conn)
        return delivered

    def publish_threadsafe(self, user_id: str, ev: FanoutEvent) -> None:
        """Publish from any thread (sync request handlers, worker threads)."""
        loop = self._loop
        if loop is None:
            logger.debug("fanout: no loop bound; %s/%s not delivered", ev.type, ev.action)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self.publish(user_id, ev)
            return
        try:
            loop.call_soon_threadsafe(self.publish, user_id, ev)
        except RuntimeError:
            logger.warning("fanout: event loop closed; %s/%s not delivered", ev.type, ev.action)

    def _forget(self, conn: Connection) -> None:
        conns = self._by_user.get(conn.user_id)
        if conns is None:
            return
        conns.discard(conn)
        if not conns:
            self._by_user.pop(conn.user_id, None)

    def _drop(self, conn: Connection) -> None:
        if conn.dropped:
            return
        conn.dropped = True
        self._forget(conn)
        if conn.sender is not None and conn.sender is not asyncio.current_task():
            conn.sender.cancel()
        if conn._close is not None:
            # the client sees a closed socket and resyncs
            asyncio.ensure_future(self._close_quietly(conn))

    async def _close_quietly(self, conn: Connection) -> None:
        try:
            await conn._close()
        except Exception:
            logger.debug("fanout: close of %r failed", conn, exc_info=True)

    async def _drain(self, conn: Connection) -> None:
        while True:
            message = await conn.queue.get()
            try:
                await conn._send(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.info("fanout: send to %r failed (%s); dropping it", conn, exc)
                self._drop(conn)
                return


hub = ConnectionHub()


def get_hub() -> ConnectionHub:
    return hub
