from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Set

import httpx

from robojs.client.api import ApiClient, fetch_all_data, refetch_task
from robojs.client.connection import ConnectionManager, Connector
from robojs.client.errors import ApiResult
from robojs.client.store import ClientStore

logger = logging.getLogger(__name__)


class LiveSession:
    """
    Wires the REST client, the cache and the live connection for one login.

    start() loads everything once, then opens the websocket; reconnects reload
    through the same path.
    """

    def __init__(
        self,
        api_url: str,
        ws_url: str,
        token: str,
        *,
        health_check_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.store = ClientStore(on_stale_task=self._on_stale_task, on_reset=self._on_reset)
        self.store.set_session(token)
        self.api = ApiClient(api_url, token, transport=transport)
        self.connection = ConnectionManager(
            ws_url,
            token,
            self.store,
            reload_all=self.reload,
            connector=connector,
            health_check_seconds=health_check_seconds,
        )
        self._background: Set[asyncio.Task] = set()

    async def reload(self) -> ApiResult:
        return await fetch_all_data(self.api, self.store)

    async def start(self) -> ApiResult:
        res = await self.reload()
        await self.connection.start()
        return res

    async def close(self) -> None:
        await self.connection.close()
        for task in list(self._background):
            task.cancel()
        await self.api.aclose()

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_stale_task(self, task_id: Any) -> None:
        self._spawn(refetch_task(self.api, self.store, task_id))

    def _on_reset(self) -> None:
        logger.info("session reset; closing live connection")
        self._spawn(self.connection.close())
