from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from robojs.client.errors import ApiResult, Err, ErrorKind, Ok, classify_error
from robojs.client.store import ClientStore

logger = logging.getLogger(__name__)


class ApiClient:
    """REST calls used by the client. Every call returns Ok(value) or Err; nothing raises."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout_seconds, transport=transport
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> ApiResult:
        headers: Dict[str, str] = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = await self._client.request(method, path, headers=headers, **kwargs)
            resp.raise_for_status()
            return Ok(resp.json() if resp.content else None)
        except httpx.HTTPError as exc:
            return classify_error(exc)
        except ValueError as exc:
            return Err(ErrorKind.UNKNOWN, f"Unknown error: invalid response ({exc})")

    async def list_collections(self) -> ApiResult:
        return await self._request("GET", "/collections")

    async def list_tasks(self) -> ApiResult:
        return await self._request("GET", "/tasks")

    async def get_task(self, task_id: Any) -> ApiResult:
        return await self._request("GET", f"/tasks/{task_id}")

    async def update_task(self, task_id: Any, data: Dict[str, Any]) -> ApiResult:
        return await self._request("PUT", f"/tasks/{task_id}", json=data)

    async def run_task(self, task_id: Any) -> ApiResult:
        # enabling a task re-arms it for the next cycle
        return await self.update_task(task_id, {"active": True})

    async def list_unread_notifications(self) -> ApiResult:
        return await self._request("GET", "/notifications")

    async def mark_notification_read(self, notification_id: Any) -> ApiResult:
        return await self._request("PUT", f"/notifications/{notification_id}/read")


def handle_error(err: Err, store: ClientStore) -> Optional[Err]:
    """
    Shared reaction to a failed call. A dead session logs the user out and is
    fully handled here (returns None); anything else is returned for the caller.
    """
    if err.kind is ErrorKind.SESSION:
        logger.info("session rejected by server; resetting")
        store.reset()
        return None
    logger.warning("api call failed (%s): %s", err.kind.value, err.message)
    return err


async def fetch_all_data(api: ApiClient, store: ClientStore) -> ApiResult:
    """Full resync: collections, tasks (with latest result) and unread notifications."""
    collections = await api.list_collections()
    if isinstance(collections, Err):
        return handle_error(collections, store) or collections
    tasks = await api.list_tasks()
    if isinstance(tasks, Err):
        return handle_error(tasks, store) or tasks
    notifications = await api.list_unread_notifications()
    if isinstance(notifications, Err):
        return handle_error(notifications, store) or notifications

    store.replace_all(
        collections=collections.value or [],
        tasks=tasks.value or [],
        notifications=notifications.value or [],
    )
    return Ok(None)


async def refetch_task(api: ApiClient, store: ClientStore, task_id: Any) -> ApiResult:
    res = await api.get_task(task_id)
    if isinstance(res, Err):
        return handle_error(res, store) or res
    if isinstance(res.value, dict):
        store.put_task(res.value)
    return res
