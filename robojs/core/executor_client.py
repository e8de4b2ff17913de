from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from robojs.core.config import get_settings
from robojs.core.errors import InvocationError


def _error_text(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        for k in ("errorMessage", "error", "detail", "message"):
            v = data.get(k)
            if isinstance(v, str) and v.strip():
                return v.strip()
    return fallback


async def execute_code(
    code: str,
    prev_result: Any = None,
    *,
    url: str = "",
    timeout_seconds: Optional[float] = None,
    trace_id: str = "",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    Call the code-execution service:
      request  {code, prevResult}
      response {result, notification}

    Raises InvocationError when the service is unreachable or reports an error
    (non-2xx, non-JSON body, or a bare `errorMessage` payload). The payload shape
    itself is NOT checked here; see robojs.core.execution.validate_payload.
    """
    settings = get_settings()
    target = (url or settings.EXECUTOR_URL or "").strip()
    if not target:
        raise InvocationError("execution service not configured")

    timeout = max(1.0, float(timeout_seconds or settings.EXECUTOR_TIMEOUT_SECONDS or 30))
    headers: Optional[Dict[str, str]] = {"x-trace-id": trace_id} if trace_id else None
    payload: Dict[str, Any] = {"code": code or "", "prevResult": prev_result}

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.post(target, json=payload, headers=headers)
    except httpx.TimeoutException:
        raise InvocationError(f"execution timed out after {timeout:g}s")
    except httpx.HTTPError as exc:
        raise InvocationError(f"execution service unavailable: {exc}")

    try:
        data = resp.json()
    except ValueError:
        data = None

    if resp.status_code >= 400:
        raise InvocationError(_error_text(data, f"execution service returned HTTP {resp.status_code}"))

    if data is None:
        raise InvocationError("execution service returned a non-JSON response")

    # the runtime reports uncaught script errors as {errorMessage, errorType, ...}
    if isinstance(data, dict) and "result" not in data and "errorMessage" in data:
        raise InvocationError(_error_text(data, "execution failed"))

    return data


class HttpExecutionCapability:
    """ExecutionCapability bound to one service URL."""

    def __init__(
        self,
        url: str = "",
        *,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def __call__(self, code: str, prev_result: Any = None) -> Dict[str, Any]:
        return await execute_code(
            code,
            prev_result,
            url=self.url,
            timeout_seconds=self.timeout_seconds,
            transport=self.transport,
        )
