"""
Execution contract and outcome types.

The code-execution capability is opaque: we hand it `{code, prevResult}` and get
back a loosely-typed payload. Nothing downstream trusts that payload directly;
`validate_payload` turns it into a `Success` or raises, and `invoke_task` folds
every way an attempt can go wrong into a `Failure`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from robojs.core.errors import ExecutionContractViolation, InvocationError

logger = logging.getLogger(__name__)

# max serialized length for `result` and `notification`
MAX_RETURN_LENGTH = 2048

# (code, prev_result) -> raw payload
ExecutionCapability = Callable[[str, Any], Awaitable[Any]]


@dataclass(frozen=True)
class Success:
    result: Any
    notification: Optional[str]


@dataclass(frozen=True)
class Failure:
    message: str


Outcome = Union[Success, Failure]


def dump_json(value: Any) -> str:
    # compact form, matches what the execution runtime produces
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def serialized_length(value: Any) -> int:
    try:
        return len(dump_json(value))
    except (TypeError, ValueError):
        raise ExecutionContractViolation("result is not JSON serializable")


def validate_payload(payload: Any) -> Success:
    if not isinstance(payload, dict) or "result" not in payload:
        raise ExecutionContractViolation("result cannot be undefined")

    result = payload["result"]
    notification = payload.get("notification")

    if notification is not None and not isinstance(notification, str):
        raise ExecutionContractViolation("notification must be a string or null")

    if serialized_length(result) > MAX_RETURN_LENGTH:
        raise ExecutionContractViolation("result value too large")

    if serialized_length(notification) > MAX_RETURN_LENGTH:
        raise ExecutionContractViolation("notification value too large")

    return Success(result=result, notification=notification)


async def invoke_task(
    capability: ExecutionCapability,
    *,
    code: str,
    prev_result: Any = None,
    timeout_seconds: float = 30.0,
) -> Outcome:
    """
    Run one execution attempt. Never raises; no retries.
    """
    timeout = max(0.001, float(timeout_seconds or 30.0))
    try:
        payload = await asyncio.wait_for(capability(code, prev_result), timeout=timeout)
        return validate_payload(payload)
    except asyncio.TimeoutError:
        return Failure(message=f"execution timed out after {timeout:g}s")
    except (ExecutionContractViolation, InvocationError) as exc:
        return Failure(message=str(exc))
    except Exception as exc:
        logger.debug("execution capability raised %s", type(exc).__name__, exc_info=True)
        return Failure(message=str(exc) or type(exc).__name__)
