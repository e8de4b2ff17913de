from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

import httpx

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    SESSION = "session"
    NETWORK = "network"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    detail: Any = None

    @property
    def ok(self) -> bool:
        return False


ApiResult = Union[Ok[T], Err]

_VALIDATION_STATUSES = {400, 409, 422}


def _detail_message(detail: Any, fallback: str) -> str:
    if isinstance(detail, str) and detail.strip():
        return detail.strip()
    if isinstance(detail, list) and detail:
        # FastAPI request validation: [{loc, msg, type}, ...]
        first = detail[0]
        if isinstance(first, dict) and first.get("msg"):
            return str(first["msg"])
    return fallback


def classify_error(exc: BaseException) -> Err:
    """
    The one place that decides what a failed API call means for the client.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        resp = exc.response
        try:
            body = resp.json()
        except ValueError:
            body = None
        detail = body.get("detail") if isinstance(body, dict) else None
        code = resp.status_code
        if code == 401:
            return Err(ErrorKind.SESSION, "Session terminated", status_code=code, detail=detail)
        if code in _VALIDATION_STATUSES:
            return Err(
                ErrorKind.VALIDATION,
                _detail_message(detail, f"Request rejected (HTTP {code})"),
                status_code=code,
                detail=detail,
            )
        return Err(
            ErrorKind.UNKNOWN,
            _detail_message(detail, f"Unknown error: HTTP {code}"),
            status_code=code,
            detail=detail,
        )
    if isinstance(exc, httpx.TransportError):
        return Err(ErrorKind.NETWORK, "Could not connect to server")
    return Err(ErrorKind.UNKNOWN, f"Unknown error: {exc}")
