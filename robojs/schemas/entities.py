from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from robojs.models.collection import Collection
from robojs.models.notification import Notification
from robojs.models.result import Result
from robojs.models.task import Task
from robojs.models.user import User


class UserOut(BaseModel):
    id: str
    email: str
    name: str
    role: str


class CollectionOut(BaseModel):
    id: int
    user_id: str
    name: str
    description: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class ResultOut(BaseModel):
    id: int
    task_id: int
    user_id: str
    result: Any
    is_error: bool
    created_at: Optional[datetime]


class NotificationOut(BaseModel):
    id: int
    task_id: int
    user_id: str
    result_id: int
    notification: str
    is_read: bool
    created_at: Optional[datetime]


class TaskOut(BaseModel):
    id: int
    user_id: str
    collection_id: int
    name: str
    description: str
    code: str
    interval: int
    active: bool
    next_run: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    result: Optional[ResultOut] = None


class ResultWithNotificationOut(ResultOut):
    notification: Optional[NotificationOut] = None


class TaskUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    code: Optional[str] = None
    interval: Optional[int] = Field(default=None, ge=1)
    active: Optional[bool] = None
    collection_id: Optional[int] = None


def as_utc_aware(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        # DB stores naive UTC; tag it so clients can interpret correctly
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _result_value(r: Result) -> Any:
    if r.is_error:
        return r.result
    try:
        return json.loads(r.result)
    except (TypeError, ValueError):
        return r.result


def user_out(u: User) -> UserOut:
    return UserOut(id=u.id, email=u.email, name=u.name or "", role=u.role or "free")


def collection_out(c: Collection) -> CollectionOut:
    return CollectionOut(
        id=c.id,
        user_id=c.user_id,
        name=c.name,
        description=c.description or "",
        created_at=as_utc_aware(c.created_at),
        updated_at=as_utc_aware(c.updated_at),
    )


def result_out(r: Result) -> ResultOut:
    return ResultOut(
        id=r.id,
        task_id=r.task_id,
        user_id=r.user_id,
        result=_result_value(r),
        is_error=bool(r.is_error),
        created_at=as_utc_aware(r.created_at),
    )


def notification_out(n: Notification) -> NotificationOut:
    return NotificationOut(
        id=n.id,
        task_id=n.task_id,
        user_id=n.user_id,
        result_id=n.result_id,
        notification=n.notification,
        is_read=bool(n.is_read),
        created_at=as_utc_aware(n.created_at),
    )


def task_out(t: Task, latest: Optional[Result] = None) -> TaskOut:
    return TaskOut(
        id=t.id,
        user_id=t.user_id,
        collection_id=t.collection_id,
        name=t.name,
        description=t.description or "",
        code=t.code or "",
        interval=int(t.interval or 0),
        active=bool(t.active),
        next_run=as_utc_aware(t.next_run),
        created_at=as_utc_aware(t.created_at),
        updated_at=as_utc_aware(t.updated_at),
        result=result_out(latest) if latest is not None else None,
    )


_SERIALIZERS = {
    Collection: ("collection", collection_out),
    Task: ("task", task_out),
    Result: ("result", result_out),
    Notification: ("notification", notification_out),
    User: ("user", user_out),
}


def entity_kind(obj: object) -> Optional[str]:
    entry = _SERIALIZERS.get(type(obj))
    return entry[0] if entry else None


def entity_payload(obj: object) -> Dict[str, Any]:
    """JSON-ready wire payload for any fanout-tracked row."""
    _, fn = _SERIALIZERS[type(obj)]
    return fn(obj).model_dump(mode="json")
