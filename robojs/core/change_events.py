"""
Turn committed row mutations into fanout events.

Session hooks collect inserts/updates/deletes of user-visible rows at flush
time (while the rows are still fully loaded) and hand them to a publisher once
the transaction commits. A rollback drops whatever was collected.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Tuple

import httpx
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from robojs.core.config import get_settings
from robojs.core.security import sign_body
from robojs.models.user import User
from robojs.schemas.entities import entity_kind, entity_payload
from robojs.schemas.fanout import FanoutEvent, PublishRequest

logger = logging.getLogger(__name__)

Publisher = Callable[[str, FanoutEvent], None]

_PENDING_KEY = "robojs.pending_events"

# columns that never make a row change worth broadcasting on their own
_BOOKKEEPING = frozenset({"locked_by", "locked_until", "updated_at", "created_at"})


def _owner_of(obj: Any) -> Optional[str]:
    if isinstance(obj, User):
        return obj.id
    return getattr(obj, "user_id", None)


def _changed_keys(obj: Any) -> set:
    state = inspect(obj)
    return {attr.key for attr in state.attrs if attr.history.has_changes()}


def _payload(obj: Any) -> dict:
    try:
        return entity_payload(obj)
    except Exception:
        logger.exception("could not serialize %s for fanout; sending id only", type(obj).__name__)
        identity = inspect(obj).identity
        return {"id": identity[0] if identity else None}


def _collect(session: Session, _flush_context: Any) -> None:
    pending: List[Tuple[str, FanoutEvent]] = session.info.setdefault(_PENDING_KEY, [])

    def add(obj: Any, action: str) -> None:
        kind = entity_kind(obj)
        owner = _owner_of(obj)
        if kind is None or not owner:
            return
        pending.append((str(owner), FanoutEvent(type=kind, action=action, payload=_payload(obj))))

    for obj in session.new:
        add(obj, "insert")
    for obj in session.dirty:
        if entity_kind(obj) and _changed_keys(obj) - _BOOKKEEPING:
            add(obj, "update")
    for obj in session.deleted:
        add(obj, "delete")


def _discard(session: Session, *_: Any) -> None:
    session.info.pop(_PENDING_KEY, None)


class ChangeCapture:
    """Session hooks bound to one publisher. `remove()` detaches them."""

    def __init__(self, target: Any, publisher: Publisher) -> None:
        self.target = target
        self.publisher = publisher
        # keep the bound methods: event.remove matches listeners by identity
        self._hooks = (
            ("after_flush", self._after_flush),
            ("after_commit", self._after_commit),
            ("after_soft_rollback", self._after_rollback),
        )
        for name, fn in self._hooks:
            event.listen(target, name, fn)

    def _after_flush(self, session: Session, flush_context: Any) -> None:
        _collect(session, flush_context)

    def _after_rollback(self, session: Session, previous_transaction: Any) -> None:
        _discard(session)

    def _after_commit(self, session: Session) -> None:
        pending = session.info.pop(_PENDING_KEY, None) or []
        for user_id, ev in pending:
            try:
                self.publisher(user_id, ev)
            except Exception:
                logger.exception("fanout publish failed user=%s %s/%s", user_id, ev.type, ev.action)

    def remove(self) -> None:
        for name, fn in self._hooks:
            event.remove(self.target, name, fn)


def install_change_capture(target: Any, publisher: Publisher) -> ChangeCapture:
    """
    Publish committed changes made through `target` (a sessionmaker, Session
    class or session).
    """
    return ChangeCapture(target, publisher)


class HubPublisher:
    """Publisher for the process that owns the websocket connections."""

    def __init__(self, hub: Any) -> None:
        self.hub = hub

    def __call__(self, user_id: str, ev: FanoutEvent) -> None:
        self.hub.publish_threadsafe(user_id, ev)


class HttpPublisher:
    """
    Publisher for other processes (the scheduler worker): POST each event to the
    api process' /internal/events, signed with FANOUT_SECRET.

    Delivery is best-effort; clients repair gaps with a full reload on reconnect.
    """

    def __init__(
        self,
        url: str,
        secret: str,
        *,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self.secret = secret
        self._client = httpx.Client(timeout=timeout_seconds, transport=transport)

    @classmethod
    def from_settings(cls) -> "HttpPublisher":
        settings = get_settings()
        return cls(settings.FANOUT_URL, settings.FANOUT_SECRET)

    def __call__(self, user_id: str, ev: FanoutEvent) -> None:
        body = PublishRequest(user_id=user_id, event=ev).model_dump_json().encode("utf-8")
        ts = int(time.time())
        headers = {
            "content-type": "application/json",
            "x-robojs-timestamp": str(ts),
            "x-robojs-signature": sign_body(secret=self.secret, ts=ts, body=body),
        }
        try:
            resp = self._client.post(self.url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("fanout handoff failed %s/%s: %s", ev.type, ev.action, exc)
            return
        if resp.status_code >= 400:
            logger.warning("fanout handoff rejected %s/%s: HTTP %s", ev.type, ev.action, resp.status_code)

    def close(self) -> None:
        self._client.close()
