"""
Client-side cache of the user's collections, tasks and unread notifications.

State lives in an immutable `Snapshot`; every change builds a new snapshot and
notifies subscribers. Views (unread list, tasks with errors, ...) are plain
functions over a snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

Entity = Mapping[str, Any]
Items = Mapping[Any, Entity]
Listener = Callable[["Snapshot"], None]

_EMPTY: Items = MappingProxyType({})


def _freeze(items: Dict[Any, Entity]) -> Items:
    return MappingProxyType(items)


def _index(entities: Iterable[Entity]) -> Items:
    return _freeze({e["id"]: dict(e) for e in entities if isinstance(e, Mapping) and "id" in e})


@dataclass(frozen=True)
class Snapshot:
    token: Optional[str] = None
    user: Optional[Entity] = None
    collections: Items = field(default_factory=lambda: _EMPTY)
    tasks: Items = field(default_factory=lambda: _EMPTY)
    # unread only
    notifications: Items = field(default_factory=lambda: _EMPTY)


# -- keyed-cache primitives (return the same mapping when nothing changes) --


def upsert(items: Items, entity: Entity) -> Items:
    out = dict(items)
    out[entity["id"]] = dict(entity)
    return _freeze(out)


def replace_existing(items: Items, entity: Entity) -> Items:
    if entity.get("id") not in items:
        return items
    return upsert(items, entity)


def remove(items: Items, entity_id: Any) -> Items:
    if entity_id not in items:
        return items
    out = dict(items)
    del out[entity_id]
    return _freeze(out)


# -- derived views --


def _created_at(e: Entity) -> str:
    return str(e.get("created_at") or "")


def unread_notifications(snap: Snapshot) -> List[Entity]:
    return sorted(snap.notifications.values(), key=_created_at, reverse=True)


def get_task(snap: Snapshot, task_id: Any) -> Optional[Entity]:
    return snap.tasks.get(task_id)


def tasks_in_collection(snap: Snapshot, collection_id: Any) -> List[Entity]:
    return [t for t in snap.tasks.values() if t.get("collection_id") == collection_id]


def tasks_with_error(snap: Snapshot) -> List[Entity]:
    return [t for t in snap.tasks.values() if (t.get("result") or {}).get("is_error") is True]


def tasks_by_latest_result(snap: Snapshot) -> List[Dict[str, Any]]:
    """Tasks that have a result, newest result first, joined with their collection."""
    with_result = [t for t in snap.tasks.values() if t.get("result")]
    with_result.sort(key=lambda t: _created_at(t["result"]), reverse=True)
    out: List[Dict[str, Any]] = []
    for t in with_result:
        collection = snap.collections.get(t.get("collection_id"))
        if collection is not None:
            out.append({**t, "collection": collection})
    return out


class ClientStore:
    """
    Owner of the current Snapshot.

    `on_stale_task(task_id)` is called when a task's cached latest result was
    deleted and the task should be refetched; `on_reset()` when the session ends.
    """

    def __init__(
        self,
        *,
        on_stale_task: Optional[Callable[[Any], None]] = None,
        on_reset: Optional[Callable[[], None]] = None,
    ) -> None:
        self._snapshot = Snapshot()
        self._listeners: List[Listener] = []
        self.on_stale_task = on_stale_task
        self.on_reset = on_reset

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, new: Snapshot) -> bool:
        if new == self._snapshot:
            return False
        self._snapshot = new
        for listener in list(self._listeners):
            try:
                listener(new)
            except Exception:
                logger.exception("store listener failed")
        return True

    # -- session --

    def set_session(self, token: str, user: Optional[Entity] = None) -> None:
        self._commit(replace(self._snapshot, token=token, user=dict(user) if user else None))

    def set_user(self, user: Entity) -> None:
        self._commit(replace(self._snapshot, user=dict(user)))

    def reset(self) -> None:
        """Log out: drop the session and everything cached for it."""
        self._commit(Snapshot())
        if self.on_reset is not None:
            self.on_reset()

    # -- bulk loads --

    def replace_all(
        self,
        *,
        collections: Iterable[Entity],
        tasks: Iterable[Entity],
        notifications: Iterable[Entity],
    ) -> None:
        unread = [n for n in notifications if isinstance(n, Mapping) and not n.get("is_read")]
        self._commit(
            replace(
                self._snapshot,
                collections=_index(collections),
                tasks=_index(tasks),
                notifications=_index(unread),
            )
        )

    def put_task(self, task: Entity) -> None:
        self._commit(replace(self._snapshot, tasks=replace_existing(self._snapshot.tasks, task)))

    # -- fanout events --

    def apply_event(self, message: Mapping[str, Any]) -> bool:
        """Apply one `{type, action, payload}` fanout message. Returns True if state changed."""
        kind = message.get("type")
        action = message.get("action")
        payload = message.get("payload")
        if not isinstance(payload, Mapping):
            logger.debug("ignoring %s/%s without payload", kind, action)
            return False

        handler = getattr(self, f"_on_{kind}", None)
        if handler is None:
            logger.debug("ignoring unknown event type %r", kind)
            return False
        return handler(action, payload)

    def _generic(self, items: Items, action: Any, payload: Entity) -> Items:
        if action == "insert":
            # update-if-exists: duplicate deliveries are harmless
            return upsert(items, payload)
        if action == "update":
            return replace_existing(items, payload)
        if action == "delete":
            return remove(items, payload.get("id"))
        return items

    def _on_collection(self, action: Any, payload: Entity) -> bool:
        snap = self._snapshot
        return self._commit(replace(snap, collections=self._generic(snap.collections, action, payload)))

    def _on_task(self, action: Any, payload: Entity) -> bool:
        snap = self._snapshot
        if action == "update" and payload.get("result") is None and payload.get("id") in snap.tasks:
            # task rows on the wire carry no result; keep the one we have
            payload = {**payload, "result": snap.tasks[payload["id"]].get("result")}
        return self._commit(replace(snap, tasks=self._generic(snap.tasks, action, payload)))

    def _on_result(self, action: Any, payload: Entity) -> bool:
        snap = self._snapshot
        if action == "insert":
            task = snap.tasks.get(payload.get("task_id"))
            if task is None:
                return False
            return self._commit(replace(snap, tasks=upsert(snap.tasks, {**task, "result": dict(payload)})))
        if action == "delete":
            for task in snap.tasks.values():
                if (task.get("result") or {}).get("id") == payload.get("id"):
                    changed = self._commit(
                        replace(snap, tasks=upsert(snap.tasks, {**task, "result": None}))
                    )
                    if self.on_stale_task is not None:
                        self.on_stale_task(task["id"])
                    return changed
            return False
        # results are immutable; updates are ignored
        return False

    def _on_notification(self, action: Any, payload: Entity) -> bool:
        snap = self._snapshot
        if action == "update":
            if payload.get("is_read"):
                return self._commit(replace(snap, notifications=remove(snap.notifications, payload.get("id"))))
            return False
        return self._commit(replace(snap, notifications=self._generic(snap.notifications, action, payload)))

    def _on_user(self, action: Any, payload: Entity) -> bool:
        if action == "update":
            return self._commit(replace(self._snapshot, user=dict(payload)))
        if action == "delete":
            self.reset()
            return True
        return False
