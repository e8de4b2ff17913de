# tests/test_change_events.py

from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest

from robojs.core.change_events import HttpPublisher, install_change_capture
from robojs.core.security import verify_signature
from robojs.models import Task
from robojs.schemas.fanout import FanoutEvent, PublishRequest

from .conftest import NOW


@pytest.fixture()
def published(session_factory):
    events = []
    capture = install_change_capture(session_factory, lambda user_id, ev: events.append((user_id, ev)))
    yield events
    capture.remove()


def test_insert_update_delete_are_published_to_owner(seed, session_factory, owner, collection, published):
    published.clear()
    task = seed.task(owner, collection, name="t")

    with session_factory() as db:
        row = db.get(Task, task.id)
        row.name = "renamed"
        db.commit()
        db.delete(row)
        db.commit()

    assert [(uid, ev.type, ev.action) for uid, ev in published] == [
        (owner.id, "task", "insert"),
        (owner.id, "task", "update"),
        (owner.id, "task", "delete"),
    ]
    assert published[1][1].payload["name"] == "renamed"
    assert published[2][1].payload["id"] == task.id


def test_lease_bookkeeping_alone_is_not_published(seed, session_factory, owner, collection, published):
    task = seed.task(owner, collection)
    published.clear()

    with session_factory() as db:
        row = db.get(Task, task.id)
        row.locked_by = "w:1"
        row.locked_until = NOW + timedelta(minutes=5)
        db.commit()

    assert published == []


def test_rollback_publishes_nothing(seed, session_factory, owner, collection, published):
    task = seed.task(owner, collection)
    published.clear()

    with session_factory() as db:
        db.get(Task, task.id).name = "never"
        db.flush()
        db.rollback()

    assert published == []


def test_notification_event_carries_link_to_result(seed, owner, collection, published):
    task = seed.task(owner, collection)
    result = seed.result(task, "1")
    published.clear()

    seed.notification(task, result, "ping")

    (user_id, ev), = published
    assert (ev.type, ev.action) == ("notification", "insert")
    assert ev.payload["result_id"] == result.id
    assert ev.payload["is_read"] is False


def test_publisher_errors_do_not_break_the_commit(seed, session_factory, owner, collection):
    def broken(user_id, ev):
        raise RuntimeError("hub gone")

    capture = install_change_capture(session_factory, broken)
    try:
        task = seed.task(owner, collection)
    finally:
        capture.remove()

    assert seed.get(Task, task.id) is not None


def test_http_publisher_signs_request() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True, "delivered": 1})

    publisher = HttpPublisher("http://api.test/internal/events", "s3cret", transport=httpx.MockTransport(handler))
    ev = FanoutEvent(type="result", action="insert", payload={"id": 7})

    publisher("user-1", ev)
    publisher.close()

    req = seen[0]
    ts = int(req.headers["x-robojs-timestamp"])
    assert verify_signature(secret="s3cret", ts=ts, body=req.content, signature_hex=req.headers["x-robojs-signature"])
    assert PublishRequest.model_validate(json.loads(req.content)) == PublishRequest(user_id="user-1", event=ev)


def test_http_publisher_swallows_transport_errors(caplog) -> None:
    def refuse(request):
        raise httpx.ConnectError("down", request=request)

    publisher = HttpPublisher("http://api.test/internal/events", "s", transport=httpx.MockTransport(refuse))

    publisher("u", FanoutEvent(type="task", action="update", payload={"id": 1}))

    assert "fanout handoff failed" in caplog.text
