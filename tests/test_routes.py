# tests/test_routes.py

from __future__ import annotations

import json
import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import robojs.api.routes.events as events_routes
import robojs.api.routes.tasks as task_routes
import robojs.api.routes.ws as ws_routes
from robojs.core.config import Settings
from robojs.core.db import get_db
from robojs.core.fanout import ConnectionHub, get_hub
from robojs.core.security import create_access_token, sign_body
from robojs.main import app
from robojs.models import Notification, Result, Task
from robojs.schemas.fanout import FanoutEvent

from .conftest import NOW


@pytest.fixture()
def client(session_factory):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def quota(monkeypatch):
    settings = Settings({"TASKS_MAX_ACTIVE_FREE": "1", "TASKS_MAX_ACTIVE_MEMBER": "2"})
    monkeypatch.setattr(task_routes, "get_settings", lambda: settings)
    return settings


def auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def test_requests_without_valid_token_are_rejected(client) -> None:
    assert client.get("/tasks").status_code == 401
    assert client.get("/tasks", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_health(client) -> None:
    assert client.get("/health").json()["ok"] is True


def test_list_collections_and_tasks_are_scoped_to_user(client, seed, owner, collection) -> None:
    other = seed.user(email="bob@example.com")
    other_collection = seed.collection(other)
    mine = seed.task(owner, collection, name="mine")
    seed.task(other, other_collection, name="theirs")
    seed.result(mine, '{"v":1}', created_at=NOW - timedelta(minutes=5))
    seed.result(mine, '{"v":2}', created_at=NOW)

    collections = client.get("/collections", headers=auth(owner)).json()
    tasks = client.get("/tasks", headers=auth(owner)).json()

    assert [c["id"] for c in collections] == [collection.id]
    assert [t["name"] for t in tasks] == ["mine"]
    assert tasks[0]["result"]["result"] == {"v": 2}
    assert client.get(f"/tasks/{mine.id}", headers=auth(other)).status_code == 404


def test_enabling_a_task_rearms_it_for_the_next_cycle(client, seed, owner, collection, quota) -> None:
    task = seed.task(owner, collection, active=False, next_run=NOW + timedelta(days=1))

    resp = client.put(f"/tasks/{task.id}", json={"active": True}, headers=auth(owner))

    assert resp.status_code == 200
    assert resp.json()["active"] is True
    assert resp.json()["next_run"].startswith("1970-01-01T00:00:00")
    assert seed.get(Task, task.id).active is True


def test_active_task_quota(client, seed, owner, collection, quota) -> None:
    running = seed.task(owner, collection, active=True)
    idle = seed.task(owner, collection, active=False)

    resp = client.put(f"/tasks/{idle.id}", json={"active": True}, headers=auth(owner))
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Active tasks limit exceeded"
    assert seed.get(Task, idle.id).active is False

    # the task already counted against the quota can always be re-armed
    assert client.put(f"/tasks/{running.id}", json={"active": True}, headers=auth(owner)).status_code == 200


def test_members_get_a_larger_quota(client, seed, collection, quota) -> None:
    member = seed.user(email="m@example.com", role="member")
    member_collection = seed.collection(member)
    seed.task(member, member_collection, active=True)
    idle = seed.task(member, member_collection, active=False)

    assert client.put(f"/tasks/{idle.id}", json={"active": True}, headers=auth(member)).status_code == 200


def test_update_validation(client, seed, owner, collection) -> None:
    task = seed.task(owner, collection)
    stranger_collection = seed.collection(seed.user(email="x@example.com"))

    assert client.put(f"/tasks/{task.id}", json={"name": "  "}, headers=auth(owner)).status_code == 400
    assert (
        client.put(
            f"/tasks/{task.id}", json={"collection_id": stranger_collection.id}, headers=auth(owner)
        ).status_code
        == 400
    )
    assert client.put(f"/tasks/{task.id}", json={"interval": 0}, headers=auth(owner)).status_code == 422

    resp = client.put(
        f"/tasks/{task.id}", json={"name": "Renamed", "interval": 5, "code": "return 2"}, headers=auth(owner)
    )
    assert resp.status_code == 200
    body = resp.json()
    assert (body["name"], body["interval"], body["code"]) == ("Renamed", 5, "return 2")


def test_delete_task_removes_results_and_notifications(client, seed, owner, collection) -> None:
    task = seed.task(owner, collection)
    result = seed.result(task, "1")
    seed.notification(task, result)

    assert client.delete(f"/tasks/{task.id}", headers=auth(owner)).json() == {"ok": True}

    assert seed.get(Task, task.id) is None
    assert seed.all(Result, task_id=task.id) == []
    assert seed.all(Notification, task_id=task.id) == []


def test_results_history_includes_notifications(client, seed, owner, collection) -> None:
    task = seed.task(owner, collection)
    plain = seed.result(task, '"a"', created_at=NOW - timedelta(minutes=1))
    noted = seed.result(task, '"b"', created_at=NOW)
    seed.notification(task, noted, "look")
    seed.result(task, "Error: boom", is_error=True, created_at=NOW + timedelta(minutes=1))

    history = client.get(f"/tasks/{task.id}/results", headers=auth(owner)).json()

    assert [(r["result"], r["is_error"]) for r in history] == [("Error: boom", True), ("b", False), ("a", False)]
    assert history[1]["notification"]["notification"] == "look"
    assert history[2]["id"] == plain.id
    assert history[2]["notification"] is None


def test_notifications_unread_and_mark_read(client, seed, owner, collection) -> None:
    task = seed.task(owner, collection)
    result = seed.result(task, "1")
    unread = seed.notification(task, result, "new")
    seed.notification(task, result, "old", is_read=True)
    other = seed.user(email="bob@example.com")

    listed = client.get("/notifications", headers=auth(owner)).json()
    assert [n["notification"] for n in listed] == ["new"]

    assert client.put(f"/notifications/{unread.id}/read", headers=auth(other)).status_code == 404
    resp = client.put(f"/notifications/{unread.id}/read", headers=auth(owner))
    assert resp.json()["is_read"] is True
    assert client.get("/notifications", headers=auth(owner)).json() == []


# -- internal fanout handoff --


class RecordingHub:
    def __init__(self) -> None:
        self.published = []

    def publish(self, user_id, ev) -> int:
        self.published.append((user_id, ev))
        return 1


@pytest.fixture()
def recording_hub(monkeypatch):
    hub = RecordingHub()
    app.dependency_overrides[get_hub] = lambda: hub
    monkeypatch.setattr(events_routes, "get_settings", lambda: Settings({"FANOUT_SECRET": "s3cret"}))
    return hub


def signed(body: dict, *, secret: str = "s3cret", ts: int | None = None) -> dict:
    raw = json.dumps(body).encode("utf-8")
    ts = int(time.time()) if ts is None else ts
    return {
        "content": raw,
        "headers": {
            "content-type": "application/json",
            "x-robojs-timestamp": str(ts),
            "x-robojs-signature": sign_body(secret=secret, ts=ts, body=raw),
        },
    }


def test_internal_event_is_handed_to_the_hub(client, recording_hub) -> None:
    body = {"user_id": "u-1", "event": {"type": "task", "action": "update", "payload": {"id": 3}}}

    resp = client.post("/internal/events", **signed(body))

    assert resp.json() == {"ok": True, "delivered": 1}
    assert recording_hub.published == [("u-1", FanoutEvent(type="task", action="update", payload={"id": 3}))]


def test_internal_event_signature_checks(client, recording_hub) -> None:
    body = {"user_id": "u-1", "event": {"type": "task", "action": "update", "payload": {}}}

    assert client.post("/internal/events", json=body).status_code == 401
    assert client.post("/internal/events", **signed(body, secret="wrong")).status_code == 401
    assert client.post("/internal/events", **signed(body, ts=int(time.time()) - 3600)).status_code == 401
    bad_kind = {"user_id": "u-1", "event": {"type": "agent", "action": "update"}}
    assert client.post("/internal/events", **signed(bad_kind)).status_code == 422
    assert recording_hub.published == []


def test_internal_events_refused_without_secret(client, monkeypatch) -> None:
    monkeypatch.setattr(events_routes, "get_settings", lambda: Settings({}))

    assert client.post("/internal/events", json={}).status_code == 500


# -- websocket --


@pytest.fixture()
def ws_hub(monkeypatch):
    hub = ConnectionHub()
    monkeypatch.setattr(ws_routes, "get_hub", lambda: hub)
    return hub


def wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.01)


def test_websocket_receives_events_after_authenticating(client, owner, ws_hub) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "authenticate", "payload": {"token": create_access_token(owner.id)}})
        wait_for(lambda: ws_hub.connection_count == 1)

        ws_hub.publish_threadsafe(owner.id, FanoutEvent(type="result", action="insert", payload={"id": 1}))

        assert ws.receive_json() == {"type": "result", "action": "insert", "payload": {"id": 1}}
        ws.send_json({"type": "close", "payload": {}})

    wait_for(lambda: ws_hub.connection_count == 0)


def test_websocket_rejects_bad_token(client, ws_hub) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "authenticate", "payload": {"token": "garbage"}})
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()

    assert exc.value.code == 1008
    assert ws_hub.connection_count == 0


def test_websocket_ignores_invalid_control_frames(client, owner, ws_hub) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_json(["junk"])
        ws.send_json({"type": 5})
        ws.send_json({"type": "authenticate", "payload": "not-an-object"})
        assert ws_hub.connection_count == 0

        ws.send_json({"type": "authenticate", "payload": {"token": create_access_token(owner.id)}})
        wait_for(lambda: ws_hub.connection_count == 1)
        ws.send_json({"type": "close"})

    wait_for(lambda: ws_hub.connection_count == 0)
