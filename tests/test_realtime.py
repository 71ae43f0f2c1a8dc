from __future__ import annotations

import json

import requests

from core.exceptions import BackendRejected, BackendUnreachable
from storage.pocketbase import PocketBaseClient
from storage.realtime import TASKS_TOPIC, RealtimeSubscriber, iter_sse

from .fakes import FakeResponse, FakeSession, wait_for

TASKS = "/api/collections/tasks/records"


def test_iter_sse_groups_fields_into_events():
    lines = [
        ": comment",
        "id:abc",
        "event:PB_CONNECT",
        'data:{"clientId":"abc"}',
        "",
        "event: tasks/*",
        "data: {\"action\":",
        "data: \"create\"}",
        "",
    ]
    events = list(iter_sse(lines))
    assert events == [("PB_CONNECT", '{"clientId":"abc"}'), ("tasks/*", '{"action":\n"create"}')]


def _stream() -> FakeResponse:
    return FakeResponse(200, lines=[
        "event:PB_CONNECT",
        'data:{"clientId":"cid-1"}',
        "",
        f"event:{TASKS_TOPIC}",
        "data:" + json.dumps({"action": "create", "record": {"id": "x"}}),
        "",
    ])


def test_subscribe_delivers_initial_and_per_event_snapshots():
    session = FakeSession()
    session.add("GET", TASKS, FakeResponse(200, {"items": []}))
    session.add("GET", TASKS, FakeResponse(200, {"items": [{"id": "x", "title": "new", "created": "2026"}]}))
    session.add("GET", "/api/realtime", _stream())
    session.add("POST", "/api/realtime", FakeResponse(204, None))
    client = PocketBaseClient("http://pb.local", session=session)
    client.user_id = "u1"

    snapshots, errors = [], []
    sub = RealtimeSubscriber(client, reconnect_delay=10).subscribe(["g1"], snapshots.append, errors.append)
    try:
        assert wait_for(lambda: len(snapshots) >= 2)
    finally:
        sub.unsubscribe()

    assert snapshots[0] == []
    assert [t.title for t in snapshots[1]] == ["new"]
    assert errors == []
    subscribe_calls = [c for c in session.calls if c[:2] == ("POST", "/api/realtime")]
    assert subscribe_calls[0][2]["json"] == {"clientId": "cid-1", "subscriptions": [TASKS_TOPIC]}


def test_unsubscribed_feed_delivers_nothing():
    session = FakeSession()
    session.add("GET", TASKS, FakeResponse(200, {"items": []}))
    session.add("GET", "/api/realtime", FakeResponse(200, lines=[]))
    client = PocketBaseClient("http://pb.local", session=session)

    snapshots = []
    sub = RealtimeSubscriber(client, reconnect_delay=10).subscribe(None, snapshots.append, lambda e: None)
    sub.unsubscribe()
    sub.unsubscribe()
    assert not sub.active


def _client(session: FakeSession) -> PocketBaseClient:
    client = PocketBaseClient("http://pb.local", session=session)
    client.user_id = "u1"
    return client


def test_dropped_stream_reports_error_then_reconnects():
    session = FakeSession()
    session.add("GET", TASKS, FakeResponse(200, {"items": []}))
    session.add("GET", TASKS, FakeResponse(200, {"items": [{"id": "x", "title": "new", "created": "2026"}]}))
    session.add("GET", "/api/realtime", FakeResponse(503, {"message": "restarting"}))
    session.add("GET", "/api/realtime", _stream())
    session.add("POST", "/api/realtime", FakeResponse(204, None))

    snapshots, errors = [], []
    sub = RealtimeSubscriber(_client(session), reconnect_delay=0.01).subscribe(None, snapshots.append, errors.append)
    try:
        assert wait_for(lambda: len(snapshots) >= 2)
    finally:
        sub.unsubscribe()

    assert isinstance(errors[0], BackendUnreachable)
    assert snapshots[0] == []
    assert [t.title for t in snapshots[1]] == ["new"]
    assert ("POST", "/api/realtime") in [c[:2] for c in session.calls]


def test_connection_error_on_stream_is_unreachable():
    session = FakeSession()
    session.add("GET", TASKS, FakeResponse(200, {"items": []}))
    session.add("GET", "/api/realtime", requests.ConnectionError("reset"))

    errors = []
    sub = RealtimeSubscriber(_client(session), reconnect_delay=0.01).subscribe(None, lambda t: None, errors.append)
    try:
        assert wait_for(lambda: len(errors) >= 2)
    finally:
        sub.unsubscribe()
    assert isinstance(errors[0], BackendUnreachable)


def test_malformed_connect_event_is_reported_and_retried():
    session = FakeSession()
    session.add("GET", TASKS, FakeResponse(200, {"items": []}))
    session.add("GET", "/api/realtime", FakeResponse(200, lines=["event:PB_CONNECT", "data:not json", ""]))

    errors = []
    sub = RealtimeSubscriber(_client(session), reconnect_delay=0.01).subscribe(None, lambda t: None, errors.append)
    try:
        assert wait_for(lambda: len(errors) >= 1)
    finally:
        sub.unsubscribe()
    assert isinstance(errors[0], BackendRejected)
    assert sub.active is False
