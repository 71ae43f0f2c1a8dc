from __future__ import annotations

import pytest
import requests

from core.exceptions import AuthFailed, BackendRejected, BackendUnreachable
from core.models import Group, TaskList
from storage.pocketbase import PocketBaseClient

from .fakes import FakeResponse, FakeSession

TASKS = "/api/collections/tasks/records"
CONFIGS = "/api/collections/configs/records"


def _record(id: str, created: str, **fields) -> dict:
    rec = {"id": id, "title": f"t{id}", "is_done": False, "groupId": "g1", "subtasks": None,
           "dueDate": "", "owner": "u1", "created": created}
    rec.update(fields)
    return rec


@pytest.fixture()
def session() -> FakeSession:
    s = FakeSession()
    s.add("POST", "/api/collections/users/auth-with-password",
          FakeResponse(200, {"token": "tok", "record": {"id": "u1"}}))
    return s


@pytest.fixture()
def pb(session: FakeSession) -> PocketBaseClient:
    client = PocketBaseClient("http://pb.local/", session=session)
    client.login("me@example.com", "pw")
    return client


def test_login_sets_bearer_header(pb: PocketBaseClient, session: FakeSession):
    assert pb.user_id == "u1"
    assert session.headers["Authorization"] == "Bearer tok"


def test_login_failure_is_auth_failed():
    s = FakeSession()
    s.add("POST", "/api/collections/users/auth-with-password", FakeResponse(400, {"message": "bad"}))
    with pytest.raises(AuthFailed):
        PocketBaseClient("http://pb.local", session=s).login("me", "nope")


def test_list_maps_records_and_orders(pb: PocketBaseClient, session: FakeSession):
    session.add("GET", TASKS, FakeResponse(200, {"items": [
        _record("a", "2026-01-01 10:00:00.000Z", is_done=True),
        _record("b", "2026-01-01 09:00:00.000Z"),
        _record("c", "2026-01-01 11:00:00.000Z", groupId=""),
    ]}))
    tasks = pb.list_tasks(["g1", 'g"2'])
    assert [t.id for t in tasks] == ["c", "b", "a"]
    assert tasks[0].groupId == "g1"
    assert tasks[0].createdAt == "2026-01-01T11:00:00.000Z"
    assert tasks[0].dueDate is None

    _, _, kwargs = session.calls[-1]
    assert kwargs["params"]["filter"] == 'owner = "u1" && (groupId = "g1" || groupId = "g\\"2")'


def test_create_sends_defaults_and_owner(pb: PocketBaseClient, session: FakeSession):
    session.add("POST", TASKS, FakeResponse(200, _record("n1", "2026-01-01 12:00:00.000Z", title="Buy milk")))
    task = pb.create_task({"title": "Buy milk"})
    assert task.id == "n1"
    _, _, kwargs = session.calls[-1]
    assert kwargs["json"] == {"title": "Buy milk", "is_done": False, "groupId": "g1", "subtasks": [],
                              "dueDate": "", "owner": "u1"}


def test_update_sends_only_given_fields(pb: PocketBaseClient, session: FakeSession):
    session.add("PATCH", f"{TASKS}/a", FakeResponse(200, _record("a", "x")))
    pb.update_task("a", {"title": "X"})
    method, path, kwargs = session.calls[-1]
    assert (method, path) == ("PATCH", f"{TASKS}/a")
    assert kwargs["json"] == {"title": "X"}


def test_update_missing_record_is_rejected(pb: PocketBaseClient, session: FakeSession):
    session.add("PATCH", f"{TASKS}/zz", FakeResponse(404, {"message": "missing"}))
    with pytest.raises(BackendRejected):
        pb.update_task("zz", {"is_done": True})


def test_delete_missing_record_is_ok(pb: PocketBaseClient, session: FakeSession):
    session.add("DELETE", f"{TASKS}/zz", FakeResponse(404, {"message": "missing"}))
    pb.delete_task("zz")
    pb.delete_task("zz")


def test_forbidden_is_auth_failed(pb: PocketBaseClient, session: FakeSession):
    session.add("GET", TASKS, FakeResponse(403, {"message": "nope"}))
    with pytest.raises(AuthFailed):
        pb.list_tasks()


def test_connection_error_is_unreachable(pb: PocketBaseClient, session: FakeSession):
    session.add("GET", TASKS, requests.ConnectionError("down"))
    with pytest.raises(BackendUnreachable):
        pb.list_tasks()


def test_get_lists_none_when_no_record(pb: PocketBaseClient, session: FakeSession):
    session.add("GET", CONFIGS, FakeResponse(200, {"items": []}))
    assert pb.get_lists() is None


def test_put_lists_creates_then_patches(pb: PocketBaseClient, session: FakeSession):
    lists = [TaskList(id="L1", name="Work", groups=[Group("g1", "Urgent", "#ef4444")])]
    session.add("GET", CONFIGS, FakeResponse(200, {"items": []}))
    session.add("GET", CONFIGS, FakeResponse(200, {"items": [{"id": "c1", "key": "lists", "value": []}]}))
    session.add("POST", CONFIGS, FakeResponse(200, {"id": "c1"}))
    session.add("PATCH", f"{CONFIGS}/c1", FakeResponse(200, {"id": "c1"}))

    pb.put_lists(lists)
    method, _, kwargs = session.calls[-1]
    assert method == "POST"
    assert kwargs["json"]["value"] == [lists[0].to_dict()]

    pb.put_lists(lists)
    method, path, kwargs = session.calls[-1]
    assert (method, path) == ("PATCH", f"{CONFIGS}/c1")
    assert kwargs["json"] == {"value": [lists[0].to_dict()]}


def test_list_follows_pages(pb: PocketBaseClient, session: FakeSession):
    session.add("GET", TASKS, FakeResponse(200, {"page": 1, "totalPages": 2,
                                                 "items": [_record("a", "2026-01-01 10:00:00.000Z")]}))
    session.add("GET", TASKS, FakeResponse(200, {"page": 2, "totalPages": 2,
                                                 "items": [_record("b", "2026-01-01 11:00:00.000Z")]}))
    tasks = pb.list_tasks()
    assert [t.id for t in tasks] == ["b", "a"]
    pages = [kwargs["params"]["page"] for method, path, kwargs in session.calls if path == TASKS]
    assert pages == [1, 2]


def test_record_without_id_is_rejected(pb: PocketBaseClient, session: FakeSession):
    session.add("GET", TASKS, FakeResponse(200, {"items": [{"title": "no id"}]}))
    with pytest.raises(BackendRejected):
        pb.list_tasks()
