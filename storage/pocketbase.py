from __future__ import annotations
import logging
import requests
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from core.exceptions import AuthFailed, BackendRejected, BackendUnreachable
from core.models import (DEFAULT_GROUP_ID, Task, TaskList, clean_task_fields, lists_from_json,
                         lists_to_json, sort_tasks)

logger = logging.getLogger(__name__)

LISTS_KEY = "lists"
PAGE_SIZE = 500

T = TypeVar("T")


def _quote(value: str) -> str:
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


class PocketBaseClient:
    """Document-store backend: one PocketBase record per task, one per list config.

    Collections
    - tasks: title, is_done (bool), groupId, subtasks (json), dueDate, owner -> users
    - configs: key, value (json), owner -> users
    Rules on both: owner = @request.auth.id
    """
    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.token: Optional[str] = ""
        self.user_id: Optional[str] = ""

    # ---------- transport ----------
    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", 10)
        try:
            return self.session.request(method, f"{self.base_url}{path}", **kwargs)
        except requests.RequestException as e:
            raise BackendUnreachable(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _raise_for(r: requests.Response, what: str) -> None:
        if r.ok:
            return
        if r.status_code in (401, 403):
            raise AuthFailed(f"{what}: {r.status_code} {r.text}")
        raise BackendRejected(f"{what}: {r.text}", status=r.status_code)

    @staticmethod
    def _decode(r: requests.Response, what: str, parse: Callable[[Any], T]) -> T:
        try:
            return parse(r.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise BackendRejected(f"{what}: malformed response ({e!r})", status=r.status_code) from e

    # ---------- auth ----------
    def login(self, identity: str, password: str) -> bool:
        r = self._request("POST", "/api/collections/users/auth-with-password",
                          json={"identity": identity, "password": password})
        if r.status_code in (400, 401, 403):
            raise AuthFailed(f"Login failed: {r.status_code} {r.text}")
        self._raise_for(r, "Login")
        self.token, self.user_id = self._decode(
            r, "Login", lambda data: (data.get("token"), (data.get("record") or {}).get("id")))
        if not self.token or not self.user_id:
            raise BackendRejected("Missing token or user id in login response")
        self.session.headers.update({"Authorization": f"Bearer {self.token}"})
        logger.info("PocketBase login ok user=%s", self.user_id)
        return True

    # ---------- tasks ----------
    def _task_filter(self, group_ids: Optional[Sequence[str]]) -> str:
        filt = f"owner = {_quote(self.user_id)}"
        if group_ids:
            filt += " && (" + " || ".join(f"groupId = {_quote(g)}" for g in group_ids) + ")"
        return filt

    @staticmethod
    def _record_to_task(rec: Dict[str, Any]) -> Task:
        created = str(rec.get("created") or "").replace(" ", "T", 1)
        return Task.from_dict({
            "id": rec["id"],
            "title": rec.get("title"),
            "is_done": rec.get("is_done"),
            "groupId": rec.get("groupId"),
            "subtasks": rec.get("subtasks"),
            "dueDate": rec.get("dueDate"),
            "createdAt": created,
        })

    def list_tasks(self, group_ids: Optional[Sequence[str]] = None) -> List[Task]:
        """All tasks of the scope, following PocketBase pagination to the last page."""
        params: Dict[str, Any] = {"filter": self._task_filter(group_ids), "sort": "is_done,-created",
                                  "perPage": PAGE_SIZE, "page": 1}
        tasks: List[Task] = []
        while True:
            r = self._request("GET", "/api/collections/tasks/records", params=dict(params))
            self._raise_for(r, "List tasks")
            page, total_pages = self._decode(r, "List tasks", lambda body: (
                [self._record_to_task(rec) for rec in body.get("items", [])],
                int(body.get("totalPages") or 1)))
            tasks.extend(page)
            if params["page"] >= total_pages or not page:
                break
            params["page"] += 1
        return sort_tasks(tasks)

    def create_task(self, fields: Dict[str, Any]) -> Task:
        clean = clean_task_fields(fields)
        if "title" not in clean:
            raise ValueError("title must not be empty")
        payload = {
            "title": clean["title"],
            "is_done": clean.get("is_done", False),
            "groupId": clean.get("groupId", DEFAULT_GROUP_ID),
            "subtasks": clean.get("subtasks", []),
            "dueDate": clean.get("dueDate") or "",
            "owner": self.user_id,
        }
        r = self._request("POST", "/api/collections/tasks/records", json=payload)
        self._raise_for(r, "Create task failed")
        task = self._decode(r, "Create task", self._record_to_task)
        logger.debug("Task created id=%s group=%s", task.id, task.groupId)
        return task

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> None:
        clean = clean_task_fields(fields)
        if not clean:
            return
        if "dueDate" in clean and clean["dueDate"] is None:
            clean["dueDate"] = ""
        r = self._request("PATCH", f"/api/collections/tasks/records/{task_id}", json=clean)
        if r.status_code == 404:
            raise BackendRejected(f"Task {task_id} not found", status=404)
        self._raise_for(r, "Update task failed")

    def delete_task(self, task_id: str) -> None:
        r = self._request("DELETE", f"/api/collections/tasks/records/{task_id}")
        if r.status_code == 404:
            logger.debug("Delete of missing task id=%s ignored", task_id)
            return
        self._raise_for(r, "Delete task failed")

    # ---------- lists config ----------
    def _lists_record(self) -> Optional[Dict[str, Any]]:
        filt = f"owner = {_quote(self.user_id)} && key = {_quote(LISTS_KEY)}"
        r = self._request("GET", "/api/collections/configs/records", params={"filter": filt, "perPage": 1})
        self._raise_for(r, "Get lists")
        items = self._decode(r, "Get lists", lambda body: body.get("items", []))
        return items[0] if items else None

    def get_lists(self) -> Optional[List[TaskList]]:
        rec = self._lists_record()
        if rec is None:
            return None
        try:
            return lists_from_json(rec.get("value"))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise BackendRejected(f"Get lists: malformed lists document ({e!r})") from e

    def put_lists(self, lists: List[TaskList]) -> None:
        value = lists_to_json(lists)
        rec = self._lists_record()
        if rec is None:
            r = self._request("POST", "/api/collections/configs/records",
                              json={"key": LISTS_KEY, "value": value, "owner": self.user_id})
        else:
            r = self._request("PATCH", f"/api/collections/configs/records/{rec['id']}", json={"value": value})
        self._raise_for(r, "Save lists failed")

    # ---------- realtime ----------
    def set_realtime_subscriptions(self, client_id: str, topics: Sequence[str]) -> None:
        r = self._request("POST", "/api/realtime", json={"clientId": client_id, "subscriptions": list(topics)})
        self._raise_for(r, "Realtime subscribe")
