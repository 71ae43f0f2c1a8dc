from __future__ import annotations
import logging
import requests
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from core.auth import AUTH_HEADER
from core.exceptions import AuthFailed, BackendRejected, BackendUnreachable
from core.models import Task, TaskList, clean_task_fields, lists_from_json, lists_to_json, now_iso, sort_tasks

logger = logging.getLogger(__name__)

T = TypeVar("T")


class HttpApiClient:
    """Relational backend reached through the /api/tasks and /api/lists endpoints."""
    def __init__(self, base_url: str, auth_key: str, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({AUTH_HEADER: auth_key})

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", 10)
        try:
            r = self.session.request(method, f"{self.base_url}{path}", **kwargs)
        except requests.RequestException as e:
            raise BackendUnreachable(f"{method} {path} failed: {e}") from e
        if r.status_code == 401:
            raise AuthFailed()
        if not r.ok:
            raise BackendRejected(self._error_text(r), status=r.status_code)
        return r

    @staticmethod
    def _error_text(r: requests.Response) -> str:
        try:
            body = r.json()
        except ValueError:
            return r.text
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return r.text

    @staticmethod
    def _decode(r: requests.Response, what: str, parse: Callable[[Any], T]) -> T:
        """Parse a 2xx body; a body that does not match the contract is a rejection."""
        try:
            return parse(r.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise BackendRejected(f"{what}: malformed response ({e!r})", status=r.status_code) from e

    # ---------- tasks ----------
    def list_tasks(self, group_ids: Optional[Sequence[str]] = None) -> List[Task]:
        params = {"groupId": list(group_ids)} if group_ids else None
        r = self._request("GET", "/api/tasks", params=params)
        return self._decode(r, "List tasks", lambda body: sort_tasks(Task.from_dict(item) for item in body))

    def create_task(self, fields: Dict[str, Any]) -> Task:
        clean = clean_task_fields(fields)
        if "title" not in clean:
            raise ValueError("title must not be empty")
        r = self._request("POST", "/api/tasks", json=clean)
        new_id = self._decode(r, "Create task", lambda body: str(body["id"]))
        # the server's createdAt is picked up by the next list
        return Task.from_dict({**clean, "id": new_id, "createdAt": now_iso()})

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> None:
        clean = clean_task_fields(fields)
        if not clean:
            return
        self._request("PUT", "/api/tasks", params={"id": task_id}, json=clean)

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", "/api/tasks", params={"id": task_id})

    # ---------- lists config ----------
    def get_lists(self) -> Optional[List[TaskList]]:
        r = self._request("GET", "/api/lists")
        return self._decode(r, "Get lists", lists_from_json)

    def put_lists(self, lists: List[TaskList]) -> None:
        self._request("POST", "/api/lists", json=lists_to_json(lists))
