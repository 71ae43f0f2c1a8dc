from __future__ import annotations
import datetime as dt
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

DEFAULT_GROUP_ID = "g1"
DEFAULT_LIST_ID = "default"
FALLBACK_COLOR = "#9ca3af"

# fields a caller may set on a task; id and createdAt belong to the backend
TASK_FIELDS = ("title", "is_done", "groupId", "subtasks", "dueDate")


def now_iso() -> str:
    """UTC timestamp with millisecond precision, e.g. 2026-10-19T08:15:02.113Z."""
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Subtask:
    id: str
    title: str
    is_done: bool = False
    dueDate: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subtask":
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            is_done=bool(data.get("is_done", False)),
            dueDate=data.get("dueDate") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"id": self.id, "title": self.title, "is_done": self.is_done}
        if self.dueDate:
            d["dueDate"] = self.dueDate
        return d


def _extra(data: Dict[str, Any], known: Tuple[str, ...]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


@dataclass
class Group:
    id: str
    name: str
    color: str = FALLBACK_COLOR
    # keys other clients stored on the group, written back untouched
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Group":
        return cls(id=str(data["id"]), name=str(data.get("name") or ""),
                   color=str(data.get("color") or FALLBACK_COLOR),
                   extra=_extra(data, ("id", "name", "color")))

    def to_dict(self) -> Dict[str, Any]:
        return {**self.extra, "id": self.id, "name": self.name, "color": self.color}


@dataclass
class TaskList:
    id: str
    name: str
    groups: List[Group] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskList":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            groups=[Group.from_dict(g) for g in data.get("groups") or []],
            extra=_extra(data, ("id", "name", "groups")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {**self.extra, "id": self.id, "name": self.name,
                "groups": [g.to_dict() for g in self.groups]}


@dataclass
class Task:
    id: str
    title: str
    is_done: bool = False
    groupId: str = DEFAULT_GROUP_ID
    subtasks: List[Subtask] = field(default_factory=list)
    dueDate: Optional[str] = None
    createdAt: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            is_done=bool(data.get("is_done", False)),
            groupId=data.get("groupId") or DEFAULT_GROUP_ID,
            subtasks=[Subtask.from_dict(s) for s in parse_subtasks(data.get("subtasks"))],
            dueDate=data.get("dueDate") or None,
            createdAt=str(data.get("createdAt") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "is_done": self.is_done,
            "groupId": self.groupId,
            "subtasks": [s.to_dict() for s in self.subtasks],
            "dueDate": self.dueDate,
            "createdAt": self.createdAt,
        }

    def merged(self, fields: Dict[str, Any]) -> "Task":
        """Copy of the task with the supplied fields applied; the rest keep their values."""
        changes: Dict[str, Any] = {}
        for key, value in clean_task_fields(fields).items():
            if key == "subtasks":
                value = [Subtask.from_dict(s) for s in value]
            changes[key] = value
        return replace(self, **changes)


def parse_subtasks(raw: Any) -> List[Dict[str, Any]]:
    """Subtasks arrive as a list, as JSON text (relational rows) or not at all."""
    if not raw:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []
    if not isinstance(raw, list):
        return []
    out = []
    for s in raw:
        if isinstance(s, Subtask):
            out.append(s.to_dict())
        elif isinstance(s, dict):
            out.append(s)
    return out


def _check_subtasks(value: Any) -> List[Dict[str, Any]]:
    # writes must send a real list; stored rows go through parse_subtasks instead
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(s, (dict, Subtask)) for s in value):
        raise ValueError("subtasks must be a list of objects")
    return parse_subtasks(value)


def clean_task_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Keep the writable task fields that were supplied, coerced to wire types.

    Raises ValueError when a supplied title is blank or subtasks is not a list.
    """
    out: Dict[str, Any] = {}
    for key in TASK_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if key == "title":
            value = str(value or "").strip()
            if not value:
                raise ValueError("title must not be empty")
        elif key == "is_done":
            value = bool(value)
        elif key == "groupId":
            value = str(value) if value else DEFAULT_GROUP_ID
        elif key == "subtasks":
            value = _check_subtasks(value)
        elif key == "dueDate":
            value = value or None
        out[key] = value
    return out


def _id_key(task_id: str):
    # numeric ids (relational rows) compare as numbers, opaque ids as text
    return (1, int(task_id), "") if task_id.isdigit() else (0, 0, task_id)


def sort_tasks(tasks: Iterable[Task]) -> List[Task]:
    """Incomplete before completed; newest first inside each partition."""
    ordered = sorted(tasks, key=lambda t: (t.createdAt, _id_key(t.id)), reverse=True)
    return sorted(ordered, key=lambda t: t.is_done)


# ---------- lists / groups ----------
def default_lists() -> List[TaskList]:
    return [TaskList(id=DEFAULT_LIST_ID, name="My Tasks",
                     groups=[Group(id=DEFAULT_GROUP_ID, name="General", color="#3b82f6")])]


def lists_from_json(data: Any) -> Optional[List[TaskList]]:
    if data is None:
        return None
    if isinstance(data, str):
        data = json.loads(data)
    return [TaskList.from_dict(item) for item in data]


def lists_to_json(lists: Iterable[TaskList]) -> List[Dict[str, Any]]:
    return [lst.to_dict() for lst in lists]


def find_group(lists: Iterable[TaskList], group_id: str, list_id: Optional[str] = None) -> Optional[Group]:
    """Group lookup, preferring the given list since group ids repeat across lists."""
    lists = list(lists)
    if list_id:
        for lst in lists:
            if lst.id == list_id:
                for g in lst.groups:
                    if g.id == group_id:
                        return g
    for lst in lists:
        for g in lst.groups:
            if g.id == group_id:
                return g
    return None


def group_color(lists: Iterable[TaskList], group_id: str, list_id: Optional[str] = None) -> str:
    g = find_group(lists, group_id, list_id)
    return g.color if g else FALLBACK_COLOR
