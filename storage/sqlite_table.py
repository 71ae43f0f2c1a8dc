from __future__ import annotations
import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from core.exceptions import BackendRejected
from core.models import (DEFAULT_GROUP_ID, Task, TaskList, clean_task_fields, lists_from_json,
                         lists_to_json, now_iso, sort_tasks)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tasks (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    title       TEXT NOT NULL,
    is_done     INTEGER NOT NULL DEFAULT 0,
    group_id    TEXT,
    subtasks    TEXT NOT NULL DEFAULT '[]',
    due_date    TEXT,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS configs (
    key    TEXT PRIMARY KEY,
    value  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_order ON tasks(is_done, created_at);
CREATE INDEX IF NOT EXISTS idx_tasks_group ON tasks(group_id);
"""

# wire field -> column
COLUMNS = {
    "title": "title",
    "is_done": "is_done",
    "groupId": "group_id",
    "subtasks": "subtasks",
    "dueDate": "due_date",
}


class SqliteTaskTable:
    """Relational backend: one row per task plus a key/value table for the lists document.

    Each call opens its own connection, so the Flask dev server's threads can share one instance.
    """
    def __init__(self, db_path: Union[str, Path] = "todo.sqlite3"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
        logger.info("Task table ready db=%s", self.db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task.from_dict({
            "id": str(row["id"]),
            "title": row["title"],
            "is_done": row["is_done"] == 1,
            "groupId": row["group_id"] or DEFAULT_GROUP_ID,
            "subtasks": row["subtasks"],
            "dueDate": row["due_date"],
            "createdAt": row["created_at"],
        })

    @staticmethod
    def _to_column_value(key: str, value: Any) -> Any:
        if key == "is_done":
            return 1 if value else 0
        if key == "subtasks":
            return json.dumps(value, ensure_ascii=False)
        return value

    # ---------- tasks ----------
    def list_tasks(self, group_ids: Optional[Sequence[str]] = None) -> List[Task]:
        sql = "SELECT * FROM tasks"
        params: List[Any] = []
        if group_ids:
            sql += " WHERE COALESCE(group_id, ?) IN (" + ",".join("?" for _ in group_ids) + ")"
            params = [DEFAULT_GROUP_ID, *group_ids]
        sql += " ORDER BY is_done ASC, created_at DESC, id DESC"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return sort_tasks(self._row_to_task(r) for r in rows)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def create_task(self, fields: Dict[str, Any]) -> Task:
        clean = clean_task_fields(fields)
        if "title" not in clean:
            raise ValueError("title must not be empty")
        now = now_iso()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO tasks (title, is_done, group_id, subtasks, due_date, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    clean["title"],
                    1 if clean.get("is_done") else 0,
                    clean.get("groupId", DEFAULT_GROUP_ID),
                    json.dumps(clean.get("subtasks", []), ensure_ascii=False),
                    clean.get("dueDate"),
                    now,
                ),
            )
            task_id = str(cur.lastrowid)
        logger.debug("Task added id=%s", task_id)
        return Task.from_dict({**clean, "id": task_id, "createdAt": now})

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> None:
        clean = clean_task_fields(fields)
        if not clean:
            return
        sets = [f"{COLUMNS[k]} = ?" for k in clean]
        params = [self._to_column_value(k, v) for k, v in clean.items()]
        params.append(task_id)
        with self._connect() as conn:
            cur = conn.execute(f"UPDATE tasks SET {', '.join(sets)} WHERE id = ?", params)
            if cur.rowcount == 0:
                raise BackendRejected(f"Task {task_id} not found", status=404)

    def delete_task(self, task_id: str) -> None:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        if cur.rowcount == 0:
            logger.debug("Delete of missing task id=%s ignored", task_id)

    # ---------- lists config ----------
    def get_lists(self) -> Optional[List[TaskList]]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM configs WHERE key = 'lists'").fetchone()
        return lists_from_json(row["value"]) if row else None

    def put_lists(self, lists: List[TaskList]) -> None:
        value = lists_to_json(lists)
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO configs (key, value) VALUES ('lists', ?)",
                (json.dumps(value, ensure_ascii=False),),
            )
