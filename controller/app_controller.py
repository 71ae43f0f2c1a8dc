from __future__ import annotations
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import BackendRejected, TodoError
from core.models import (DEFAULT_GROUP_ID, FALLBACK_COLOR, Group, Subtask, Task, TaskList,
                         clean_task_fields, default_lists, group_color, now_iso, sort_tasks)
from services.sync_service import SNAPSHOT, Scope, TaskSync

logger = logging.getLogger(__name__)

MESSAGES = {
    "auth": "Not authorized: check the access key.",
    "unreachable": "Server unreachable; showing the last synced tasks.",
    "config": "Configuration is incomplete: {detail}",
    "rejected": "The server rejected the change: {detail}",
    "error": "Something went wrong: {detail}",
}


@dataclass(frozen=True)
class ErrorState:
    kind: str
    message: str


def describe_error(exc: TodoError) -> ErrorState:
    template = MESSAGES.get(exc.kind, MESSAGES["error"])
    return ErrorState(kind=exc.kind, message=template.format(detail=exc))


@dataclass
class PendingOp:
    """Cambio local que todavía no aparece en un snapshot."""
    kind: str  # create | update | delete
    task_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    task: Optional[Task] = None
    confirmed: bool = False


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


class AppController:
    """Coordina la UI con el backend: cambios optimistas sobre el snapshot sincronizado.

    `client` es el adaptador de storage (CRUD de tareas y documento de listas);
    `sync` mantiene el snapshot autoritativo del scope seleccionado.
    """
    def __init__(self, client, sync: TaskSync):
        self.client = client
        self.sync = sync
        self.lists: List[TaskList] = []
        self.error: Optional[ErrorState] = None
        self._pending: List[PendingOp] = []
        self._lock = threading.Lock()
        self._listeners: List[Callable[[], None]] = []
        self.sync.add_listener(self._on_sync)

    # ---- UI integration ----
    def on_change(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        for cb in list(self._listeners):
            cb()

    def _set_error(self, exc: TodoError) -> None:
        self.error = describe_error(exc)
        logger.warning("%s", self.error.message)

    def clear_error(self) -> None:
        self.error = None

    def _on_sync(self, event: str) -> None:
        if event == SNAPSHOT:
            with self._lock:
                # el snapshot ya refleja todo lo que el backend aceptó
                self._pending = [op for op in self._pending if not op.confirmed]
            if self.error is not None and self.error.kind == "unreachable":
                self.error = None
        elif self.sync.error is not None:
            self._set_error(self.sync.error)
        self._notify()

    def close(self) -> None:
        self.sync.close()

    # ---- lists / groups ----
    def load_lists(self) -> List[TaskList]:
        """Lee el documento de listas; la primera vez guarda una lista por defecto con un grupo."""
        lists = self.client.get_lists()
        if lists is None:
            lists = default_lists()
            self.lists = lists
            try:
                self.client.put_lists(lists)
                logger.info("No list config found; saved default list")
            except TodoError as e:
                self._set_error(e)
        else:
            self.lists = lists
        self._notify()
        return self.lists

    def _find_list(self, list_id: Optional[str]) -> Optional[TaskList]:
        for lst in self.lists:
            if lst.id == list_id:
                return lst
        return None

    def _save_lists(self, new_lists: List[TaskList]) -> bool:
        previous = self.lists
        self.lists = new_lists
        self._notify()
        try:
            self.client.put_lists(new_lists)
        except TodoError as e:
            self.lists = previous
            self._set_error(e)
            self._notify()
            return False
        return True

    def _copy_lists(self) -> List[TaskList]:
        return [TaskList.from_dict(lst.to_dict()) for lst in self.lists]

    def add_list(self, name: str) -> Optional[TaskList]:
        name = name.strip()
        if not name:
            raise ValueError("list name must not be empty")
        lst = TaskList(id=_new_id("l"), name=name,
                       groups=[Group(id=_new_id("g"), name="General", color="#3b82f6")])
        return lst if self._save_lists(self._copy_lists() + [lst]) else None

    def rename_list(self, list_id: str, name: str) -> bool:
        name = name.strip()
        if not name:
            raise ValueError("list name must not be empty")
        new_lists = self._copy_lists()
        for lst in new_lists:
            if lst.id == list_id:
                lst.name = name
                return self._save_lists(new_lists)
        raise KeyError(list_id)

    def remove_list(self, list_id: str) -> bool:
        if self._find_list(list_id) is None:
            raise KeyError(list_id)
        if len(self.lists) == 1:
            raise ValueError("cannot remove the last list")
        return self._save_lists([lst for lst in self._copy_lists() if lst.id != list_id])

    def add_group(self, list_id: str, name: str, color: str = FALLBACK_COLOR) -> Optional[Group]:
        name = name.strip()
        if not name:
            raise ValueError("group name must not be empty")
        new_lists = self._copy_lists()
        for lst in new_lists:
            if lst.id == list_id:
                group = Group(id=_new_id("g"), name=name, color=color)
                lst.groups.append(group)
                return group if self._save_lists(new_lists) else None
        raise KeyError(list_id)

    def remove_group(self, list_id: str, group_id: str) -> bool:
        new_lists = self._copy_lists()
        for lst in new_lists:
            if lst.id == list_id:
                lst.groups = [g for g in lst.groups if g.id != group_id]
                return self._save_lists(new_lists)
        raise KeyError(list_id)

    def group_color(self, task: Task) -> str:
        scope = self.sync.scope
        return group_color(self.lists, task.groupId, scope.list_id if scope else None)

    # ---- scope ----
    def select(self, list_id: Optional[str] = None, group_id: Optional[str] = None) -> Scope:
        """Muestra un grupo, todos los grupos de una lista o (sin argumentos) todas las tareas."""
        group_ids = ()
        if group_id:
            group_ids = (group_id,)
        elif list_id:
            lst = self._find_list(list_id)
            if lst is None:
                raise KeyError(list_id)
            group_ids = tuple(g.id for g in lst.groups)
        account = getattr(self.client, "user_id", "") or ""
        scope = Scope(account=account, list_id=list_id, group_id=group_id, group_ids=group_ids)
        self.sync.set_scope(scope)
        return scope

    def _default_group(self) -> str:
        scope = self.sync.scope
        if scope is not None and scope.group_id:
            return scope.group_id
        if scope is not None and scope.list_id:
            lst = self._find_list(scope.list_id)
            if lst is not None and lst.groups:
                return lst.groups[0].id
        return DEFAULT_GROUP_ID

    # ---- tasks ----
    def visible_tasks(self) -> List[Task]:
        """Último snapshot con los cambios locales pendientes aplicados encima."""
        with self._lock:
            ops = list(self._pending)
        by_id = {t.id: t for t in self.sync.tasks}
        for op in ops:
            if op.kind == "create" and op.task is not None:
                by_id.setdefault(op.task.id, op.task)
            elif op.kind == "update" and op.task_id in by_id:
                by_id[op.task_id] = by_id[op.task_id].merged(op.fields)
            elif op.kind == "delete":
                by_id.pop(op.task_id, None)
        scope = self.sync.scope
        tasks = by_id.values()
        if scope is not None and (scope.group_ids or scope.matches_nothing):
            tasks = [t for t in tasks if t.groupId in scope.group_ids]
        return sort_tasks(tasks)

    def get_task(self, task_id: str) -> Optional[Task]:
        for t in self.visible_tasks():
            if t.id == task_id:
                return t
        return None

    def _run(self, op: PendingOp, call: Callable[[], Any]) -> Any:
        with self._lock:
            self._pending.append(op)
        self._notify()
        try:
            result = call()
        except TodoError as e:
            with self._lock:
                if op in self._pending:
                    self._pending.remove(op)
            logger.info("Rolled back %s of task %s", op.kind, op.task_id)
            self._set_error(e)
            self._notify()
            return None
        with self._lock:
            if isinstance(result, Task):
                op.task = result
                op.task_id = result.id
            op.confirmed = True
        if self.error is not None and self.error.kind in ("rejected", "unreachable"):
            self.error = None
        self.sync.refresh()
        return result if result is not None else True

    def add_task(self, title: str, group_id: Optional[str] = None, due_date: Optional[str] = None) -> Optional[Task]:
        fields: Dict[str, Any] = {"title": title, "groupId": group_id or self._default_group()}
        if due_date:
            fields["dueDate"] = due_date
        clean = clean_task_fields(fields)
        temp = Task.from_dict({**clean, "id": _new_id("tmp"), "createdAt": now_iso()})
        op = PendingOp(kind="create", task_id=temp.id, fields=clean, task=temp)
        return self._run(op, lambda: self.client.create_task(clean))

    def update_task(self, task_id: str, **fields) -> bool:
        """Editar/patch de una tarea; solo cambian los campos dados."""
        clean = clean_task_fields(fields)
        if not clean:
            return True
        op = PendingOp(kind="update", task_id=task_id, fields=clean)
        return bool(self._run(op, lambda: self.client.update_task(task_id, clean)))

    def toggle_done(self, task_id: str) -> bool:
        task = self.get_task(task_id)
        if task is None:
            return False
        return self.update_task(task_id, is_done=not task.is_done)

    def rename_task(self, task_id: str, new_title: str) -> bool:
        return self.update_task(task_id, title=new_title)

    def set_due(self, task_id: str, due_iso: Optional[str]) -> bool:
        return self.update_task(task_id, dueDate=due_iso)

    def move_task(self, task_id: str, group_id: str) -> bool:
        return self.update_task(task_id, groupId=group_id)

    def delete_task(self, task_id: str) -> bool:
        def call():
            try:
                self.client.delete_task(task_id)
            except BackendRejected as e:
                # si ya no existe, igual quedó borrada
                if e.status != 404:
                    raise
        op = PendingOp(kind="delete", task_id=task_id)
        return bool(self._run(op, call))

    # ---- subtasks ----
    def _set_subtasks(self, task_id: str, edit: Callable[[List[Subtask]], List[Subtask]]) -> bool:
        task = self.get_task(task_id)
        if task is None:
            return False
        subtasks = edit([Subtask(s.id, s.title, s.is_done, s.dueDate) for s in task.subtasks])
        return self.update_task(task_id, subtasks=[s.to_dict() for s in subtasks])

    def add_subtask(self, task_id: str, title: str, due_date: Optional[str] = None) -> bool:
        title = title.strip()
        if not title:
            raise ValueError("subtask title must not be empty")
        return self._set_subtasks(
            task_id, lambda subs: subs + [Subtask(id=_new_id("s"), title=title, dueDate=due_date)])

    def toggle_subtask(self, task_id: str, subtask_id: str) -> bool:
        def flip(subs: List[Subtask]) -> List[Subtask]:
            for s in subs:
                if s.id == subtask_id:
                    s.is_done = not s.is_done
            return subs
        return self._set_subtasks(task_id, flip)

    def remove_subtask(self, task_id: str, subtask_id: str) -> bool:
        return self._set_subtasks(task_id, lambda subs: [s for s in subs if s.id != subtask_id])
