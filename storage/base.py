from __future__ import annotations
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from core.models import Task, TaskList

SnapshotCallback = Callable[[List[Task]], None]
ErrorCallback = Callable[[Exception], None]


class TaskStore(Protocol):
    """Task CRUD every backend adapter offers."""

    def list_tasks(self, group_ids: Optional[Sequence[str]] = None) -> List[Task]: ...

    def create_task(self, fields: Dict[str, Any]) -> Task: ...

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> None: ...

    def delete_task(self, task_id: str) -> None: ...


class ListConfigStore(Protocol):
    """The lists/groups document, read and replaced as a whole."""

    def get_lists(self) -> Optional[List[TaskList]]: ...

    def put_lists(self, lists: List[TaskList]) -> None: ...


class Subscription:
    """Handle for one live feed of snapshots; unsubscribe() is idempotent."""
    def __init__(self, group_ids: Optional[Sequence[str]] = None,
                 on_cancel: Optional[Callable[[], None]] = None):
        self.group_ids = tuple(group_ids) if group_ids else None
        self._cancelled = threading.Event()
        self._on_cancel = on_cancel

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; True once cancelled."""
        return self._cancelled.wait(timeout)

    def unsubscribe(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        if self._on_cancel is not None:
            self._on_cancel()


class Subscriber(Protocol):
    def subscribe(self, group_ids: Optional[Sequence[str]], on_snapshot: SnapshotCallback,
                  on_error: ErrorCallback) -> Subscription: ...
