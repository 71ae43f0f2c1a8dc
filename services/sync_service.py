"""
Keeps an in-memory task collection in step with the backend.

Two ways of getting snapshots, one per backend:
- PollingSubscriber: re-list every few seconds (HTTP endpoints)
- storage.realtime.RealtimeSubscriber: re-list on every pushed change (PocketBase)

TaskSync owns the collection: one subscription per scope, snapshots replace
the collection wholesale, a failed sync keeps the last good snapshot and only
raises the error flag.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from core.config import DEFAULT_POLL_SECONDS
from core.exceptions import AuthFailed, BackendRejected, ConfigMissing, TodoError
from core.models import Task
from storage.base import ErrorCallback, SnapshotCallback, Subscriber, Subscription, TaskStore

logger = logging.getLogger(__name__)

SNAPSHOT = "snapshot"
ERROR = "error"

Listener = Callable[[str], None]


class PollingSubscriber:
    """Pull strategy: list now, then every `interval` seconds until unsubscribed."""
    def __init__(self, store: TaskStore, interval: float = DEFAULT_POLL_SECONDS):
        self.store = store
        self.interval = max(0.01, float(interval))

    def subscribe(self, group_ids: Optional[Sequence[str]], on_snapshot: SnapshotCallback,
                  on_error: ErrorCallback) -> Subscription:
        sub = Subscription(group_ids)
        threading.Thread(target=self._run, args=(sub, on_snapshot, on_error),
                         daemon=True, name="task-poller").start()
        return sub

    def _run(self, sub: Subscription, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> None:
        while sub.active:
            try:
                tasks = self.store.list_tasks(sub.group_ids)
            except TodoError as e:
                if not sub.active:
                    return
                logger.warning("Sync failed: %s", e)
                on_error(e)
                if isinstance(e, (AuthFailed, ConfigMissing)):
                    # retrying cannot fix a bad key or config
                    return
            except Exception as e:
                if not sub.active:
                    return
                logger.exception("Sync failed unexpectedly")
                on_error(BackendRejected(f"Unexpected sync failure: {e!r}"))
            else:
                if not sub.active:
                    return
                on_snapshot(tasks)
            if sub.wait(self.interval):
                return


@dataclass(frozen=True)
class Scope:
    """Which tasks the collection holds: an account plus the selected list/group."""
    account: str = ""
    list_id: Optional[str] = None
    group_id: Optional[str] = None
    group_ids: Tuple[str, ...] = ()

    @property
    def matches_nothing(self) -> bool:
        """A list without groups: nothing can be in it, so nothing is fetched."""
        return bool(self.list_id) and not self.group_id and not self.group_ids


class TaskSync:
    def __init__(self, store: TaskStore, subscriber: Subscriber):
        self.store = store
        self.subscriber = subscriber
        self._lock = threading.Lock()
        self._tasks: List[Task] = []
        self._error: Optional[TodoError] = None
        self._has_snapshot = False
        self._scope: Optional[Scope] = None
        self._sub: Optional[Subscription] = None
        self._generation = 0
        self._listeners: List[Listener] = []

    # ---- state ----
    @property
    def tasks(self) -> List[Task]:
        with self._lock:
            return list(self._tasks)

    @property
    def error(self) -> Optional[TodoError]:
        return self._error

    @property
    def has_snapshot(self) -> bool:
        return self._has_snapshot

    @property
    def scope(self) -> Optional[Scope]:
        return self._scope

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event)

    # ---- subscription lifecycle ----
    def set_scope(self, scope: Scope) -> None:
        """Switch to a new scope, cancelling the previous subscription first."""
        with self._lock:
            if scope == self._scope and self._sub is not None and self._sub.active:
                return
            old, self._sub = self._sub, None
            self._generation += 1
            gen = self._generation
            self._scope = scope
            self._tasks = []
            self._has_snapshot = False
            self._error = None
        if old is not None:
            old.unsubscribe()
        if scope.matches_nothing:
            self._apply(gen, [])
            return
        logger.debug("Subscribing scope=%s", scope)
        sub = self.subscriber.subscribe(
            scope.group_ids or None,
            lambda tasks: self._apply(gen, tasks),
            lambda err: self._fail(gen, err),
        )
        with self._lock:
            if gen == self._generation:
                self._sub = sub
                return
        # a newer set_scope won the race
        sub.unsubscribe()

    def refresh(self) -> None:
        """Fetch the current scope right now (used after local mutations)."""
        with self._lock:
            gen = self._generation
            scope = self._scope
        if scope is None:
            return
        if scope.matches_nothing:
            self._apply(gen, [])
            return
        try:
            tasks = self.store.list_tasks(scope.group_ids or None)
        except TodoError as e:
            logger.warning("Refresh failed: %s", e)
            self._fail(gen, e)
            return
        except Exception as e:
            logger.exception("Refresh failed unexpectedly")
            self._fail(gen, BackendRejected(f"Unexpected sync failure: {e!r}"))
            return
        self._apply(gen, tasks)

    def close(self) -> None:
        with self._lock:
            old, self._sub = self._sub, None
            self._generation += 1
        if old is not None:
            old.unsubscribe()

    # ---- callbacks ----
    def _apply(self, gen: int, tasks: List[Task]) -> None:
        with self._lock:
            if gen != self._generation:
                logger.debug("Dropping snapshot for stale scope")
                return
            self._tasks = list(tasks)
            self._has_snapshot = True
            self._error = None
        self._notify(SNAPSHOT)

    def _fail(self, gen: int, error: TodoError) -> None:
        with self._lock:
            if gen != self._generation:
                return
            self._error = error
        self._notify(ERROR)
