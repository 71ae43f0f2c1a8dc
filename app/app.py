from __future__ import annotations
import argparse
import logging
import sys
import threading
from typing import List, Optional

from controller.app_controller import AppController, ErrorState, describe_error
from core.config import BACKEND_POCKETBASE, ClientSettings, load_client_settings, load_server_settings
from core.exceptions import TodoError
from core.logging_setup import setup_logging
from core.models import Task
from services.sync_service import PollingSubscriber, TaskSync
from storage.http_api import HttpApiClient
from storage.pocketbase import PocketBaseClient
from storage.realtime import RealtimeSubscriber

logger = logging.getLogger(__name__)

EXIT_CODES = {"auth": 3, "unreachable": 4, "config": 5, "rejected": 6}


def build_controller(settings: ClientSettings) -> AppController:
    """Arma el backend configurado con su estrategia de sync: PocketBase empuja, HTTP se consulta."""
    if settings.backend == BACKEND_POCKETBASE:
        client = PocketBaseClient(settings.pb_url)
        client.login(settings.pb_identity, settings.pb_password)
        subscriber = RealtimeSubscriber(client)
    else:
        client = HttpApiClient(settings.api_url, settings.auth_key)
        subscriber = PollingSubscriber(client, settings.poll_interval)
    return AppController(client, TaskSync(client, subscriber))


def _fail(err: ErrorState) -> int:
    print(err.message, file=sys.stderr)
    return EXIT_CODES.get(err.kind, 1)


def _print_tasks(controller: AppController, tasks: List[Task]) -> None:
    if not tasks:
        print("No tasks found.")
        return
    print(f"{'ID':<14} {'ST':<4} {'COLOR':<8} {'DUE':<10}  TITLE")
    print("-" * 64)
    for t in tasks:
        st = "DONE" if t.is_done else "TODO"
        print(f"{t.id:<14} {st:<4} {controller.group_color(t):<8} {t.dueDate or '':<10}  {t.title}")
        for s in t.subtasks:
            print(f"{'':<14} {'':<4} {'':<8} {'':<10}    [{'x' if s.is_done else ' '}] {s.title}")


def _open(ns: argparse.Namespace) -> AppController:
    controller = build_controller(load_client_settings())
    controller.load_lists()
    controller.select(getattr(ns, "list", None), getattr(ns, "group", None))
    controller.sync.refresh()
    return controller


def _finish(controller: AppController, ok: bool) -> int:
    controller.close()
    if not ok and controller.error is not None:
        return _fail(controller.error)
    return 0 if ok else 1


# ---------- commands ----------
def cmd_serve(ns: argparse.Namespace) -> int:
    from api.server import create_app

    settings = load_server_settings()
    app = create_app(settings)
    logger.info("Serving on http://%s:%s", settings.host, settings.port)
    app.run(host=settings.host, port=settings.port)
    return 0


def cmd_tasks(ns: argparse.Namespace) -> int:
    controller = _open(ns)
    if controller.sync.error is not None:
        return _finish(controller, False)
    _print_tasks(controller, controller.visible_tasks())
    return _finish(controller, True)


def cmd_add(ns: argparse.Namespace) -> int:
    controller = _open(ns)
    task = controller.add_task(ns.title, group_id=ns.group, due_date=ns.due)
    if task is not None:
        print(f"Added task {task.id}: {task.title}")
    return _finish(controller, task is not None)


def cmd_done(ns: argparse.Namespace) -> int:
    controller = _open(ns)
    ok = controller.update_task(ns.task_id, is_done=not ns.reopen)
    if ok:
        print(f"Marked task {ns.task_id} as {'open' if ns.reopen else 'done'}.")
    return _finish(controller, ok)


def cmd_rename(ns: argparse.Namespace) -> int:
    controller = _open(ns)
    ok = controller.rename_task(ns.task_id, ns.title)
    return _finish(controller, ok)


def cmd_rm(ns: argparse.Namespace) -> int:
    controller = _open(ns)
    ok = controller.delete_task(ns.task_id)
    if ok:
        print(f"Deleted task {ns.task_id}.")
    return _finish(controller, ok)


def cmd_subtask(ns: argparse.Namespace) -> int:
    controller = _open(ns)
    if controller.get_task(ns.task_id) is None:
        print(f"Task {ns.task_id} not found.", file=sys.stderr)
        return _finish(controller, False)
    ok = controller.add_subtask(ns.task_id, ns.title)
    return _finish(controller, ok)


def cmd_lists(ns: argparse.Namespace) -> int:
    controller = build_controller(load_client_settings())
    for lst in controller.load_lists():
        print(f"{lst.id}  {lst.name}")
        for g in lst.groups:
            print(f"    {g.id:<12} {g.color:<8} {g.name}")
    return _finish(controller, controller.error is None)


def cmd_add_list(ns: argparse.Namespace) -> int:
    controller = build_controller(load_client_settings())
    controller.load_lists()
    lst = controller.add_list(ns.name)
    if lst is not None:
        print(f"Added list {lst.id}: {lst.name}")
    return _finish(controller, lst is not None)


def cmd_add_group(ns: argparse.Namespace) -> int:
    controller = build_controller(load_client_settings())
    controller.load_lists()
    group = controller.add_group(ns.list_id, ns.name, ns.color)
    if group is not None:
        print(f"Added group {group.id}: {group.name}")
    return _finish(controller, group is not None)


def cmd_watch(ns: argparse.Namespace) -> int:
    controller = build_controller(load_client_settings())
    controller.load_lists()
    changed = threading.Event()
    controller.on_change(changed.set)
    controller.select(ns.list, ns.group)
    try:
        while True:
            changed.wait()
            changed.clear()
            if controller.error is not None:
                print(controller.error.message, file=sys.stderr)
                if controller.error.kind in ("auth", "config"):
                    return _finish(controller, False)
            if controller.sync.has_snapshot:
                print()
                _print_tasks(controller, controller.visible_tasks())
    except KeyboardInterrupt:
        return _finish(controller, True)


def _add_scope_args(s: argparse.ArgumentParser) -> None:
    s.add_argument("--list", help="List id to show.")
    s.add_argument("--group", help="Group id to show (or to add into).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="todo-sync", description="Personal task manager client and API server.")
    p.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr.")
    p.add_argument("--log-file", help="Also write full logs to this file.")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("serve", help="Run the /api/tasks and /api/lists endpoints.")
    s.set_defaults(func=cmd_serve)

    s = sub.add_parser("tasks", help="List tasks.")
    _add_scope_args(s)
    s.set_defaults(func=cmd_tasks)

    s = sub.add_parser("add", help="Add a task.")
    s.add_argument("title")
    s.add_argument("--due", help="Due date, e.g. 2026-10-31.")
    _add_scope_args(s)
    s.set_defaults(func=cmd_add)

    s = sub.add_parser("done", help="Mark a task as done.")
    s.add_argument("task_id")
    s.add_argument("--reopen", action="store_true", help="Mark it open again instead.")
    s.set_defaults(func=cmd_done)

    s = sub.add_parser("rename", help="Change a task title.")
    s.add_argument("task_id")
    s.add_argument("title")
    s.set_defaults(func=cmd_rename)

    s = sub.add_parser("rm", help="Delete a task.")
    s.add_argument("task_id")
    s.set_defaults(func=cmd_rm)

    s = sub.add_parser("subtask", help="Add a subtask to a task.")
    s.add_argument("task_id")
    s.add_argument("title")
    s.set_defaults(func=cmd_subtask)

    s = sub.add_parser("lists", help="Show lists and their groups.")
    s.set_defaults(func=cmd_lists)

    s = sub.add_parser("add-list", help="Create a list.")
    s.add_argument("name")
    s.set_defaults(func=cmd_add_list)

    s = sub.add_parser("add-group", help="Create a group inside a list.")
    s.add_argument("list_id")
    s.add_argument("name")
    s.add_argument("--color", default="#9ca3af", help="Hex color, e.g. #ef4444.")
    s.set_defaults(func=cmd_add_group)

    s = sub.add_parser("watch", help="Print the task list on every sync until Ctrl-C.")
    _add_scope_args(s)
    s.set_defaults(func=cmd_watch)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    setup_logging(console_level=logging.DEBUG if ns.verbose else logging.WARNING, log_file=ns.log_file)
    try:
        return int(ns.func(ns))
    except TodoError as e:
        return _fail(describe_error(e))
    except (KeyError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
