"""
HTTP endpoints over the relational task table.

GET/POST/PUT/DELETE /api/tasks and GET/POST /api/lists, each guarded by the
x-auth-key header. The auth check runs before anything else, including the
method check, and a denied request never reaches the store.

PUT on an id that does not exist answers 404; DELETE of one answers 200.
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from core.auth import AUTH_HEADER, AuthGate
from core.config import ServerSettings
from core.exceptions import BackendRejected
from core.models import lists_from_json, lists_to_json
from storage.sqlite_table import SqliteTaskTable

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def _error(message: str, status: int):
    return jsonify({"error": message}), status


def _json_body() -> Optional[Any]:
    return request.get_json(silent=True)


def create_app(settings: ServerSettings, store: Any = None) -> Flask:
    """Build the Flask app; `store` defaults to the SQLite table at settings.db_path."""
    app = Flask(__name__)
    gate = AuthGate(settings.admin_password)
    if store is None:
        store = SqliteTaskTable(settings.db_path)
    app.config["TASK_STORE"] = store

    @app.before_request
    def check_auth():
        if not gate.check(request.headers.get(AUTH_HEADER)):
            logger.info("Rejected %s %s: bad %s", request.method, request.path, AUTH_HEADER)
            return _error("Unauthorized", 401)
        return None

    @app.errorhandler(Exception)
    def on_error(e: Exception):
        if isinstance(e, HTTPException):
            return _error(e.description or e.name, e.code or 500)
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _error(str(e), 500)

    @app.route("/api/tasks", methods=ALL_METHODS)
    def tasks():
        if request.method == "GET":
            group_ids = request.args.getlist("groupId")
            items = store.list_tasks(group_ids or None)
            return jsonify([t.to_dict() for t in items])

        if request.method == "POST":
            body = _json_body()
            if not isinstance(body, dict):
                return _error("Expected a JSON object", 400)
            try:
                task = store.create_task(body)
            except ValueError as e:
                return _error(str(e), 400)
            return jsonify({"success": True, "id": task.id}), 201

        if request.method in ("PUT", "DELETE"):
            task_id = request.args.get("id")
            if not task_id:
                return _error("Missing id", 400)
            if request.method == "DELETE":
                store.delete_task(task_id)
                return jsonify({"success": True})
            body = _json_body()
            if not isinstance(body, dict):
                return _error("Expected a JSON object", 400)
            try:
                store.update_task(task_id, body)
            except ValueError as e:
                return _error(str(e), 400)
            except BackendRejected as e:
                return _error(e.args[0], e.status or 400)
            return jsonify({"success": True})

        return _error("Method Not Allowed", 405)

    @app.route("/api/lists", methods=ALL_METHODS)
    def lists():
        if request.method == "GET":
            stored = store.get_lists()
            return jsonify(None if stored is None else lists_to_json(stored))

        if request.method == "POST":
            body = _json_body()
            if not isinstance(body, list):
                return _error("Expected a JSON array of lists", 400)
            try:
                parsed = lists_from_json(body)
            except (KeyError, TypeError, AttributeError) as e:
                return _error(f"Malformed list config: {e}", 400)
            store.put_lists(parsed)
            return jsonify({"success": True})

        return _error("Method Not Allowed", 405)

    return app
