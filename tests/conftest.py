from __future__ import annotations

from pathlib import Path

import pytest

from api.server import create_app
from core.config import ServerSettings
from storage.sqlite_table import SqliteTaskTable

from .fakes import FakeStore

SECRET = "s3cret"


@pytest.fixture()
def server_settings(tmp_path: Path) -> ServerSettings:
    return ServerSettings(admin_password=SECRET, db_path=str(tmp_path / "todo.sqlite3"))


@pytest.fixture()
def table(server_settings: ServerSettings) -> SqliteTaskTable:
    return SqliteTaskTable(server_settings.db_path)


@pytest.fixture()
def api(server_settings: ServerSettings, table: SqliteTaskTable):
    """Flask test client over a real SQLite table."""
    app = create_app(server_settings, table)
    return app.test_client()


@pytest.fixture()
def fake_store() -> FakeStore:
    return FakeStore()
