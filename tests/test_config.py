from __future__ import annotations

import pytest

from core.config import (BACKEND_HTTP, BACKEND_POCKETBASE, load_client_settings,
                         load_server_settings)
from core.exceptions import ConfigMissing


def test_server_needs_admin_password():
    with pytest.raises(ConfigMissing) as exc:
        load_server_settings({})
    assert exc.value.missing == ["ADMIN_PASSWORD"]


def test_server_defaults_and_overrides():
    settings = load_server_settings({"ADMIN_PASSWORD": "pw", "TODO_PORT": "9000"})
    assert settings.admin_password == "pw"
    assert settings.port == 9000
    assert settings.db_path == "todo.sqlite3"


def test_blank_values_count_as_missing():
    with pytest.raises(ConfigMissing) as exc:
        load_client_settings({"TODO_API_URL": "http://x", "TODO_AUTH_KEY": "   "})
    assert exc.value.missing == ["TODO_AUTH_KEY"]


def test_http_backend_is_the_default():
    settings = load_client_settings({"TODO_API_URL": "http://x", "TODO_AUTH_KEY": "k"})
    assert settings.backend == BACKEND_HTTP
    assert settings.poll_interval == 5.0


def test_pocketbase_lists_every_missing_key():
    with pytest.raises(ConfigMissing) as exc:
        load_client_settings({"TODO_BACKEND": "PocketBase", "PB_URL": "http://pb"})
    assert exc.value.missing == ["PB_IDENTITY", "PB_PASSWORD"]


def test_pocketbase_settings():
    settings = load_client_settings({"TODO_BACKEND": "pocketbase", "PB_URL": "http://pb",
                                     "PB_IDENTITY": "me", "PB_PASSWORD": "pw"})
    assert settings.backend == BACKEND_POCKETBASE
    assert settings.pb_url == "http://pb"


def test_unknown_backend_is_a_config_error():
    with pytest.raises(ConfigMissing):
        load_client_settings({"TODO_BACKEND": "ftp"})
