from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigMissing

BACKEND_HTTP = "http"
BACKEND_POCKETBASE = "pocketbase"
DEFAULT_POLL_SECONDS = 5.0


@dataclass(frozen=True)
class ServerSettings:
    admin_password: str
    db_path: str = "todo.sqlite3"
    host: str = "127.0.0.1"
    port: int = 8787


@dataclass(frozen=True)
class ClientSettings:
    backend: str = BACKEND_HTTP
    api_url: str = ""
    auth_key: str = ""
    pb_url: str = ""
    pb_identity: str = ""
    pb_password: str = ""
    poll_interval: float = DEFAULT_POLL_SECONDS


def _env(env: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    if env is not None:
        return env
    load_dotenv()
    return os.environ


def _get(env: Mapping[str, str], key: str, default: str = "") -> str:
    return (env.get(key) or default).strip()


def load_server_settings(env: Optional[Mapping[str, str]] = None) -> ServerSettings:
    env = _env(env)
    password = _get(env, "ADMIN_PASSWORD")
    if not password:
        raise ConfigMissing(["ADMIN_PASSWORD"])
    return ServerSettings(
        admin_password=password,
        db_path=_get(env, "TODO_DB_PATH", "todo.sqlite3"),
        host=_get(env, "TODO_HOST", "127.0.0.1"),
        port=int(_get(env, "TODO_PORT", "8787")),
    )


def load_client_settings(env: Optional[Mapping[str, str]] = None) -> ClientSettings:
    env = _env(env)
    backend = _get(env, "TODO_BACKEND", BACKEND_HTTP).lower()
    if backend == BACKEND_HTTP:
        required = ("TODO_API_URL", "TODO_AUTH_KEY")
    elif backend == BACKEND_POCKETBASE:
        required = ("PB_URL", "PB_IDENTITY", "PB_PASSWORD")
    else:
        raise ConfigMissing([f"TODO_BACKEND (unknown backend {backend!r})"])
    missing = [k for k in required if not _get(env, k)]
    if missing:
        raise ConfigMissing(missing)
    return ClientSettings(
        backend=backend,
        api_url=_get(env, "TODO_API_URL"),
        auth_key=_get(env, "TODO_AUTH_KEY"),
        pb_url=_get(env, "PB_URL"),
        pb_identity=_get(env, "PB_IDENTITY"),
        pb_password=_get(env, "PB_PASSWORD"),
        poll_interval=float(_get(env, "TODO_POLL_SECONDS", str(DEFAULT_POLL_SECONDS))),
    )
