from __future__ import annotations
from typing import Iterable, Optional


class TodoError(Exception):
    """Base class for every error the task manager surfaces to the user."""
    kind = "error"


class AuthFailed(TodoError):
    kind = "auth"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class BackendUnreachable(TodoError):
    kind = "unreachable"


class BackendRejected(TodoError):
    kind = "rejected"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        msg = super().__str__()
        if self.status is None:
            return msg
        return f"{self.status} {msg}"


class ConfigMissing(TodoError):
    kind = "config"

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__("Missing configuration: " + ", ".join(self.missing))
