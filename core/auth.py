from __future__ import annotations
from typing import Optional

from core.exceptions import AuthFailed, ConfigMissing

AUTH_HEADER = "x-auth-key"


class AuthGate:
    """Single shared-secret check in front of every store operation.

    Plain equality, no sessions and no expiry.
    """
    def __init__(self, expected_secret: str):
        if not expected_secret:
            raise ConfigMissing(["ADMIN_PASSWORD"])
        self._expected = expected_secret

    def check(self, secret: Optional[str]) -> bool:
        return secret is not None and secret == self._expected

    def require(self, secret: Optional[str]) -> None:
        if not self.check(secret):
            raise AuthFailed()
