"""
client/session.py -- Client-side session state for Amlak API consumers.

A session is valid only while all three hold:
  1. an access token is stored,
  2. the token's exp claim is still in the future,
  3. less than session_timeout seconds (30 minutes by default) have passed
     since the last recorded activity.

An idle timeout clears the whole session: token, refresh token, cached
profile and activity stamp. An expired access token only drops itself while
a refresh token is held; without one the whole session is cleared as well.

The token is read here WITHOUT signature verification. The client does not
hold the server key; it only needs exp to avoid sending dead tokens. The
server re-verifies everything. Likewise is_admin() is for UI gating only.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from jose import JWTError, jwt

from client.storage import MemoryStorage, SessionStorage

logger = logging.getLogger("amlak.client")

DEFAULT_SESSION_TIMEOUT = 30 * 60

_TOKEN = "token"
_REFRESH_TOKEN = "refresh_token"
_USER = "user"
_LAST_ACTIVITY = "last_activity"

# Never cached client-side, whatever the server sends.
_SECRET_KEYS = {"password", "hashed_password", "password_hash"}


def token_expiry(token: str) -> Optional[int]:
    """Return the exp claim of an unverified JWT, or None if unreadable."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return int(exp)


class SessionManager:
    """Owns the token, the cached profile and the idle timer for one client.

    Args:
        storage:         Where state lives. Defaults to MemoryStorage.
        session_timeout: Idle seconds after which the session is dropped.
        clock:           Returns the current POSIX time. Injected by tests.
        on_logout:       Called after logout() clears the session; a UI
                         hooks its "go to the login screen" transition here.
    """

    def __init__(
        self,
        storage: Optional[SessionStorage] = None,
        session_timeout: int = DEFAULT_SESSION_TIMEOUT,
        clock: Callable[[], float] = time.time,
        on_logout: Optional[Callable[[], None]] = None,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self.session_timeout = session_timeout
        self.clock = clock
        self.on_logout = on_logout

    def _touch(self) -> None:
        self.storage.set(_LAST_ACTIVITY, self.clock())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_token(self, token: str, refresh_token: Optional[str] = None) -> None:
        self.storage.set(_TOKEN, token)
        if refresh_token is not None:
            self.storage.set(_REFRESH_TOKEN, refresh_token)
        self._touch()

    def set_user(self, profile: dict[str, Any]) -> None:
        self.storage.set(_USER, {k: v for k, v in profile.items() if k not in _SECRET_KEYS})
        self._touch()

    def clear(self) -> None:
        self.storage.clear()

    def logout(self) -> None:
        self.clear()
        logger.info("Client session ended")
        if self.on_logout is not None:
            self.on_logout()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _idle_expired(self, now: float) -> bool:
        last_activity = self.storage.get(_LAST_ACTIVITY)
        return last_activity is None or now - float(last_activity) >= self.session_timeout

    def get_token(self) -> Optional[str]:
        """Return the access token if the session is still valid, else None.

        A successful read counts as activity and restarts the idle timer.
        An expired access token is dropped on its own while a refresh token
        is held, so ApiClient can exchange it before the next request.
        """
        token = self.storage.get(_TOKEN)
        if not token:
            return None

        now = self.clock()
        if self._idle_expired(now):
            logger.info("Session idle for longer than %ds; clearing session", self.session_timeout)
            self.clear()
            return None

        exp = token_expiry(token)
        if exp is None or now >= exp:
            if self.storage.get(_REFRESH_TOKEN):
                logger.info("Access token is expired or unreadable; keeping refresh token")
                self.storage.delete(_TOKEN)
            else:
                logger.info("Access token is expired or unreadable; clearing session")
                self.clear()
            return None

        self._touch()
        return token

    def get_refresh_token(self) -> Optional[str]:
        refresh_token = self.storage.get(_REFRESH_TOKEN)
        if refresh_token and self._idle_expired(self.clock()):
            logger.info("Session idle for longer than %ds; clearing session", self.session_timeout)
            self.clear()
            return None
        return refresh_token

    def get_user(self) -> Optional[dict[str, Any]]:
        if self.get_token() is None:
            return None
        return self.storage.get(_USER)

    def is_authenticated(self) -> bool:
        return self.get_token() is not None

    def is_admin(self) -> bool:
        user = self.get_user()
        return bool(user) and user.get("role") == "admin"
