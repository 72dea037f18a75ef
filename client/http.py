"""
client/http.py -- requests-based client for the Amlak REST API.

Every authenticated call attaches "Authorization: Bearer <token>" taken from
the SessionManager. When the server rejects the token (401, or 403 with
code "invalid_token"):

  1. At most one refresh runs at a time (threading.Lock). A caller whose
     stale token was already replaced by a concurrent refresh skips the
     refresh and reuses the new token.
  2. The original request is retried exactly once with the new token.
  3. If no refresh is possible, the session is logged out and ApiError is
     raised with the ORIGINAL rejected response attached.

An access token that already expired locally is refreshed before sending
when the session still holds a refresh token.

Non-2xx answers raise ApiError parsed from the {"error": {code, message}}
envelope. Transport failures (requests.RequestException) propagate.

Usage:
    client = ApiClient("http://localhost:8000/api/v1", SessionManager())
    client.login("alice", "secret1")
    client.post("/ads", json={...})
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import requests

from client.session import SessionManager

logger = logging.getLogger("amlak.client")


class ApiError(Exception):
    """A non-2xx response from the API."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        response: Optional[requests.Response] = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        self.response = response
        super().__init__(f"{status_code} {code}: {message}")

    @classmethod
    def from_response(cls, response: requests.Response) -> "ApiError":
        try:
            error = response.json()["error"]
            code = str(error["code"])
            message = str(error["message"])
        except (ValueError, KeyError, TypeError):
            code = f"http_{response.status_code}"
            message = response.reason or "Request failed."
        return cls(response.status_code, code, message, response)


class ApiClient:
    def __init__(
        self,
        base_url: str,
        session: SessionManager,
        http: Optional[requests.Session] = None,
        timeout: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.http = http if http is not None else requests.Session()
        self.timeout = timeout
        self._refresh_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(self, method: str, path: str, token: Optional[str], **kwargs: Any) -> requests.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return self.http.request(
            method,
            f"{self.base_url}/{path.lstrip('/')}",
            headers=headers,
            timeout=self.timeout,
            **kwargs,
        )

    @staticmethod
    def _result(response: requests.Response) -> Any:
        if not response.ok:
            raise ApiError.from_response(response)
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _auth_failed(response: requests.Response) -> bool:
        # 401: no usable token was sent. 403 invalid_token: the token was rejected.
        if response.status_code == 401:
            return True
        return response.status_code == 403 and ApiError.from_response(response).code == "invalid_token"

    def request(self, method: str, path: str, auth: bool = True, **kwargs: Any) -> Any:
        """Send a request and return the decoded JSON body.

        auth=False skips the bearer header and the refresh logic; the login,
        register and refresh calls use it.
        """
        if not auth:
            return self._result(self._send(method, path, None, **kwargs))

        token = self.session.get_token()
        if token is None and self.session.get_refresh_token():
            # Access token expired locally; exchange it before sending.
            token = self._refresh(None)
            if token is None:
                self.session.logout()

        response = self._send(method, path, token, **kwargs)
        if token is None or not self._auth_failed(response):
            return self._result(response)

        new_token = self._refresh(token)
        if new_token is None:
            self.session.logout()
            raise ApiError.from_response(response)

        retry = self._send(method, path, new_token, **kwargs)
        if self._auth_failed(retry):
            self.session.logout()
        return self._result(retry)

    def _refresh(self, stale_token: Optional[str]) -> Optional[str]:
        """Return a usable access token, refreshing at most once across threads.

        stale_token is the token the caller saw fail (None when it had
        expired locally). A different valid token means another thread
        already refreshed.
        """
        with self._refresh_lock:
            current = self.session.get_token()
            if current is not None and current != stale_token:
                return current
            refresh_token = self.session.get_refresh_token()
            if not refresh_token:
                return None
            try:
                return self.refresh(refresh_token)
            except (ApiError, requests.RequestException) as e:
                logger.warning("Token refresh failed: %s", e)
                return None
            try:
                return self.refresh(refresh_token)
            except (ApiError, requests.RequestException) as e:
                logger.warning("Token refresh failed: %s", e)
                return None

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Any:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Any:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)

    # ------------------------------------------------------------------
    # Auth flows
    # ------------------------------------------------------------------

    def _start_session(self, data: dict[str, Any]) -> dict[str, Any]:
        self.session.set_token(data["access_token"], data.get("refresh_token"))
        self.session.set_user(data.get("user") or {})
        return data

    def login(self, username: str, password: str) -> dict[str, Any]:
        data = self.request("POST", "/auth/login", auth=False, json={"username": username, "password": password})
        return self._start_session(data)

    def register(
        self,
        name: str,
        phone: str,
        username: str,
        password: str,
        email: Optional[str] = None,
    ) -> dict[str, Any]:
        body = {"name": name, "phone": phone, "username": username, "password": password}
        if email:
            body["email"] = email
        data = self.request("POST", "/auth/register", auth=False, json=body)
        return self._start_session(data)

    def refresh(self, refresh_token: Optional[str] = None) -> str:
        """Exchange the refresh token for a new access token and store it."""
        refresh_token = refresh_token or self.session.get_refresh_token()
        if not refresh_token:
            raise ApiError(401, "invalid_refresh", "No refresh token available.")
        data = self.request("POST", "/auth/refresh", auth=False, json={"refresh_token": refresh_token})
        token = data["access_token"]
        self.session.set_token(token, refresh_token)
        return token

    def logout(self) -> None:
        self.session.logout()
