"""Client for the remote exercise service.

Every call is best-effort: network errors, timeouts, non-2xx statuses
and malformed bodies are logged and turned into None / [] / False.
The trainer keeps working local-only when the service is unreachable.

Resource shape:
    {"id": 7, "name": "...", "initialFen": "...", "pgn": "1. e4 ...",
     "analysis": null, "color": "white", "isPublic": false}
"""

from __future__ import annotations

import logging

import requests

from booktrainer.config import REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# Returned by _request when the call did not succeed
_FAILED = object()


class RemoteExerciseClient:
    """CRUD over /exercises with an optional bearer token."""

    def __init__(
        self,
        base_url: str | None,
        token: str | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self._base_url)

    @property
    def is_authenticated(self) -> bool:
        return self.enabled and bool(self._token)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _request(self, method: str, endpoint: str, payload: dict | None = None):
        """Send one request.

        Returns:
            Decoded JSON body (None for an empty body), or the _FAILED
            sentinel on any failure.
        """
        if not self.enabled:
            return _FAILED

        url = f"{self._base_url}{endpoint}"
        try:
            response = self._session.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except requests.Timeout:
            logger.warning("%s %s timed out after %ss", method, url, self._timeout)
            return _FAILED
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            return _FAILED

        if not response.ok:
            logger.warning("%s %s returned %s", method, url, response.status_code)
            return _FAILED

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("%s %s returned a non-JSON body", method, url)
            return _FAILED

    def create(self, exercise: dict) -> dict | None:
        """Create an exercise; returns the stored resource with its id."""
        if not self.is_authenticated:
            return None
        body = self._request("POST", "/exercises", exercise)
        if not isinstance(body, dict) or "id" not in body:
            return None
        return body

    def list_mine(self) -> list[dict]:
        if not self.is_authenticated:
            return []
        return _as_list(self._request("GET", "/exercises/my"))

    def list_public(self) -> list[dict]:
        return _as_list(self._request("GET", "/exercises/public"))

    def get(self, exercise_id: int) -> dict | None:
        body = self._request("GET", f"/exercises/{exercise_id}")
        return body if isinstance(body, dict) else None

    def update(self, exercise_id: int, changes: dict) -> dict | None:
        if not self.is_authenticated:
            return None
        body = self._request("PATCH", f"/exercises/{exercise_id}", changes)
        return body if isinstance(body, dict) else None

    def delete(self, exercise_id: int) -> bool:
        if not self.is_authenticated:
            return False
        return self._request("DELETE", f"/exercises/{exercise_id}") is not _FAILED


def _as_list(body) -> list[dict]:
    if body is _FAILED or not isinstance(body, list):
        return []
    return [item for item in body if isinstance(item, dict)]
