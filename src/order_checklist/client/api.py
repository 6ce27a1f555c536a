from datetime import date
from typing import Any, List, Optional

import requests

from ..domain.models import ChatSession
from ..errors import TransportFailure, VersionConflict
from ..logging import get_logger
from .base import SessionSource


class ChatSessionApiClient:
    """Thin client for the chat-session HTTP API with session and logging.

    Any transport error or non-2xx status is raised as `TransportFailure`
    so the facade can fall back to on-device storage. The exception is a 409
    on a save, raised as `VersionConflict`.
    """

    source = SessionSource.REMOTE

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[float] = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.log = get_logger("session-api-client")
        self.s = session or requests.Session()
        self.s.headers.update({"Accept": "application/json"})

    # ---------- helpers ----------
    def _url(self, path: str) -> str:
        return f"{self.base}{path}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        session: Optional[ChatSession] = None,
        **kwargs: Any,
    ) -> requests.Response:
        try:
            r = self.s.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            self.log.error(f"{method} {path} failed: {e}")
            raise TransportFailure(f"{method} {path} unreachable") from e
        if r.status_code == 409 and session is not None:
            # A reachable server rejecting a stale save is not a transport failure
            self.log.warning(f"{method} {path} rejected: session {session.id} changed on the server")
            raise VersionConflict(session.id, session.version)
        if not r.ok:
            self.log.error(f"{method} {path} returned HTTP {r.status_code}")
            raise TransportFailure(f"{method} {path} returned HTTP {r.status_code}")
        return r

    def _json(self, r: requests.Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise TransportFailure("response body is not JSON") from e

    @staticmethod
    def _session(data: Any) -> ChatSession:
        fallback = data.get("createdAt") if isinstance(data, dict) else None
        return ChatSession.from_dict(data, now=fallback or "", today=date.today())

    # ---------- sessions ----------
    def list_sessions(self) -> List[ChatSession]:
        data = self._json(self._request("GET", "/chat-sessions"))
        if not isinstance(data, list):
            raise TransportFailure("session list must be a JSON array")
        return [self._session(d) for d in data]

    def get_session(self, session_id: str) -> ChatSession:
        """Fetch one session; a 404 raises `TransportFailure` like any other non-2xx."""
        data = self._json(self._request("GET", f"/chat-sessions/{requests.utils.quote(session_id, safe='')}"))
        return self._session(data)

    def save_session(self, session: ChatSession) -> None:
        self._request("POST", "/chat-sessions", session=session, json=session.to_dict())

    def delete_session(self, session_id: str) -> None:
        self._request("DELETE", f"/chat-sessions/{requests.utils.quote(session_id, safe='')}")

    def clear_sessions(self) -> None:
        self._request("DELETE", "/chat-sessions")
