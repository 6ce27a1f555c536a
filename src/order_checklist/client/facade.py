from __future__ import annotations

from typing import Callable, List, Optional, Sequence, TypeVar

from ..config import Settings
from ..domain.models import ChatSession
from ..errors import TransportFailure
from ..logging import get_logger
from .api import ChatSessionApiClient
from .base import Served, SessionStrategy
from .local import LocalKeyValueStore, LocalSessionStore


LOG = get_logger("session-facade")

T = TypeVar("T")


class FallbackSessionStore:
    """Chat-session store that tries each strategy in order.

    The usual ordering is remote API first, on-device storage second. The
    first strategy that does not raise `TransportFailure` answers, and the
    returned `Served` names it. Writes that land on a later strategy are not
    reconciled with earlier ones. `VersionConflict` and other errors are not
    degraded; they reach the caller.
    """

    def __init__(self, strategies: Sequence[SessionStrategy]) -> None:
        if not strategies:
            raise ValueError("at least one session strategy is required")
        self.strategies = list(strategies)

    def _serve(self, action: str, call: Callable[[SessionStrategy], T]) -> Served[T]:
        last_error: Optional[TransportFailure] = None
        for strategy in self.strategies:
            try:
                value = call(strategy)
            except TransportFailure as exc:
                LOG.warning("Could not %s via %s store (%s); trying next", action, strategy.source.value, exc)
                last_error = exc
                continue
            return Served(value=value, source=strategy.source)
        raise TransportFailure(f"no session store could {action}") from last_error

    def list_sessions(self) -> Served[List[ChatSession]]:
        return self._serve("list chat sessions", lambda s: s.list_sessions())

    def get_session(self, session_id: str) -> Served[Optional[ChatSession]]:
        return self._serve("read chat session", lambda s: s.get_session(session_id))

    def save_session(self, session: ChatSession) -> Served[None]:
        return self._serve("save chat session", lambda s: s.save_session(session))

    def delete_session(self, session_id: str) -> Served[None]:
        return self._serve("delete chat session", lambda s: s.delete_session(session_id))

    def clear_all(self) -> Served[None]:
        return self._serve("clear chat sessions", lambda s: s.clear_sessions())


def build_session_store(settings: Settings, *, root_dir: Optional[str] = None) -> FallbackSessionStore:
    """Remote API at `settings.api_url`, then the on-device store."""
    remote = ChatSessionApiClient(settings.api_url)
    local = LocalSessionStore(LocalKeyValueStore(root_dir=root_dir))
    return FallbackSessionStore([remote, local])
