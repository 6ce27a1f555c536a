"""Client-side chat-session persistence with on-device fallback."""

from .api import ChatSessionApiClient
from .base import Served, SessionSource, SessionStrategy
from .facade import FallbackSessionStore, build_session_store
from .local import LocalKeyValueStore, LocalSessionStore

__all__ = [
    "ChatSessionApiClient",
    "FallbackSessionStore",
    "LocalKeyValueStore",
    "LocalSessionStore",
    "Served",
    "SessionSource",
    "SessionStrategy",
    "build_session_store",
]
