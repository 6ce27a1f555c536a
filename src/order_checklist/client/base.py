from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, List, Optional, Protocol, TypeVar

from ..domain.models import ChatSession


T = TypeVar("T")


class SessionSource(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


@dataclass(frozen=True)
class Served(Generic[T]):
    """Result of a facade call plus the store that produced it."""

    value: T
    source: SessionSource


class SessionStrategy(Protocol):
    """One backing store for chat sessions."""

    source: SessionSource

    def list_sessions(self) -> List[ChatSession]: ...

    def get_session(self, session_id: str) -> Optional[ChatSession]: ...

    def save_session(self, session: ChatSession) -> None: ...

    def delete_session(self, session_id: str) -> None: ...

    def clear_sessions(self) -> None: ...
