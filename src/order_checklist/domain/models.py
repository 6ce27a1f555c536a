from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..errors import ValidationFailure


ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLES = (ROLE_USER, ROLE_ASSISTANT)

TITLE_MAX_LENGTH = 50


def iso_from_epoch(epoch: float) -> str:
    """Render epoch seconds as an ISO-8601 UTC string with millisecond precision."""
    dt = datetime.fromtimestamp(epoch, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _text(value: Any) -> Optional[str]:
    return value.strip() if isinstance(value, str) and value.strip() else None


@dataclass
class ChatMessage:
    id: str
    role: str  # user | assistant
    content: str
    timestamp: str
    images: Optional[List[str]] = None
    checklist_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.images:
            out["images"] = list(self.images)
        if self.checklist_id:
            out["checklistId"] = self.checklist_id
        return out

    @classmethod
    def from_dict(cls, data: Any, *, default_timestamp: str) -> "ChatMessage":
        if not isinstance(data, dict):
            raise ValidationFailure("message must be an object")
        msg_id = _text(data.get("id"))
        if not msg_id:
            raise ValidationFailure("message.id required")
        role = data.get("role")
        if role not in ROLES:
            raise ValidationFailure(f"message.role must be one of {', '.join(ROLES)}")
        content = data.get("content")
        if not isinstance(content, str):
            raise ValidationFailure("message.content must be a string")
        images = data.get("images")
        if images is not None:
            if not isinstance(images, list) or not all(isinstance(u, str) for u in images):
                raise ValidationFailure("message.images must be a list of strings")
        return cls(
            id=msg_id,
            role=role,
            content=content,
            timestamp=_text(data.get("timestamp")) or default_timestamp,
            images=list(images) if images else None,
            checklist_id=_text(data.get("checklistId") or data.get("checklist_id")),
        )


def derive_title(messages: List[ChatMessage], *, today: date) -> str:
    """Title from the first user message, else a date-stamped default."""
    for message in messages:
        if message.role != ROLE_USER:
            continue
        text = " ".join(message.content.split())
        if text:
            return text[:TITLE_MAX_LENGTH]
    return f"Chat {today.isoformat()}"


@dataclass
class ChatSession:
    id: str
    title: str
    messages: List[ChatMessage] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Any, *, now: str, today: date) -> "ChatSession":
        """Build a session from a client payload.

        Message timestamps default to `now`. A missing `createdAt` stays
        `None` so the store can keep the one it already has. A missing or
        blank title is derived from the messages.
        """
        if not isinstance(data, dict):
            raise ValidationFailure("session must be an object")
        session_id = _text(data.get("id"))
        if not session_id:
            raise ValidationFailure("session.id required")
        raw_messages = data.get("messages")
        if raw_messages is None:
            raw_messages = []
        if not isinstance(raw_messages, list):
            raise ValidationFailure("session.messages must be a list")
        messages = [ChatMessage.from_dict(m, default_timestamp=now) for m in raw_messages]
        version = data.get("version")
        if version is not None and (isinstance(version, bool) or not isinstance(version, int)):
            raise ValidationFailure("session.version must be an integer")
        title = _text(data.get("title")) or derive_title(messages, today=today)
        return cls(
            id=session_id,
            title=title,
            messages=messages,
            created_at=_text(data.get("createdAt") or data.get("created_at")),
            updated_at=_text(data.get("updatedAt") or data.get("updated_at")),
            version=version,
        )


@dataclass(frozen=True)
class ChecklistItem:
    name: str
    quantity: int
    price: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "quantity": self.quantity, "price": float(self.price)}


@dataclass(frozen=True)
class Checklist:
    id: str
    items: List[ChecklistItem]
    created_at: float  # epoch seconds
    expires_at: float  # epoch seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "createdAt": iso_from_epoch(self.created_at),
            "expiresAt": iso_from_epoch(self.expires_at),
        }


class RecordKind(str, Enum):
    CHAT_SESSION = "chat_session"
    CHECKLIST = "checklist"


@dataclass(frozen=True)
class SessionRecord:
    session: ChatSession
    kind: RecordKind = field(default=RecordKind.CHAT_SESSION, init=False)


@dataclass(frozen=True)
class ChecklistRecord:
    checklist: Checklist
    kind: RecordKind = field(default=RecordKind.CHECKLIST, init=False)


StoredRecord = Union[SessionRecord, ChecklistRecord]
