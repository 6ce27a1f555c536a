"""Typed records shared by the API, the stores and the client facade."""

from .models import (
    ChatMessage,
    ChatSession,
    Checklist,
    ChecklistItem,
    ChecklistRecord,
    RecordKind,
    SessionRecord,
    StoredRecord,
    derive_title,
    iso_from_epoch,
)

__all__ = [
    "ChatMessage",
    "ChatSession",
    "Checklist",
    "ChecklistItem",
    "ChecklistRecord",
    "RecordKind",
    "SessionRecord",
    "StoredRecord",
    "derive_title",
    "iso_from_epoch",
]
