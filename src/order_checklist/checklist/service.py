from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from ..domain.models import ROLES, Checklist, ChecklistItem, ChecklistRecord
from ..errors import NotFound, ValidationFailure
from ..logging import get_logger
from .cache import TTLCache
from .db import ChecklistDatabase
from .extraction import EXTRACTION_PROMPT, ChecklistModel
from .parser import parse_items


LOG = get_logger("checklist-service")

CHECKLIST_TTL_SECONDS = 2 * 24 * 60 * 60  # two days


def _fmt_price(price: Decimal) -> str:
    return format(price.normalize(), "f")


def summarize_items(items: Sequence[ChecklistItem]) -> str:
    """Assistant reply shown in the chat after an extraction."""
    lines = [
        f"{idx}. {item.name} - Quantity: {item.quantity}, Price: ${_fmt_price(item.price)}"
        for idx, item in enumerate(items, start=1)
    ]
    return f"Found {len(items)} items:\n\n" + "\n".join(lines)


def render_checklist_text(checklist: Checklist) -> str:
    """Plain-text export of a shared checklist, one numbered line per item."""
    return "\n".join(
        f"{idx}. {item.name} - Quantity: {item.quantity}, Price: {_fmt_price(item.price)}"
        for idx, item in enumerate(checklist.items, start=1)
    )


@dataclass(frozen=True)
class ExtractionResult:
    checklist_id: str
    items: List[ChecklistItem]

    def to_dict(self) -> Dict[str, Any]:
        return {"checklistId": self.checklist_id, "items": [i.to_dict() for i in self.items]}


def lookup_checklist(cache: TTLCache, db: Optional[ChecklistDatabase], checklist_id: str) -> Checklist:
    """Cache first, then the durable store; `NotFound` when neither has it."""
    record = cache.get(checklist_id)
    if isinstance(record, ChecklistRecord):
        return record.checklist
    if db is not None:
        return db.get_checklist(checklist_id)
    raise NotFound(f"checklist {checklist_id} not found or expired")


def normalize_chat_messages(raw: Any) -> List[Dict[str, str]]:
    """Reduce client chat history to the role/content pairs the model takes."""
    if not isinstance(raw, list) or not raw:
        raise ValidationFailure("messages must be a non-empty list")
    out: List[Dict[str, str]] = []
    for idx, m in enumerate(raw):
        if not isinstance(m, dict):
            raise ValidationFailure(f"messages[{idx}] must be an object")
        role = m.get("role")
        content = m.get("content")
        if role not in ROLES:
            raise ValidationFailure(f"messages[{idx}].role must be one of {', '.join(ROLES)}")
        if not isinstance(content, str):
            raise ValidationFailure(f"messages[{idx}].content must be a string")
        out.append({"role": role, "content": content})
    return out


class ChecklistExtractionService:
    """Coordinates model calls with the checklist cache and durable store.

    A fresh checklist goes into the TTL cache so the share link works
    immediately, and into the database (when one is configured) so it
    survives a restart until the same expiry.
    """

    def __init__(
        self,
        model: ChecklistModel,
        cache: TTLCache,
        db: Optional[ChecklistDatabase] = None,
        *,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        ttl_seconds: float = CHECKLIST_TTL_SECONDS,
    ) -> None:
        self.model = model
        self.cache = cache
        self.db = db
        self._clock = clock
        self._new_id = id_factory
        self.ttl_seconds = ttl_seconds

    def extract(self, image_urls: Sequence[str]) -> ExtractionResult:
        if not image_urls:
            raise ValidationFailure("at least one image URL is required")
        payload = self.model.extract_items(list(image_urls), EXTRACTION_PROMPT)
        items = parse_items(payload)

        now = self._clock()
        checklist = Checklist(
            id=self._new_id(),
            items=items,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self.cache.set(checklist.id, ChecklistRecord(checklist), self.ttl_seconds)
        if self.db is not None:
            self.db.insert_checklist(checklist)
        LOG.info("Extracted checklist %s with %d item(s) from %d image(s)", checklist.id, len(items), len(image_urls))
        return ExtractionResult(checklist_id=checklist.id, items=items)

    def get_checklist(self, checklist_id: str) -> Checklist:
        return lookup_checklist(self.cache, self.db, checklist_id)

    def stream_chat(self, messages: Any) -> Iterator[str]:
        return self.model.stream_chat(normalize_chat_messages(messages))


__all__ = [
    "CHECKLIST_TTL_SECONDS",
    "ChecklistExtractionService",
    "ExtractionResult",
    "lookup_checklist",
    "normalize_chat_messages",
    "render_checklist_text",
    "summarize_items",
]
