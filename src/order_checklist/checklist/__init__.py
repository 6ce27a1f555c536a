"""Checklist extraction and persistence.

Modules:
- cache: in-process TTL cache for freshly extracted checklists
- db: SQLite store for chat sessions and shared checklists
- parser: validation of model output into checklist items
- extraction: hosted model client (structured extraction + chat streaming)
- service: orchestration of model, cache and store
- streaming: line framing for streamed chat replies
- frontend: Starlette HTTP API
"""

from .cache import TTLCache
from .db import ChecklistDatabase
from .service import CHECKLIST_TTL_SECONDS, ChecklistExtractionService
from .frontend.app import create_app

__all__ = [
    "TTLCache",
    "ChecklistDatabase",
    "CHECKLIST_TTL_SECONDS",
    "ChecklistExtractionService",
    "create_app",
]
