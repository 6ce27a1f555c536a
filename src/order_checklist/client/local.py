from __future__ import annotations

import json
import os
import tempfile
from datetime import date
from typing import Any, Dict, List, Optional

from ..domain.models import ChatSession, RecordKind, SessionRecord
from ..errors import TransportFailure, ValidationFailure
from ..logging import get_logger
from ..paths import find_project_root, var_dir
from .base import SessionSource


LOG = get_logger("session-local-store")

SESSIONS_KEY = "chat-sessions"
DEFAULT_LOCAL_FOLDER = "local"
DEFAULT_LOCAL_FILENAME = "storage.json"


class LocalKeyValueStore:
    """Device-scoped string key/value store kept in one JSON file.

    Mirrors the browser's localStorage: string keys, string values, whole
    file rewritten on every change.
    """

    def __init__(self, path: Optional[str] = None, *, root_dir: Optional[str] = None) -> None:
        if path is None:
            folder = os.path.join(var_dir(find_project_root(root_dir)), DEFAULT_LOCAL_FOLDER)
            path = os.path.join(folder, DEFAULT_LOCAL_FILENAME)
        self.path = os.path.abspath(path)

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            LOG.warning(f"Local storage at {self.path} unreadable ({e}); treating as empty")
            return {}
        if not isinstance(data, dict):
            LOG.warning(f"Local storage at {self.path} is not an object; treating as empty")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, data: Dict[str, str]) -> None:
        folder = os.path.dirname(self.path)
        try:
            os.makedirs(folder, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=folder, prefix=".storage-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            LOG.error(f"Writing local storage failed: {e}")
            raise TransportFailure("local storage not writable") from e

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._dump(data)


class LocalSessionStore:
    """Chat sessions kept on this device under the `chat-sessions` key.

    Every read loads the full list and filters in memory. Writes made here
    are never pushed to the server.
    """

    source = SessionSource.LOCAL

    def __init__(self, kv: LocalKeyValueStore) -> None:
        self.kv = kv

    def _records(self) -> List[SessionRecord]:
        raw = self.kv.get_item(SESSIONS_KEY)
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except ValueError as e:
            LOG.warning(f"Stored chat sessions are not valid JSON ({e}); ignoring them")
            return []
        records: List[SessionRecord] = []
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict) or entry.get("kind") != RecordKind.CHAT_SESSION.value:
                continue
            try:
                session = ChatSession.from_dict(entry, now=entry.get("createdAt") or "", today=date.today())
            except ValidationFailure as e:
                LOG.warning(f"Skipping malformed local chat session: {e}")
                continue
            records.append(SessionRecord(session))
        return records

    def _write(self, records: List[SessionRecord]) -> None:
        payload: List[Dict[str, Any]] = [{"kind": r.kind.value, **r.session.to_dict()} for r in records]
        self.kv.set_item(SESSIONS_KEY, json.dumps(payload, ensure_ascii=False))

    def list_sessions(self) -> List[ChatSession]:
        return [r.session for r in self._records()]

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return next((r.session for r in self._records() if r.session.id == session_id), None)

    def save_session(self, session: ChatSession) -> None:
        records = self._records()
        idx = next((i for i, r in enumerate(records) if r.session.id == session.id), None)
        if idx is None:
            records.append(SessionRecord(session))
        else:
            records[idx] = SessionRecord(session)
        self._write(records)

    def delete_session(self, session_id: str) -> None:
        self._write([r for r in self._records() if r.session.id != session_id])

    def clear_sessions(self) -> None:
        self.kv.remove_item(SESSIONS_KEY)
