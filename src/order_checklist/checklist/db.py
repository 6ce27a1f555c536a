from __future__ import annotations

import json
import os
import sqlite3
import time
from contextlib import contextmanager
from decimal import Decimal
from typing import Callable, Iterator, List, Optional

from ..domain.models import ChatMessage, ChatSession, Checklist, ChecklistItem, iso_from_epoch
from ..errors import NotFound, TransportFailure, VersionConflict
from ..logging import get_logger
from ..paths import find_project_root, var_dir


LOG = get_logger("checklist-db")


DEFAULT_DB_FOLDER = "checklist"
DEFAULT_DB_FILENAME = "checklist.sqlite3"


SCHEMA_SQL = """
-- 1) Chat history, one row per session; messages kept as a JSON array
CREATE TABLE IF NOT EXISTS chat_sessions (
  session_id  TEXT PRIMARY KEY,
  title       TEXT NOT NULL,
  messages    TEXT NOT NULL DEFAULT '[]',
  created_at  TEXT NOT NULL,
  updated_at  TEXT NOT NULL,
  version     INTEGER NOT NULL DEFAULT 1 CHECK(version > 0)
);

-- 2) Shared checklists (epoch seconds so expiry compares numerically)
CREATE TABLE IF NOT EXISTS checklists (
  checklist_id TEXT PRIMARY KEY,
  items        TEXT NOT NULL,
  created_at   REAL NOT NULL,
  expires_at   REAL NOT NULL CHECK(expires_at >= created_at)
);

-- Expired checklists are removed by the store itself on every insert
CREATE TRIGGER IF NOT EXISTS trg_checklists_expire
AFTER INSERT ON checklists
BEGIN
  DELETE FROM checklists WHERE expires_at <= NEW.created_at;
END;

CREATE INDEX IF NOT EXISTS idx_chat_sessions_updated ON chat_sessions(updated_at);
CREATE INDEX IF NOT EXISTS idx_checklists_expires    ON checklists(expires_at);
"""


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        LOG.error("Durable store failed to %s: %s", action, exc)
        raise TransportFailure(f"durable store failed to {action}") from exc


def _items_to_json(items: List[ChecklistItem]) -> str:
    # Prices go in as strings so Decimal precision survives the round trip.
    return json.dumps(
        [{"name": i.name, "quantity": i.quantity, "price": str(i.price)} for i in items],
        ensure_ascii=False,
    )


def _items_from_json(raw: str) -> List[ChecklistItem]:
    return [
        ChecklistItem(name=d["name"], quantity=int(d["quantity"]), price=Decimal(str(d["price"])))
        for d in json.loads(raw or "[]")
    ]


class ChecklistDatabase:
    """SQLite-backed store for chat sessions and shared checklists.

    - Places DB under `<repo-root>/var/checklist/checklist.sqlite3` unless a
      path is given.
    - Ensures schema on first use.
    - Provides a context-managed connection method.
    """

    def __init__(
        self,
        root_dir: Optional[str] = None,
        *,
        db_path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if db_path:
            self.db_path = os.path.abspath(db_path)
            os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        else:
            db_folder = os.path.join(var_dir(find_project_root(root_dir)), DEFAULT_DB_FOLDER)
            os.makedirs(db_folder, exist_ok=True)
            self.db_path = os.path.join(db_folder, DEFAULT_DB_FILENAME)
        self._clock = clock
        LOG.info(f"Checklist DB path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with _store_errors("create schema"), self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.OperationalError:
                LOG.debug("WAL journal mode unavailable; keeping SQLite defaults")
            cur.executescript(SCHEMA_SQL)
            conn.commit()
            LOG.info("Checklist DB schema ensured.")

    # ---------- chat sessions ----------
    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> ChatSession:
        messages = [
            ChatMessage.from_dict(m, default_timestamp=row["created_at"])
            for m in json.loads(row["messages"] or "[]")
        ]
        return ChatSession(
            id=row["session_id"],
            title=row["title"],
            messages=messages,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=int(row["version"]),
        )

    def list_sessions(self) -> List[ChatSession]:
        """All sessions, most recently updated first."""
        with _store_errors("list chat sessions"), self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM chat_sessions ORDER BY updated_at DESC, session_id;"
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def get_session(self, session_id: str) -> ChatSession:
        with _store_errors("read chat session"), self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM chat_sessions WHERE session_id = ?;", (session_id,)
            ).fetchone()
        if row is None:
            raise NotFound(f"chat session {session_id} not found")
        return self._row_to_session(row)

    def upsert_session(self, session: ChatSession) -> ChatSession:
        """Insert or fully replace a session; returns the stored copy.

        When `session.version` is set it must equal the stored version
        (0 for a session that does not exist yet), otherwise
        `VersionConflict` is raised and nothing is written. Sessions without
        a version overwrite unconditionally.
        """
        now_iso = iso_from_epoch(self._clock())
        messages_json = json.dumps([m.to_dict() for m in session.messages], ensure_ascii=False)
        with _store_errors("save chat session"), self.connect() as conn:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE;")
            row = cur.execute(
                "SELECT version, created_at FROM chat_sessions WHERE session_id = ?;", (session.id,)
            ).fetchone()
            current_version = int(row["version"]) if row else 0
            if session.version is not None and session.version != current_version:
                conn.rollback()
                raise VersionConflict(session.id, session.version, current_version)
            created_at = session.created_at or (row["created_at"] if row else now_iso)
            new_version = current_version + 1
            cur.execute(
                """
                INSERT INTO chat_sessions (session_id, title, messages, created_at, updated_at, version)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                  title = excluded.title,
                  messages = excluded.messages,
                  created_at = excluded.created_at,
                  updated_at = excluded.updated_at,
                  version = excluded.version;
                """,
                (session.id, session.title, messages_json, created_at, now_iso, new_version),
            )
            conn.commit()
        LOG.debug("Saved chat session %s (version=%d, messages=%d)", session.id, new_version, len(session.messages))
        return ChatSession(
            id=session.id,
            title=session.title,
            messages=list(session.messages),
            created_at=created_at,
            updated_at=now_iso,
            version=new_version,
        )

    def delete_session(self, session_id: str) -> None:
        with _store_errors("delete chat session"), self.connect() as conn:
            conn.execute("DELETE FROM chat_sessions WHERE session_id = ?;", (session_id,))
            conn.commit()

    def delete_all_sessions(self) -> int:
        with _store_errors("clear chat sessions"), self.connect() as conn:
            cur = conn.execute("DELETE FROM chat_sessions;")
            conn.commit()
            removed = cur.rowcount
        LOG.info("Cleared %d chat session(s)", removed)
        return removed

    # ---------- checklists ----------
    def insert_checklist(self, checklist: Checklist) -> None:
        with _store_errors("insert checklist"), self.connect() as conn:
            conn.execute(
                "INSERT INTO checklists (checklist_id, items, created_at, expires_at) VALUES (?, ?, ?, ?);",
                (checklist.id, _items_to_json(checklist.items), checklist.created_at, checklist.expires_at),
            )
            conn.commit()
        LOG.debug("Inserted checklist %s with %d item(s)", checklist.id, len(checklist.items))

    def get_checklist(self, checklist_id: str) -> Checklist:
        """Return a checklist that has not reached its expiry yet."""
        now = self._clock()
        with _store_errors("read checklist"), self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM checklists WHERE checklist_id = ? AND expires_at > ?;",
                (checklist_id, now),
            ).fetchone()
        if row is None:
            raise NotFound(f"checklist {checklist_id} not found or expired")
        return Checklist(
            id=row["checklist_id"],
            items=_items_from_json(row["items"]),
            created_at=float(row["created_at"]),
            expires_at=float(row["expires_at"]),
        )


__all__ = ["ChecklistDatabase", "SCHEMA_SQL"]
