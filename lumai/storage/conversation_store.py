"""
Conversation state storage.

One ConversationState per user: an optional rolling summary, a list of topics
and the most recent messages. get() never fails for a user we have not seen
(it returns an empty state); put() is an upsert that keeps only the newest
`max_messages` messages and stamps updated_at.

Two implementations:
  - InMemoryConversationStore: process-local, for tests and the CLI
  - SQLiteConversationStore: single portable file, the default
"""

from __future__ import annotations

import abc
import copy
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from lumai.models import ChatMessage, ConversationState, ToolCallRequest

logger = logging.getLogger(__name__)

MAX_STORED_MESSAGES = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _unique(values) -> list[str]:
    """Topics behave like a set; keep first occurrence order for stable output."""
    return list(dict.fromkeys(str(v) for v in values))


class BaseConversationStore(abc.ABC):
    """Interface for loading and saving per-user conversation state."""

    def __init__(self, max_messages: int = MAX_STORED_MESSAGES):
        self.max_messages = max_messages

    @abc.abstractmethod
    def get(self, user_id: str) -> ConversationState:
        """Stored state for `user_id`, or an empty default state."""
        ...

    @abc.abstractmethod
    def put(self, state: ConversationState) -> ConversationState:
        """Upsert `state` (trimmed to the retention window); return what was stored."""
        ...

    def _trimmed(self, state: ConversationState) -> ConversationState:
        messages = state.messages[-self.max_messages:] if self.max_messages > 0 else []
        if len(state.messages) > len(messages):
            logger.debug(
                "Dropping %d old message(s) for user %s",
                len(state.messages) - len(messages),
                state.user_id,
            )
        return ConversationState(
            user_id=state.user_id,
            summary=state.summary,
            topics=_unique(state.topics),
            messages=list(messages),
            updated_at=_utcnow(),
        )


class InMemoryConversationStore(BaseConversationStore):
    """Keeps deep copies so callers can't mutate stored state by accident."""

    def __init__(self, max_messages: int = MAX_STORED_MESSAGES):
        super().__init__(max_messages)
        self._states: dict[str, ConversationState] = {}

    def get(self, user_id: str) -> ConversationState:
        state = self._states.get(user_id)
        if state is None:
            return ConversationState(user_id=user_id)
        return copy.deepcopy(state)

    def put(self, state: ConversationState) -> ConversationState:
        stored = self._trimmed(state)
        self._states[state.user_id] = copy.deepcopy(stored)
        return stored


CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS conversations (
    user_id TEXT PRIMARY KEY,
    summary TEXT DEFAULT NULL,
    topics TEXT NOT NULL DEFAULT '[]',
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    name TEXT DEFAULT NULL,
    tool_call_id TEXT DEFAULT NULL,
    tool_calls TEXT DEFAULT NULL,
    metadata TEXT DEFAULT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, position),
    FOREIGN KEY (user_id) REFERENCES conversations(user_id)
);

CREATE INDEX IF NOT EXISTS idx_messages_user
    ON messages(user_id);
"""


def _dump_tool_calls(calls: list[ToolCallRequest] | None) -> str | None:
    if not calls:
        return None
    return json.dumps([
        {"id": c.id, "name": c.function_name, "arguments": c.arguments_json}
        for c in calls
    ])


def _load_tool_calls(raw: str | None) -> list[ToolCallRequest] | None:
    if not raw:
        return None
    return [
        ToolCallRequest(id=c["id"], function_name=c["name"], arguments_json=c.get("arguments") or "{}")
        for c in json.loads(raw)
    ]


def _parse_ts(raw: str | None) -> datetime:
    if not raw:
        return _utcnow()
    ts = datetime.fromisoformat(raw)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class SQLiteConversationStore(BaseConversationStore):
    """SQLite-backed conversation store. One connection per operation."""

    def __init__(self, db_path: str, max_messages: int = MAX_STORED_MESSAGES):
        super().__init__(max_messages)
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("Conversation store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, user_id: str) -> ConversationState:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE user_id = ?", (user_id,),
            ).fetchone()
            if row is None:
                return ConversationState(user_id=user_id)
            rows = conn.execute(
                "SELECT * FROM messages WHERE user_id = ? ORDER BY position", (user_id,),
            ).fetchall()

        messages = [
            ChatMessage(
                role=r["role"],
                content=r["content"],
                name=r["name"],
                tool_call_id=r["tool_call_id"],
                tool_calls=_load_tool_calls(r["tool_calls"]),
                id=r["id"],
                created_at=_parse_ts(r["created_at"]),
                metadata=json.loads(r["metadata"]) if r["metadata"] else {},
            )
            for r in rows
        ]
        return ConversationState(
            user_id=user_id,
            summary=row["summary"],
            topics=json.loads(row["topics"] or "[]"),
            messages=messages,
            updated_at=_parse_ts(row["updated_at"]),
        )

    def put(self, state: ConversationState) -> ConversationState:
        stored = self._trimmed(state)
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO conversations (user_id, summary, topics, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       summary = excluded.summary,
                       topics = excluded.topics,
                       updated_at = excluded.updated_at""",
                (stored.user_id, stored.summary, json.dumps(stored.topics), stored.updated_at.isoformat()),
            )
            conn.execute("DELETE FROM messages WHERE user_id = ?", (stored.user_id,))
            conn.executemany(
                """INSERT INTO messages
                   (id, user_id, position, role, content, name, tool_call_id, tool_calls, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (m.id, stored.user_id, position, m.role, m.content, m.name, m.tool_call_id,
                     _dump_tool_calls(m.tool_calls),
                     json.dumps(m.metadata, default=str) if m.metadata else None,
                     m.created_at.isoformat())
                    for position, m in enumerate(stored.messages)
                ],
            )
        logger.debug("Stored %d message(s) for user %s", len(stored.messages), stored.user_id)
        return stored

    def get_stats(self) -> dict:
        """Row counts for `lumai flash`."""
        with self._connect() as conn:
            users = conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0]
            messages = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
            by_role = {
                r["role"]: r["n"]
                for r in conn.execute("SELECT role, COUNT(*) AS n FROM messages GROUP BY role").fetchall()
            }
        return {"users": users, "messages": messages, "by_role": by_role}


def make_store(cfg: dict) -> BaseConversationStore:
    """Build the store named by storage.backend (sqlite | memory)."""
    s_cfg = cfg.get("storage", {})
    max_messages = int(s_cfg.get("max_stored_messages", MAX_STORED_MESSAGES))
    backend = s_cfg.get("backend", "sqlite")
    if backend == "memory":
        return InMemoryConversationStore(max_messages=max_messages)
    if backend != "sqlite":
        raise ValueError(f"Unknown storage backend: {backend}")
    return SQLiteConversationStore(s_cfg.get("sqlite_path", "./data/lumai.db"), max_messages=max_messages)
