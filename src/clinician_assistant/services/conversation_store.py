"""Conversation persistence service.

Stores conversations and their messages in a dedicated SQLite database so the
clinical records DB stays read-only.  History is append-only: messages are
never edited or deleted, and appending is the only way a conversation's
timestamps move.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from clinician_assistant.domain.exceptions import ConversationNotFoundError
from clinician_assistant.domain.models import Conversation, Message, QueryResult, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_message_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    role TEXT NOT NULL CHECK(role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    query_result TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, seq);
CREATE INDEX IF NOT EXISTS idx_conversations_last_message ON conversations(last_message_at);
"""


def utcnow() -> str:
    """ISO-8601 UTC timestamp with microseconds, so ordering by text is stable."""
    return datetime.now(UTC).isoformat(timespec="microseconds")


def new_message(role: Role, content: str, query_result: QueryResult | None = None) -> Message:
    return Message(
        id=str(uuid.uuid4()),
        role=role,
        content=content,
        created_at=utcnow(),
        query_result=query_result,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ConversationStore:
    """Append-only conversation history stored in a SQLite file.

    One connection is shared across threads and guarded by ``_db_lock``.
    Turn-level serialization is separate: :meth:`conversation_lock` hands out
    one re-entrant lock per conversation, so turns in different conversations
    run in parallel while turns in the same conversation queue up.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.conn: sqlite3.Connection | None = None
        self._db_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._turn_locks: dict[str, threading.RLock] = {}
        self._pending: set[str] = set()

    def connect(self) -> None:
        """Open (or create) the database and ensure the schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()
        logger.info("Conversation DB ready at {}", self.db_path)

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        if self.conn is None:
            raise RuntimeError("ConversationStore is not connected")
        with self._db_lock, self.conn:
            yield self.conn

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, name: str) -> Conversation:
        """Create an empty conversation; all three timestamps start equal."""
        conversation_id = str(uuid.uuid4())
        now = utcnow()
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO conversations (id, name, created_at, updated_at, last_message_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (conversation_id, name, now, now, now),
            )
        logger.info("Created conversation {}", conversation_id)
        return Conversation(
            id=conversation_id,
            name=name,
            created_at=now,
            updated_at=now,
            last_message_at=now,
        )

    def get_conversation(self, conversation_id: str) -> Conversation:
        """Return the conversation with its full history.

        Raises:
            ConversationNotFoundError: If *conversation_id* is unknown.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if row is None:
                raise ConversationNotFoundError(conversation_id)
            message_rows = conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
                (conversation_id,),
            ).fetchall()
        conversation = self._row_to_conversation(row)
        conversation.messages = [self._row_to_message(m) for m in message_rows]
        return conversation

    def list_conversations(self) -> list[Conversation]:
        """Return every conversation with its history, most recently active first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM conversations ORDER BY last_message_at DESC, rowid DESC"
            ).fetchall()
            message_rows = conn.execute(
                "SELECT * FROM messages ORDER BY seq ASC"
            ).fetchall()

        by_conversation: dict[str, list[Message]] = {}
        for m in message_rows:
            by_conversation.setdefault(m["conversation_id"], []).append(self._row_to_message(m))

        conversations = []
        for row in rows:
            conversation = self._row_to_conversation(row)
            conversation.messages = by_conversation.get(conversation.id, [])
            conversations.append(conversation)
        return conversations

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append_message(self, conversation_id: str, message: Message) -> Message:
        """Append *message* and bump the conversation timestamps atomically.

        Raises:
            ConversationNotFoundError: If *conversation_id* is unknown.
        """
        payload = None
        if message.query_result is not None:
            payload = json.dumps(message.query_result.to_wire())

        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE conversations SET updated_at = ?, last_message_at = ? WHERE id = ?",
                (message.created_at, message.created_at, conversation_id),
            )
            if cursor.rowcount == 0:
                raise ConversationNotFoundError(conversation_id)
            conn.execute(
                "INSERT INTO messages (id, conversation_id, role, content, query_result, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    message.id,
                    conversation_id,
                    message.role,
                    message.content,
                    payload,
                    message.created_at,
                ),
            )
        logger.debug("Appended {} message | conversation={}", message.role, conversation_id)
        return message

    # ------------------------------------------------------------------
    # Turn coordination
    # ------------------------------------------------------------------

    def conversation_lock(self, conversation_id: str) -> threading.RLock:
        """Return the turn lock for an existing conversation.

        Raises:
            ConversationNotFoundError: If *conversation_id* is unknown; no
                lock is registered for it.
        """
        with self._locks_guard:
            lock = self._turn_locks.get(conversation_id)
        if lock is not None:
            return lock

        with self._transaction() as conn:
            found = conn.execute(
                "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        if found is None:
            raise ConversationNotFoundError(conversation_id)

        with self._locks_guard:
            return self._turn_locks.setdefault(conversation_id, threading.RLock())

    def mark_pending(self, conversation_id: str) -> None:
        with self._locks_guard:
            self._pending.add(conversation_id)

    def clear_pending(self, conversation_id: str) -> None:
        with self._locks_guard:
            self._pending.discard(conversation_id)

    def is_pending(self, conversation_id: str) -> bool:
        with self._locks_guard:
            return conversation_id in self._pending

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _row_to_conversation(self, row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_message_at=row["last_message_at"],
            pending=self.is_pending(row["id"]),
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        query_result = None
        if row["query_result"]:
            query_result = QueryResult.from_wire(json.loads(row["query_result"]))
        return Message(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            created_at=row["created_at"],
            query_result=query_result,
        )
