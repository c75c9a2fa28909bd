from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Protocol, runtime_checkable

from step_sync_assistant.memory.models import Message
from step_sync_assistant.memory.store import MemoryStore


class PersistenceError(Exception):
    """A durable write or read failed; in-memory state is unaffected."""


@runtime_checkable
class ConversationPersistence(Protocol):
    async def load_messages(self, session_id: str) -> list[Message]: ...

    async def save_message(self, session_id: str, message: Message) -> None: ...

    async def delete_session(self, session_id: str) -> None: ...


class SqlitePersistence:
    """Stores already-sanitized messages in the SQLite memory store."""

    def __init__(self, store: MemoryStore):
        self._store = store

    async def load_messages(self, session_id: str) -> list[Message]:
        try:
            rows = self._store.query(
                """
                SELECT id, session_id, role, text, created_at, token_count
                FROM messages
                WHERE session_id = ?
                ORDER BY seq ASC
                """,
                (session_id,),
            )
        except sqlite3.Error as ex:
            raise PersistenceError(f"Failed to load session {session_id}: {ex}") from ex
        return [
            Message(
                id=str(row["id"]),
                session_id=str(row["session_id"]),
                role=str(row["role"]),
                text=str(row["text"]),
                timestamp=datetime.fromisoformat(row["created_at"]),
                token_count=int(row["token_count"]),
            )
            for row in rows
        ]

    async def save_message(self, session_id: str, message: Message) -> None:
        created_at = message.timestamp.isoformat()
        try:
            with self._store.transaction():
                self._store.execute(
                    """
                    INSERT INTO sessions (id, created_at, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET updated_at = excluded.updated_at
                    """,
                    (session_id, created_at, created_at),
                )
                row = self._store.execute(
                    "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
                    (session_id,),
                ).fetchone()
                self._store.execute(
                    """
                    INSERT INTO messages (id, session_id, seq, role, text, created_at, token_count)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.id,
                        session_id,
                        int(row["max_seq"]) + 1,
                        message.role,
                        message.text,
                        created_at,
                        message.token_count,
                    ),
                )
        except sqlite3.Error as ex:
            raise PersistenceError(f"Failed to save message {message.id} for session {session_id}: {ex}") from ex

    async def delete_session(self, session_id: str) -> None:
        try:
            with self._store.transaction():
                self._store.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        except sqlite3.Error as ex:
            raise PersistenceError(f"Failed to delete session {session_id}: {ex}") from ex

    def list_session_ids(self) -> list[str]:
        rows = self._store.query("SELECT id FROM sessions ORDER BY updated_at DESC")
        return [str(row["id"]) for row in rows]
