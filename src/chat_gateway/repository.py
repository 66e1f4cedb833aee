"""SQLite-backed conversation store."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import aiosqlite

ConversationRecord = dict[str, Any]
MessageRecord = dict[str, Any]


def _normalize_db_timestamp(value: str | None) -> str | None:
    """Convert SQLite timestamp strings to ISO8601 in UTC."""

    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.isoformat()


def _encode_json(value: Iterable[Any] | None) -> str:
    return json.dumps(list(value or []))


def _decode_json_list(value: str | None) -> list[Any]:
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return []
    return decoded if isinstance(decoded, list) else []


def _conversation_from_row(row: aiosqlite.Row) -> ConversationRecord:
    return {
        "id": row["conversation_id"],
        "title": row["title"],
        "created_at": _normalize_db_timestamp(row["created_at"]),
        "updated_at": _normalize_db_timestamp(row["updated_at"]),
    }


def _message_from_row(row: aiosqlite.Row) -> MessageRecord:
    return {
        "id": row["id"],
        "conversation_id": row["conversation_id"],
        "role": row["role"],
        "text": row["text"] or "",
        "attachments": _decode_json_list(row["attachments"]),
        "image_urls": _decode_json_list(row["image_urls"]),
        "thought_signature": row["thought_signature"],
        "created_at": _normalize_db_timestamp(row["created_at"]),
    }


class ConversationRepository:
    """Persist conversations and their append-only message logs.

    Message rows are not cascaded from their conversation: deleting the
    conversation row is the trigger for the cleanup sweep, which removes the
    messages after their stored files.
    """

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                conversation_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                role TEXT NOT NULL,
                text TEXT,
                attachments TEXT,
                image_urls TEXT,
                thought_signature TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_conversations_user_id ON conversations(user_id);
            CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id);
            """
        )
        await self._connection.commit()
        await self._ensure_column("messages", "thought_signature", "TEXT")

    async def _ensure_column(self, table: str, column: str, definition: str) -> None:
        """Ensure a column exists on a table, adding it if necessary."""

        assert self._connection is not None
        cursor = await self._connection.execute(f"PRAGMA table_info({table})")
        rows = await cursor.fetchall()
        await cursor.close()
        existing = {row[1] for row in rows}
        if column in existing:
            return
        await self._connection.execute(
            f"ALTER TABLE {table} ADD COLUMN {column} {definition}"
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def create_conversation(
        self, user_id: str, *, title: str | None = None
    ) -> ConversationRecord:
        assert self._connection is not None
        conversation_id = uuid.uuid4().hex
        await self._connection.execute(
            "INSERT INTO conversations(conversation_id, user_id, title) VALUES (?, ?, ?)",
            (conversation_id, user_id, title),
        )
        await self._connection.commit()
        record = await self.get_conversation(user_id, conversation_id)
        assert record is not None
        return record

    async def list_conversations(self, user_id: str) -> list[ConversationRecord]:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT conversation_id, title, created_at, updated_at
            FROM conversations
            WHERE user_id = ?
            ORDER BY updated_at DESC, created_at DESC
            """,
            (user_id,),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_conversation_from_row(row) for row in rows]

    async def get_conversation(
        self, user_id: str, conversation_id: str
    ) -> ConversationRecord | None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT conversation_id, title, created_at, updated_at
            FROM conversations
            WHERE conversation_id = ? AND user_id = ?
            LIMIT 1
            """,
            (conversation_id, user_id),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return _conversation_from_row(row)

    async def add_message(
        self,
        user_id: str,
        conversation_id: str,
        role: str,
        text: str,
        *,
        attachments: list[dict[str, Any]] | None = None,
        image_urls: list[str] | None = None,
        thought_signature: str | None = None,
    ) -> MessageRecord:
        """Append a message and bump the conversation's ``updated_at``."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            INSERT INTO messages(
                conversation_id,
                user_id,
                role,
                text,
                attachments,
                image_urls,
                thought_signature
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                conversation_id,
                user_id,
                role,
                text,
                _encode_json(attachments),
                _encode_json(image_urls),
                thought_signature,
            ),
        )
        try:
            inserted_id = cursor.lastrowid
        finally:
            await cursor.close()
        if inserted_id is None:  # pragma: no cover - defensive
            raise RuntimeError("Insert failed: lastrowid is None")
        await self._connection.execute(
            "UPDATE conversations SET updated_at = CURRENT_TIMESTAMP WHERE conversation_id = ?",
            (conversation_id,),
        )
        await self._connection.commit()

        cursor = await self._connection.execute(
            "SELECT * FROM messages WHERE id = ?", (inserted_id,)
        )
        row = await cursor.fetchone()
        await cursor.close()
        assert row is not None
        return _message_from_row(row)

    async def get_messages(
        self, conversation_id: str, *, user_id: str
    ) -> list[MessageRecord]:
        """Return a conversation's messages in insertion order.

        Works after the conversation row is gone so the cleanup sweep can still
        find what to delete.
        """

        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT *
            FROM messages
            WHERE conversation_id = ? AND user_id = ?
            ORDER BY id ASC
            """,
            (conversation_id, user_id),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_message_from_row(row) for row in rows]

    async def delete_conversation(self, user_id: str, conversation_id: str) -> bool:
        """Remove the conversation row; return False when nothing matched."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM conversations WHERE conversation_id = ? AND user_id = ?",
            (conversation_id, user_id),
        )
        deleted = cursor.rowcount
        await cursor.close()
        await self._connection.commit()
        return deleted > 0

    async def delete_message(self, message_id: int) -> bool:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM messages WHERE id = ?", (message_id,)
        )
        deleted = cursor.rowcount
        await cursor.close()
        await self._connection.commit()
        return deleted > 0


__all__ = ["ConversationRepository", "ConversationRecord", "MessageRecord"]
