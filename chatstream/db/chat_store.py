"""SqliteChatStore - durable storage for chats and their messages."""

import json
import logging
from datetime import datetime
from typing import Any

import aiosqlite

from chatstream.db.database import get_db
from chatstream.models.chat import Message, PersistedChat
from chatstream.utils import ensure_utc

logger = logging.getLogger(__name__)


def _row_to_message(row: aiosqlite.Row) -> Message:
    metadata = json.loads(row["metadata_json"] or "{}")
    metadata["createdAt"] = row["created_at"]
    return Message.model_validate(
        {
            "id": row["id"],
            "role": row["role"],
            "parts": json.loads(row["parts_json"] or "[]"),
            "metadata": metadata,
        }
    )


def _row_to_chat(row: aiosqlite.Row) -> PersistedChat:
    last_context = row["last_context_json"]
    return PersistedChat(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        visibility=row["visibility"],
        last_context=json.loads(last_context) if last_context else None,
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="microseconds")


class SqliteChatStore:
    """ChatStore on the shared aiosqlite connection."""

    # ==================== Messages ====================

    async def get_messages_by_chat_id(self, chat_id: str) -> list[Message]:
        """Messages of a chat, oldest first."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT * FROM messages
            WHERE chat_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            [chat_id],
        )
        rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def save_messages(self, chat_id: str, messages: list[Message]) -> None:
        """Upsert messages by id."""
        if not messages:
            return
        db = await get_db()
        for message in messages:
            wire = message.to_wire()
            metadata = dict(wire.get("metadata") or {})
            metadata.pop("createdAt", None)
            await db.execute(
                """
                INSERT INTO messages (id, chat_id, role, parts_json, metadata_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    chat_id = excluded.chat_id,
                    role = excluded.role,
                    parts_json = excluded.parts_json,
                    metadata_json = excluded.metadata_json
                """,
                [
                    message.id,
                    chat_id,
                    wire["role"],
                    json.dumps(wire["parts"]),
                    json.dumps(metadata),
                    _timestamp(message.created_at),
                ],
            )
        await db.commit()
        logger.debug(f"Upserted {len(messages)} message(s) in chat {chat_id}")

    # ==================== Chats ====================

    async def get_chat_by_id(self, chat_id: str) -> PersistedChat | None:
        db = await get_db()
        cursor = await db.execute("SELECT * FROM chats WHERE id = ?", [chat_id])
        row = await cursor.fetchone()
        if not row:
            return None
        return _row_to_chat(row)

    async def save_chat(self, chat: PersistedChat) -> None:
        """Insert or replace chat metadata."""
        db = await get_db()
        await db.execute(
            """
            INSERT INTO chats (id, user_id, title, visibility, last_context_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                user_id = excluded.user_id,
                title = excluded.title,
                visibility = excluded.visibility,
                last_context_json = excluded.last_context_json
            """,
            [
                chat.id,
                chat.user_id,
                chat.title,
                chat.visibility,
                json.dumps(chat.last_context) if chat.last_context is not None else None,
                _timestamp(chat.created_at),
            ],
        )
        await db.commit()

    async def update_chat_last_context(self, chat_id: str, context: dict[str, Any]) -> None:
        db = await get_db()
        await db.execute(
            "UPDATE chats SET last_context_json = ? WHERE id = ?",
            [json.dumps(context), chat_id],
        )
        await db.commit()

    async def list_chats(self, user_id: str, limit: int = 50) -> list[PersistedChat]:
        """Chats of a user, newest first."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT * FROM chats
            WHERE user_id = ?
            ORDER BY created_at DESC
            LIMIT ?
            """,
            [user_id, limit],
        )
        rows = await cursor.fetchall()
        return [_row_to_chat(row) for row in rows]


# Global store instance
chat_store = SqliteChatStore()
