"""SQLite connection shared by the chat and provider stores."""

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"

_db_connection: aiosqlite.Connection | None = None


async def init_database(db_path: str) -> None:
    """Open the shared connection and create the schema.

    Args:
        db_path: SQLite file path, or ``:memory:`` for a throwaway database.
    """
    global _db_connection

    if db_path != MEMORY_PATH:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db_connection = await aiosqlite.connect(db_path)
    _db_connection.row_factory = aiosqlite.Row

    if db_path != MEMORY_PATH:
        # Resume and history reads run alongside turn writes
        await _db_connection.execute("PRAGMA journal_mode = WAL")

    await _create_schema(_db_connection)
    logger.debug(f"Opened chat database {db_path}")


async def close_database() -> None:
    global _db_connection
    if _db_connection:
        await _db_connection.close()
        _db_connection = None


async def get_db() -> aiosqlite.Connection:
    """Return the shared connection.

    Raises:
        RuntimeError: If init_database() has not run.
    """
    if _db_connection is None:
        raise RuntimeError("Chat database is not open; call init_database() first")
    return _db_connection


async def _create_schema(db: aiosqlite.Connection) -> None:
    """Create database tables and indexes."""
    # Chats: metadata only, messages live in their own table
    await db.execute("""
        CREATE TABLE IF NOT EXISTS chats (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            visibility TEXT NOT NULL DEFAULT 'private',
            last_context_json TEXT,
            created_at TEXT NOT NULL
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_chats_user
        ON chats(user_id, created_at)
    """)

    # Messages are upserted by id, last write wins
    await db.execute("""
        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY,
            chat_id TEXT NOT NULL,
            role TEXT NOT NULL,
            parts_json TEXT NOT NULL DEFAULT '[]',
            metadata_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_messages_chat_created
        ON messages(chat_id, created_at)
    """)

    # =========================================================================
    # Providers (upstream model endpoints, API keys encrypted)
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS providers (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            kind TEXT NOT NULL DEFAULT 'openai',
            base_url TEXT,
            model TEXT NOT NULL,
            api_key_encrypted TEXT NOT NULL,
            enabled INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    await db.commit()
