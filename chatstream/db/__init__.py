"""Database module."""

from chatstream.db.chat_store import SqliteChatStore, chat_store
from chatstream.db.database import close_database, get_db, init_database

__all__ = ["get_db", "init_database", "close_database", "chat_store", "SqliteChatStore"]
