"""SessionManager keeps one SessionController per chat id."""

import asyncio
import logging
import os
from datetime import datetime, timedelta
from typing import Any

from chatstream.chat.persistence import PersistenceBridge
from chatstream.chat.session import SessionController
from chatstream.chat.transport import TransportPort
from chatstream.models.chat import Message

logger = logging.getLogger(__name__)

# Singleton manager instance
_manager: "SessionManager | None" = None


class SessionManager:
    """Manages session lifecycle.

    Responsibilities:
    - Open sessions, at most one per chat id
    - Get/close sessions by chat id
    - Cleanup sessions idle for too long
    """

    def __init__(self, session_timeout_minutes: int | None = None):
        """Initialize the session manager.

        Args:
            session_timeout_minutes: How long idle sessions live before cleanup.
                Defaults to CHAT_SESSION_TIMEOUT_MINUTES or 30.
        """
        if session_timeout_minutes is None:
            session_timeout_minutes = int(os.getenv("CHAT_SESSION_TIMEOUT_MINUTES", "30"))
        self._sessions: dict[str, SessionController] = {}
        self._session_timeout = timedelta(minutes=session_timeout_minutes)
        self._cleanup_task: asyncio.Task | None = None

    @property
    def active_session_count(self) -> int:
        return len(self._sessions)

    def open_session(
        self,
        chat_id: str,
        transport: TransportPort,
        persistence: PersistenceBridge | None = None,
        initial_messages: list[Message] | None = None,
        **options: Any,
    ) -> SessionController:
        """Return the session for a chat, creating it on first use.

        Args:
            chat_id: The chat to open.
            transport: Transport for a new session.
            persistence: Persistence for a new session.
            initial_messages: Messages loaded for the chat.
            **options: Further SessionController arguments (auto_resume, body ...).

        Returns:
            The chat's SessionController. An already open session is returned
            as-is; the other arguments are then ignored.
        """
        session = self.get_session(chat_id)
        if session is not None:
            return session

        session = SessionController(
            chat_id,
            transport,
            persistence=persistence,
            initial_messages=initial_messages,
            **options,
        )
        self._sessions[chat_id] = session
        logger.info(f"Opened session for chat {chat_id} (total sessions: {len(self._sessions)})")
        return session

    def get_session(self, chat_id: str) -> SessionController | None:
        session = self._sessions.get(chat_id)
        if session:
            # Update last activity for keepalive
            session.last_activity = datetime.now()
        return session

    def list_sessions(self) -> list[dict[str, Any]]:
        return [
            {
                "chat_id": s.chat_id,
                "status": s.status.value,
                "created_at": s.created_at.isoformat(),
                "last_activity": s.last_activity.isoformat(),
                "message_count": len(s.messages),
                "pending": s.pending_count,
            }
            for s in self._sessions.values()
        ]

    async def close_session(self, chat_id: str) -> bool:
        """Stop and remove a session.

        Returns:
            True if the session was found and closed, False otherwise.
        """
        session = self._sessions.pop(chat_id, None)
        if session:
            await session.close()
            logger.info(f"Closed session for chat {chat_id}")
            return True
        return False

    async def cleanup_expired(self) -> int:
        """Close idle sessions that have not been used within the timeout.

        Busy sessions are never reclaimed.

        Returns:
            Number of sessions cleaned up.
        """
        now = datetime.now()
        expired_ids = [
            cid for cid, s in self._sessions.items()
            if not s.is_busy and now - s.last_activity > self._session_timeout
        ]

        for chat_id in expired_ids:
            logger.info(f"Cleaning up expired session {chat_id}")
            await self.close_session(chat_id)

        if expired_ids:
            logger.info(f"Cleaned up {len(expired_ids)} expired chat session(s)")

        return len(expired_ids)

    async def start_cleanup_task(self) -> None:
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Started session cleanup background task")

    async def stop_cleanup_task(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Stopped session cleanup background task")

    async def _cleanup_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(60)  # Check every minute
                await self.cleanup_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in session cleanup task: {e}")

    async def shutdown(self) -> None:
        """Stop cleanup and close every session."""
        await self.stop_cleanup_task()

        for chat_id in list(self._sessions.keys()):
            await self.close_session(chat_id)

        logger.info("Session manager shutdown complete")

    def get_stats(self) -> dict[str, Any]:
        now = datetime.now()
        return {
            "active_sessions": len(self._sessions),
            "busy_sessions": sum(1 for s in self._sessions.values() if s.is_busy),
            "oldest_session_age_seconds": self._oldest_session_age(now),
            "cleanup_task_running": self._cleanup_task is not None,
        }

    def _oldest_session_age(self, now: datetime) -> float | None:
        if not self._sessions:
            return None
        oldest = min(s.created_at for s in self._sessions.values())
        return (now - oldest).total_seconds()


def get_session_manager() -> SessionManager:
    """Get the singleton session manager instance."""
    global _manager
    if _manager is None:
        _manager = SessionManager()
    return _manager


async def init_session_manager() -> SessionManager:
    """Initialize the session manager and start background cleanup."""
    manager = get_session_manager()
    await manager.start_cleanup_task()
    return manager


async def shutdown_session_manager() -> None:
    global _manager
    if _manager:
        await _manager.shutdown()
        _manager = None
