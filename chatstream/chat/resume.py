"""Resume/replay of an in-flight or just-finished turn after a reconnect.

The server keeps no stream buffers. A reconnecting client asks for the most
recently persisted message of its chat; if that message is an assistant reply
saved within the resume window, it is replayed as a single
``data-appendMessage`` frame. The client merges it through the assembler's
dedupe path, holding it back while a primary turn is still busy.
"""

import logging
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from chatstream.chat.frames import DONE_RECORD, SseFrameDecoder, encode_frame
from chatstream.chat.persistence import PersistenceBridge
from chatstream.errors import ResumeError
from chatstream.models.chat import (
    BUSY_STATUSES,
    AppendMessageFrame,
    ChatRole,
    Message,
    PersistedChat,
    Visibility,
    utcnow,
)
from chatstream.utils import ensure_utc

if TYPE_CHECKING:
    from chatstream.chat.identity import UserIdentity
    from chatstream.chat.session import SessionController

logger = logging.getLogger(__name__)

RESUME_WINDOW_SECONDS = 15


class ResumeCoordinator:
    """Client side of the resume protocol for one SessionController."""

    def __init__(self, session: "SessionController", auto_resume: bool = False):
        self._session = session
        self.auto_resume = auto_resume
        self.requests_issued = 0
        self._held: list[Message] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def held_count(self) -> int:
        """Replayed messages waiting for the session to leave a busy status."""
        return len(self._held)

    def should_resume(self) -> bool:
        """Whether a resume request may be issued at all.

        Requires auto-resume, non-empty initial messages and at least one
        assistant message among them.
        """
        initial = self._session.initial_messages
        if not self.auto_resume or not initial:
            return False
        return any(m.role == ChatRole.ASSISTANT for m in initial)

    async def resume(self) -> list[Message]:
        """Request a replay and merge it when the session allows.

        Returns:
            The messages inserted right away. Held replays are merged later,
            on the first change to idle or error.

        Raises:
            ResumeError: If the server rejected the request. Session status
                is left untouched.
        """
        if not self.should_resume():
            logger.debug(f"Session {self._session.chat_id}: no resume context")
            return []

        self.requests_issued += 1
        response = await self._session.transport.resume_stream(self._session.chat_id)
        try:
            decoder = SseFrameDecoder()
            async for frame in decoder.frames(response.body):
                if not isinstance(frame, AppendMessageFrame):
                    logger.debug(f"Ignoring {frame.type} frame in resume stream")
                    continue
                try:
                    self._held.append(frame.message())
                except ValueError as e:
                    logger.warning(f"Skipping unreadable replayed message: {e}")
        finally:
            await response.aclose()

        return self.apply_held()

    def hold(self, message: Message) -> list[Message]:
        """Take a replayed message that arrived inside a turn response."""
        self._held.append(message)
        return self.apply_held()

    def apply_held(self) -> list[Message]:
        """Merge held replays now if the session is not busy."""
        if not self._held:
            return []
        if self._session.status in BUSY_STATUSES:
            if self._unsubscribe is None:
                self._unsubscribe = self._session.subscribe(self._on_session_change)
            logger.debug(
                f"Session {self._session.chat_id}: holding {len(self._held)} replayed message(s)"
            )
            return []

        held, self._held = self._held, []
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        return [m for m in held if self._session.merge_replay(m)]

    def _on_session_change(self, session: "SessionController") -> None:
        if self._held and session.status not in BUSY_STATUSES:
            self.apply_held()


class ResumeService:
    """Server side resume policy."""

    def __init__(
        self,
        persistence: PersistenceBridge,
        window_seconds: float = RESUME_WINDOW_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.persistence = persistence
        self.window = timedelta(seconds=window_seconds)
        self._clock = clock

    async def authorize(self, chat_id: str | None, user: "UserIdentity | None") -> PersistedChat:
        """Check that ``user`` may read the chat.

        Raises:
            ResumeError: On a missing id or identity, an unknown chat, or a
                private chat owned by someone else.
        """
        if not chat_id:
            raise ResumeError("bad_request:api", "Chat id is required.")
        if user is None:
            raise ResumeError("unauthorized:chat")

        chat = await self.persistence.get_chat(chat_id)
        if chat is None:
            raise ResumeError("not_found:chat")
        if chat.visibility == Visibility.PRIVATE and chat.user_id != user.id:
            raise ResumeError("forbidden:chat")
        return chat

    async def find_resumable(
        self, chat_id: str | None, user: "UserIdentity | None"
    ) -> Message | None:
        """Return the message to replay, or None when there is nothing to resume.

        Raises:
            ResumeError: On a missing id or identity, an unknown chat, or a
                private chat owned by someone else.
        """
        await self.authorize(chat_id, user)

        latest = await self.persistence.latest_message(chat_id)
        if latest is None or latest.role != ChatRole.ASSISTANT:
            return None

        age = self._clock() - ensure_utc(latest.created_at)
        # Compared in whole elapsed seconds
        if int(age.total_seconds()) > self.window.total_seconds():
            logger.debug(f"Latest message of chat {chat_id} is stale ({age.total_seconds():.1f}s)")
            return None
        return latest

    async def resume_frames(
        self, chat_id: str | None, user: "UserIdentity | None"
    ) -> list[AppendMessageFrame]:
        """Frames to replay: empty, or exactly one ``data-appendMessage``."""
        message = await self.find_resumable(chat_id, user)
        if message is None:
            return []
        logger.info(f"Replaying message {message.id} of chat {chat_id}")
        return [AppendMessageFrame.for_message(message)]

    @staticmethod
    async def stream(frames: list[AppendMessageFrame]) -> AsyncIterator[bytes]:
        """Encode replay frames as a terminated event stream."""
        for frame in frames:
            yield encode_frame(frame)
        yield DONE_RECORD


_service: ResumeService | None = None


def get_resume_service() -> ResumeService:
    """Get the resume service backed by the SQLite chat store."""
    global _service
    if _service is None:
        from chatstream.db.chat_store import chat_store

        _service = ResumeService(PersistenceBridge(chat_store))
    return _service
