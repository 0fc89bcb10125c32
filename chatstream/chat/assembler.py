"""MessageAssembler folds decoded frames into a session's message list."""

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from chatstream.errors import UpstreamError
from chatstream.models.chat import (
    AppendMessageFrame,
    ChatRole,
    ChatStatus,
    ErrorFrame,
    FinishFrame,
    Message,
    StreamFrame,
    TextDeltaFrame,
    TextPart,
)
from chatstream.utils import generate_id

if TYPE_CHECKING:
    from chatstream.chat.session import SessionController

logger = logging.getLogger(__name__)

ERROR_MESSAGE_PREFIX = "Sorry, I encountered an error: "


def error_text(detail: str | None) -> str:
    """User-facing rendering of an error payload."""
    return f"{ERROR_MESSAGE_PREFIX}{detail or 'Unknown error'}"


class MessageAssembler:
    """Applies the frames of one turn at a time to a SessionController.

    At most one assistant message is open (receiving deltas) at any time.
    The open message is created lazily on the first frame of a response,
    so a response that fails before producing content only adds the
    synthetic error message.
    """

    def __init__(
        self,
        session: "SessionController",
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self._session = session
        self._id_factory = id_factory
        self._open: Message | None = None
        self._finished = True

    @property
    def open_message(self) -> Message | None:
        """The assistant message currently receiving deltas."""
        return self._open

    @property
    def finished(self) -> bool:
        return self._finished

    def begin_turn(self) -> None:
        """Reset per-turn state before a new response is consumed."""
        self._open = None
        self._finished = False

    def close(self) -> None:
        """Stop accepting frames for the current turn, keeping what was assembled."""
        self._open = None
        self._finished = True

    async def apply(self, frame: StreamFrame) -> bool:
        """Apply one frame.

        Returns:
            True while the turn continues, False once it reached a final state
            and remaining frames must be discarded.

        Raises:
            UpstreamError: On a data-error frame.
        """
        if self._finished:
            return False

        if isinstance(frame, ErrorFrame):
            # No empty assistant message is opened for an error as the first frame
            raise UpstreamError(frame.data)

        if self._session.status == ChatStatus.LOADING:
            self._session._set_status(ChatStatus.STREAMING)

        if isinstance(frame, AppendMessageFrame):
            self._hold_frame(frame)
            return True

        if self._open is None:
            self._open_message(frame)

        if isinstance(frame, TextDeltaFrame):
            self._append_text(frame.text_delta)
        elif isinstance(frame, FinishFrame):
            await self.finish()
            return False
        return True

    async def finish(self) -> None:
        """Close the turn normally: status idle and one save of the message list."""
        if self._finished:
            return
        self._finished = True
        self._open = None
        self._session._set_status(ChatStatus.IDLE)
        await self._session.persist()

    def fail(self, detail: str | None) -> Message:
        """Close the turn with an error, surfacing it as an assistant message."""
        self._finished = True
        self._open = None
        message = Message(
            id=self._unique_id(),
            role=ChatRole.ASSISTANT,
            parts=[TextPart(text=error_text(detail))],
        )
        self._session.messages.append(message)
        self._session._set_status(ChatStatus.ERROR, force_notify=True)
        return message

    def merge_replay(self, message: Message, initial_messages: Sequence[Message] | None = None) -> bool:
        """Insert a replayed message unless it is already known.

        A message counts as known when its id appears in the initial messages
        or in the current message list, or when the last current message is an
        assistant message with the same id.

        Returns:
            Whether the message was inserted.
        """
        initial = self._session.initial_messages if initial_messages is None else initial_messages
        current = self._session.messages

        in_initial = any(m.id == message.id for m in initial)
        in_current = any(m.id == message.id for m in current)
        last = current[-1] if current else None
        last_is_same_assistant = (
            last is not None and last.role == ChatRole.ASSISTANT and last.id == message.id
        )

        if in_initial or in_current or last_is_same_assistant:
            logger.debug(f"Skipping duplicate replayed message {message.id}")
            return False

        current.append(message)
        self._session._notify()
        logger.info(f"Merged replayed message {message.id} into session {self._session.chat_id}")
        return True

    def _hold_frame(self, frame: AppendMessageFrame) -> None:
        try:
            message = frame.message()
        except ValueError as e:
            logger.warning(f"Skipping unreadable appendMessage payload: {e}")
            return
        self._session.resume_coordinator.hold(message)

    def _open_message(self, frame: StreamFrame) -> None:
        message_id = None
        if isinstance(frame, TextDeltaFrame) and frame.message_id:
            if not any(m.id == frame.message_id for m in self._session.messages):
                message_id = frame.message_id
        self._open = Message(
            id=message_id or self._unique_id(),
            role=ChatRole.ASSISTANT,
            parts=[],
        )
        self._session.messages.append(self._open)
        self._session._set_status(ChatStatus.STREAMING, force_notify=True)

    def _append_text(self, delta: str) -> None:
        if not delta or self._open is None:
            return
        messages = self._session.messages
        is_last = bool(messages) and messages[-1] is self._open
        last_part = self._open.parts[-1] if self._open.parts else None
        if is_last and isinstance(last_part, TextPart):
            last_part.text += delta
        else:
            self._open.parts.append(TextPart(text=delta))
        self._session._notify()

    def _unique_id(self) -> str:
        existing = {m.id for m in self._session.messages}
        message_id = self._id_factory()
        while message_id in existing:
            message_id = self._id_factory()
        return message_id
