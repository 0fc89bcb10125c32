"""SessionController - the state machine behind a chat session."""

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from chatstream.chat.assembler import MessageAssembler
from chatstream.chat.frames import SseFrameDecoder
from chatstream.chat.persistence import PersistenceBridge
from chatstream.chat.resume import ResumeCoordinator
from chatstream.chat.transport import TransportPort, TransportRequest, TransportResponse
from chatstream.errors import TransportError, UpstreamError
from chatstream.models.chat import (
    BUSY_STATUSES,
    ChatRole,
    ChatStatus,
    Message,
    Visibility,
    utcnow,
)
from chatstream.utils import generate_id

logger = logging.getLogger(__name__)

Listener = Callable[["SessionController"], None]


@dataclass
class PendingTurn:
    """A submitted user message waiting for (or undergoing) dispatch."""

    message: Message
    options: dict[str, Any] = field(default_factory=dict)
    future: asyncio.Future | None = None


class SessionController:
    """Owns status, message list and pending queue of one chat.

    Turns are processed strictly one at a time in submission order. Each
    dispatched turn runs as an asyncio task that reads the transport's byte
    stream, decodes frames and lets the MessageAssembler mutate the message
    list. ``stop()`` is the only way to cancel a turn.

    Example:
        session = SessionController(chat_id, HttpTransport(base_url))
        status = await session.send("hi")
    """

    def __init__(
        self,
        chat_id: str,
        transport: TransportPort,
        persistence: PersistenceBridge | None = None,
        initial_messages: list[Message] | None = None,
        auto_resume: bool = False,
        body: dict[str, Any] | None = None,
        visibility: Visibility = Visibility.PRIVATE,
        compat_frames: bool = False,
        id_factory: Callable[[], str] = generate_id,
    ):
        """Initialize the controller.

        Args:
            chat_id: The chat this session belongs to.
            transport: Where turns are sent.
            persistence: Saves the message list when a turn finishes.
            initial_messages: Messages loaded before the session started.
            auto_resume: Whether resume() may ask the server for a replay.
            body: Extra request fields sent with every turn
                (``selectedChatModel``, ``selectedProviderId`` ...).
            visibility: Visibility used when the chat is first persisted.
            compat_frames: Enable the decoder's compatibility shim.
            id_factory: Generates message ids.
        """
        self.chat_id = chat_id
        self.transport = transport
        self.persistence = persistence
        self.visibility = visibility
        self.compat_frames = compat_frames
        self.default_body: dict[str, Any] = dict(body or {})
        self.initial_messages: list[Message] = [
            m.model_copy(deep=True) for m in (initial_messages or [])
        ]
        self.messages: list[Message] = [m.model_copy(deep=True) for m in self.initial_messages]

        self.created_at = datetime.now()
        self.last_activity = datetime.now()

        self._id_factory = id_factory
        self._status = ChatStatus.IDLE
        self._queue: deque[PendingTurn] = deque()
        self._current_turn: PendingTurn | None = None
        self._task: asyncio.Task | None = None
        self._listeners: list[Listener] = []

        self.assembler = MessageAssembler(self, id_factory=id_factory)
        self.resume_coordinator = ResumeCoordinator(self, auto_resume=auto_resume)

    # ==================== State ====================

    @property
    def status(self) -> ChatStatus:
        return self._status

    @property
    def is_busy(self) -> bool:
        """Whether a turn is submitted, loading or streaming."""
        return self._status in BUSY_STATUSES

    @property
    def pending_count(self) -> int:
        """Number of queued turns not yet dispatched."""
        return len(self._queue)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.exception(f"Session listener failed: {e}")

    def _set_status(self, status: ChatStatus, force_notify: bool = False) -> None:
        changed = status != self._status
        if changed:
            logger.debug(f"Session {self.chat_id}: {self._status.value} -> {status.value}")
            self._status = status
        if changed or force_notify:
            self._notify()

    # ==================== Commands ====================

    async def send(
        self,
        message: Message | dict[str, Any] | str,
        options: dict[str, Any] | None = None,
    ) -> ChatStatus:
        """Submit a user turn.

        Dispatched immediately when the session is idle or errored, otherwise
        queued behind the turns already submitted.

        Args:
            message: A Message, a dict with ``parts`` or ``text`` (and
                optionally ``id``), or plain text.
            options: Per-turn options; ``body`` is merged into the request.

        Returns:
            The status this turn ended in: idle or error.
        """
        user_message = self._build_user_message(message)
        turn = PendingTurn(
            message=user_message,
            options=dict(options or {}),
            future=asyncio.get_running_loop().create_future(),
        )
        self._queue.append(turn)
        self.last_activity = datetime.now()
        logger.debug(f"Session {self.chat_id}: queued message {user_message.id}")

        if not self.is_busy:
            self._dispatch_next()

        return await asyncio.shield(turn.future)

    async def stop(self) -> None:
        """Cancel the in-flight turn, keeping whatever content already arrived."""
        if await self._cancel_in_flight():
            self._dispatch_next()

    async def _cancel_in_flight(self) -> bool:
        task = self._task
        turn = self._current_turn
        if task is None:
            return False

        self._task = None
        self._current_turn = None
        self.assembler.close()
        task.cancel()
        logger.info(f"Session {self.chat_id}: stopped in-flight turn")

        self._set_status(ChatStatus.IDLE)
        self._resolve(turn, ChatStatus.IDLE)

        with contextlib.suppress(asyncio.CancelledError):
            await task
        return True

    async def regenerate(
        self, message_id: str, options: dict[str, Any] | None = None
    ) -> ChatStatus:
        """Redo the turn that produced ``message_id``.

        The list is truncated to before the preceding user message, which is
        then sent again with its original id.

        Raises:
            RuntimeError: If a turn is in flight.
            ValueError: If the message is unknown or not preceded by a user message.
        """
        if self.is_busy:
            raise RuntimeError("Cannot regenerate while a turn is in flight")

        index = next((i for i, m in enumerate(self.messages) if m.id == message_id), None)
        if index is None:
            raise ValueError(f"Message {message_id} not found")
        if index == 0 or self.messages[index - 1].role != ChatRole.USER:
            raise ValueError(f"Message {message_id} is not preceded by a user message")

        user_message = self.messages[index - 1]
        del self.messages[index - 1:]
        self._notify()
        logger.info(f"Session {self.chat_id}: regenerating reply to {user_message.id}")
        return await self.send(user_message, options)

    async def resume(self) -> list[Message]:
        """Ask the server for a replay of the latest assistant message."""
        return await self.resume_coordinator.resume()

    def merge_replay(self, message: Message) -> bool:
        """Insert a replayed message through the dedupe path."""
        return self.assembler.merge_replay(message)

    async def persist(self) -> None:
        """Save the message list; failures are logged, never raised."""
        if self.persistence is None:
            return
        try:
            await self.persistence.save(self.chat_id, self.messages, self.visibility)
        except Exception as e:
            logger.exception(f"Failed to persist chat {self.chat_id}: {e}")

    async def close(self) -> None:
        """Stop any in-flight turn and resolve queued turns without sending them."""
        await self._cancel_in_flight()
        while self._queue:
            self._resolve(self._queue.popleft(), self._status)

    # ==================== Turn processing ====================

    def _build_user_message(self, message: Message | dict[str, Any] | str) -> Message:
        if isinstance(message, Message):
            built = message.model_copy(deep=True)
        else:
            data: dict[str, Any] = {"text": message} if isinstance(message, str) else dict(message)
            parts = data.get("parts")
            if not parts:
                text = data.get("text")
                if not text:
                    raise ValueError("A message needs parts or text")
                parts = [{"type": "text", "text": text}]
            built = Message.model_validate(
                {
                    "id": data.get("id") or self._id_factory(),
                    "role": data.get("role", ChatRole.USER),
                    "parts": parts,
                    "metadata": data.get("metadata") or {"createdAt": utcnow()},
                }
            )

        known = {m.id for m in self.messages} | {t.message.id for t in self._queue}
        if built.id in known:
            raise ValueError(f"Message id {built.id} already used in this session")
        return built

    def _dispatch_next(self) -> None:
        if self.is_busy or not self._queue:
            return
        turn = self._queue.popleft()
        self._current_turn = turn
        self.assembler.begin_turn()
        self.messages.append(turn.message)
        self._set_status(ChatStatus.SUBMITTED, force_notify=True)
        self._task = asyncio.create_task(self._run_turn(turn))

    def _build_request(self, turn: PendingTurn) -> TransportRequest:
        body = {**self.default_body, **turn.options.get("body", {})}
        body.setdefault("selectedVisibilityType", self.visibility)
        return TransportRequest(session_id=self.chat_id, message=turn.message, body=body)

    async def _run_turn(self, turn: PendingTurn) -> None:
        response: TransportResponse | None = None
        try:
            self._set_status(ChatStatus.LOADING)
            response = await self.transport.send_messages(self._build_request(turn))
            decoder = SseFrameDecoder(compat=self.compat_frames)
            async for frame in decoder.frames(response.body):
                if not await self.assembler.apply(frame):
                    break
            # A stream that ended without data-finish still completes normally
            await self.assembler.finish()
        except UpstreamError as e:
            logger.warning(f"Session {self.chat_id}: upstream error: {e}")
            self.assembler.fail(e.detail)
        except TransportError as e:
            logger.error(f"Session {self.chat_id}: transport failed: {e}")
            self.assembler.fail(str(e))
        except Exception as e:
            logger.exception(f"Session {self.chat_id}: turn failed: {e}")
            self.assembler.fail(str(e) or type(e).__name__)
        finally:
            if response is not None:
                await response.aclose()

        self._task = None
        self._current_turn = None
        self._resolve(turn, self._status)
        if self._status == ChatStatus.IDLE:
            self._dispatch_next()

    @staticmethod
    def _resolve(turn: PendingTurn | None, status: ChatStatus) -> None:
        if turn is not None and turn.future is not None and not turn.future.done():
            turn.future.set_result(status)
