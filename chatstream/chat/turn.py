"""TurnService - server side producer of the chat wire format.

Validation, authorization and provider lookup happen before the first byte,
so they surface as structured errors (non-2xx). Anything that fails after
streaming started is reported in-band as a ``data-error`` frame. Every stream
ends with ``[DONE]``.
"""

import logging
from collections.abc import AsyncIterator, Callable

from chatstream.chat.frames import DONE_RECORD, encode_frame
from chatstream.chat.identity import UserIdentity
from chatstream.chat.persistence import PersistenceBridge, generate_title
from chatstream.chat.rate_limit import MessageRateLimiter
from chatstream.errors import ChatError
from chatstream.llm.base import ModelClient, to_model_messages
from chatstream.llm.providers import ProviderResolver, create_model_client
from chatstream.models.chat import (
    ChatRequest,
    ChatRole,
    ErrorFrame,
    FinishFrame,
    Message,
    PersistedChat,
    TextDeltaFrame,
    TextPart,
)
from chatstream.models.provider import Provider
from chatstream.utils import generate_id

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly assistant. Keep your responses concise and helpful."
)

ClientFactory = Callable[[Provider, str | None], ModelClient]


class TurnService:
    """Runs one chat turn end to end on the server."""

    def __init__(
        self,
        persistence: PersistenceBridge,
        providers: ProviderResolver,
        limiter: MessageRateLimiter | None = None,
        client_factory: ClientFactory = create_model_client,
        system_prompt: str | None = DEFAULT_SYSTEM_PROMPT,
        id_factory: Callable[[], str] = generate_id,
    ):
        self.persistence = persistence
        self.providers = providers
        self.limiter = limiter or MessageRateLimiter()
        self._client_factory = client_factory
        self.system_prompt = system_prompt
        self._id_factory = id_factory

    async def start_turn(
        self, request: ChatRequest, user: UserIdentity | None
    ) -> AsyncIterator[bytes]:
        """Accept a turn and return its event stream.

        Args:
            request: The validated request body.
            user: The caller, None when unauthenticated.

        Returns:
            An async iterator of encoded frames ending with ``[DONE]``.

        Raises:
            ChatError: If the turn is rejected before streaming.
        """
        if user is None:
            raise ChatError("unauthorized:chat")
        self.limiter.check(user)

        store = self.persistence.store
        chat_id = request.chat_id
        message = request.to_message()

        chat = await store.get_chat_by_id(chat_id)
        if chat is not None and chat.user_id != user.id:
            raise ChatError("forbidden:chat")

        provider = await self.providers.resolve(request.provider_id, request.selected_chat_model)
        client = self._client_factory(provider, request.selected_chat_model)

        if chat is None:
            title = generate_title(message)
            await store.save_chat(
                PersistedChat(
                    id=chat_id,
                    user_id=user.id,
                    title=title,
                    visibility=request.selected_visibility_type,
                )
            )
            logger.info(f"Created chat {chat_id} for user {user.id}")

        history = await store.get_messages_by_chat_id(chat_id)
        history = self._history_before(history, message)
        await store.save_messages(chat_id, [message])
        self.limiter.record(user.id)

        logger.info(
            f"Turn {message.id} in chat {chat_id}: provider={provider.name} "
            f"model={client.model} history={len(history)}"
        )
        return self.stream_turn(chat_id, history + [message], client)

    async def stream_turn(
        self, chat_id: str, messages: list[Message], client: ModelClient
    ) -> AsyncIterator[bytes]:
        """Stream the assistant reply as frames and persist it."""
        assistant_id = self._id_factory()
        chunks: list[str] = []
        completed = False
        try:
            async for delta in client.stream_text(
                to_model_messages(messages), system=self.system_prompt
            ):
                if not delta:
                    continue
                chunks.append(delta)
                yield encode_frame(TextDeltaFrame(text_delta=delta, message_id=assistant_id))

            await self._save_reply(chat_id, assistant_id, chunks)
            if client.usage:
                await self.persistence.store.update_chat_last_context(chat_id, client.usage)
            completed = True
            yield encode_frame(FinishFrame())
        except Exception as e:
            completed = True
            logger.error(f"Turn failed in chat {chat_id}: {e}")
            yield encode_frame(ErrorFrame(data=str(e) or "Failed to process request"))
        finally:
            if not completed and chunks:
                # The client went away mid-stream; keep the partial reply for resume
                logger.info(f"Stream for chat {chat_id} closed early, saving partial reply")
                await self._save_reply(chat_id, assistant_id, chunks)
            await client.aclose()

        yield DONE_RECORD

    async def _save_reply(self, chat_id: str, message_id: str, chunks: list[str]) -> None:
        reply = Message(
            id=message_id,
            role=ChatRole.ASSISTANT,
            parts=[TextPart(text="".join(chunks))],
        )
        await self.persistence.store.save_messages(chat_id, [reply])

    @staticmethod
    def _history_before(history: list[Message], message: Message) -> list[Message]:
        """Messages preceding ``message``; a resent message drops what followed it."""
        for index, existing in enumerate(history):
            if existing.id == message.id:
                return history[:index]
        return history


_service: TurnService | None = None


def get_turn_service() -> TurnService:
    """Get the turn service backed by the SQLite stores."""
    global _service
    if _service is None:
        from chatstream.db import provider_store
        from chatstream.db.chat_store import chat_store

        _service = TurnService(
            persistence=PersistenceBridge(chat_store),
            providers=ProviderResolver(provider_store),
        )
    return _service
