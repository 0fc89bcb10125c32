"""Bridge between chat sessions and the durable chat store.

The store itself is external to the engine; anything implementing ChatStore
can back a session (SqliteChatStore in chatstream.db, InMemoryChatStore here).
Required semantics are last-write-wins upserts with no cross-entity
transactions: chat metadata and the message list are written independently.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Protocol

from chatstream.models.chat import ChatRole, Message, PersistedChat, Visibility

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New Chat"


class ChatStore(Protocol):
    """Operations consumed from the durable store."""

    async def get_messages_by_chat_id(self, chat_id: str) -> list[Message]: ...

    async def save_messages(self, chat_id: str, messages: list[Message]) -> None: ...

    async def get_chat_by_id(self, chat_id: str) -> PersistedChat | None: ...

    async def save_chat(self, chat: PersistedChat) -> None: ...

    async def update_chat_last_context(self, chat_id: str, context: dict[str, Any]) -> None: ...


def generate_title(message: Message) -> str:
    """Derive a chat title from the first user message."""
    text = " ".join(
        part.text for part in message.parts if getattr(part, "type", None) == "text"
    ).strip()
    if not text:
        return DEFAULT_TITLE
    title = text[:TITLE_MAX_CHARS]
    if len(text) > TITLE_MAX_CHARS:
        title += "..."
    return title


class InMemoryChatStore:
    """ChatStore kept in process memory.

    Useful for clients without a local database and for tests.
    """

    def __init__(self) -> None:
        self._chats: dict[str, PersistedChat] = {}
        self._messages: dict[str, dict[str, Message]] = defaultdict(dict)

    async def get_messages_by_chat_id(self, chat_id: str) -> list[Message]:
        messages = self._messages.get(chat_id, {})
        return [m.model_copy(deep=True) for m in messages.values()]

    async def save_messages(self, chat_id: str, messages: list[Message]) -> None:
        stored = self._messages[chat_id]
        for message in messages:
            stored[message.id] = message.model_copy(deep=True)

    async def get_chat_by_id(self, chat_id: str) -> PersistedChat | None:
        chat = self._chats.get(chat_id)
        return chat.model_copy() if chat else None

    async def save_chat(self, chat: PersistedChat) -> None:
        self._chats[chat.id] = chat.model_copy()

    async def update_chat_last_context(self, chat_id: str, context: dict[str, Any]) -> None:
        chat = self._chats.get(chat_id)
        if chat:
            chat.last_context = context


class PersistenceBridge:
    """Write-behind / read-through access to a ChatStore for one user.

    Writes for the same chat are serialized so the last save issued is the
    last one applied.
    """

    def __init__(self, store: ChatStore, user_id: str | None = None):
        """Initialize the bridge.

        Args:
            store: The durable store.
            user_id: Owner used when a chat record has to be created on first save.
                Without it, only messages are written.
        """
        self.store = store
        self.user_id = user_id
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def save(
        self,
        chat_id: str,
        messages: list[Message],
        visibility: Visibility = Visibility.PRIVATE,
    ) -> None:
        """Persist the session's message list."""
        snapshot = [m.model_copy(deep=True) for m in messages]
        async with self._locks[chat_id]:
            if self.user_id:
                await self._ensure_chat(chat_id, snapshot, visibility)
            await self.store.save_messages(chat_id, snapshot)
        logger.debug(f"Saved {len(snapshot)} message(s) for chat {chat_id}")

    async def load_messages(self, chat_id: str) -> list[Message]:
        return await self.store.get_messages_by_chat_id(chat_id)

    async def latest_message(self, chat_id: str) -> Message | None:
        messages = await self.store.get_messages_by_chat_id(chat_id)
        return messages[-1] if messages else None

    async def get_chat(self, chat_id: str) -> PersistedChat | None:
        return await self.store.get_chat_by_id(chat_id)

    async def _ensure_chat(
        self, chat_id: str, messages: list[Message], visibility: Visibility
    ) -> None:
        if await self.store.get_chat_by_id(chat_id) is not None:
            return
        first_user = next((m for m in messages if m.role == ChatRole.USER), None)
        title = generate_title(first_user) if first_user else DEFAULT_TITLE
        await self.store.save_chat(
            PersistedChat(id=chat_id, user_id=self.user_id, title=title, visibility=visibility)
        )
        logger.info(f"Created chat {chat_id} titled {title!r}")
