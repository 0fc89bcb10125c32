"""Tests for PersistenceBridge and title generation."""

import asyncio

import pytest

from chatstream.chat.persistence import (
    InMemoryChatStore,
    PersistenceBridge,
    generate_title,
)
from chatstream.models.chat import FilePart, Message, TextPart, Visibility


def _user(text: str, message_id: str = "u1") -> Message:
    return Message(id=message_id, role="user", parts=[TextPart(text=text)])


class TestGenerateTitle:
    def test_short_text(self):
        assert generate_title(_user("Plan a trip")) == "Plan a trip"

    def test_long_text_truncated(self):
        title = generate_title(_user("x" * 80))
        assert title == "x" * 50 + "..."

    def test_no_text(self):
        message = Message(
            id="u1",
            role="user",
            parts=[FilePart(url="http://img.test/a.png", name="a.png", media_type="image/png")],
        )
        assert generate_title(message) == "New Chat"


class TestPersistenceBridge:
    """Tests for saving and loading through the bridge."""

    @pytest.mark.asyncio
    async def test_save_creates_chat_on_first_write(self):
        store = InMemoryChatStore()
        bridge = PersistenceBridge(store, user_id="owner")

        await bridge.save("chat-1", [_user("hello there")], Visibility.PUBLIC)

        chat = await bridge.get_chat("chat-1")
        assert chat.user_id == "owner"
        assert chat.title == "hello there"
        assert chat.visibility == "public"
        assert [m.id for m in await bridge.load_messages("chat-1")] == ["u1"]

    @pytest.mark.asyncio
    async def test_save_without_owner_writes_messages_only(self):
        store = InMemoryChatStore()
        bridge = PersistenceBridge(store)

        await bridge.save("chat-1", [_user("hi")])

        assert await bridge.get_chat("chat-1") is None
        assert len(await bridge.load_messages("chat-1")) == 1

    @pytest.mark.asyncio
    async def test_last_write_wins(self):
        store = InMemoryChatStore()
        bridge = PersistenceBridge(store)

        await bridge.save("chat-1", [_user("draft")])
        await bridge.save("chat-1", [_user("final")])

        messages = await bridge.load_messages("chat-1")
        assert [m.text for m in messages] == ["final"]

    @pytest.mark.asyncio
    async def test_saved_snapshot_is_independent(self):
        """Mutating the session list after a save does not change stored data."""
        bridge = PersistenceBridge(InMemoryChatStore())
        messages = [_user("hi")]

        await bridge.save("chat-1", messages)
        messages[0].parts[0].text = "changed"

        assert (await bridge.latest_message("chat-1")).text == "hi"

    @pytest.mark.asyncio
    async def test_concurrent_saves_apply_in_order(self):
        bridge = PersistenceBridge(InMemoryChatStore())

        await asyncio.gather(
            bridge.save("chat-1", [_user("one")]),
            bridge.save("chat-1", [_user("two")]),
            bridge.save("chat-1", [_user("three")]),
        )

        assert (await bridge.latest_message("chat-1")).text == "three"

    @pytest.mark.asyncio
    async def test_latest_message_of_empty_chat(self):
        bridge = PersistenceBridge(InMemoryChatStore())
        assert await bridge.latest_message("missing") is None
