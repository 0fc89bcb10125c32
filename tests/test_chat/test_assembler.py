"""Tests for MessageAssembler."""

import pytest

from chatstream.chat.session import SessionController
from chatstream.errors import UpstreamError
from chatstream.models.chat import (
    AppendMessageFrame,
    ChatStatus,
    ErrorFrame,
    FinishFrame,
    Message,
    TextDeltaFrame,
    TextPart,
    ToolCallPart,
)


def _session(transport, initial=None) -> SessionController:
    session = SessionController("chat-1", transport, initial_messages=initial)
    session.assembler.begin_turn()
    session._set_status(ChatStatus.LOADING)
    return session


class TestMessageAssembler:
    """Tests for folding frames into messages."""

    @pytest.mark.asyncio
    async def test_deltas_accumulate_in_one_text_part(self, scripted_transport):
        """N consecutive deltas produce one text part equal to their concatenation."""
        session = _session(scripted_transport())
        deltas = ["The ", "quick ", "brown ", "fox"]

        for delta in deltas:
            assert await session.assembler.apply(TextDeltaFrame(text_delta=delta))

        assistant = session.messages[-1]
        assert assistant.role == "assistant"
        assert assistant.parts == [TextPart(text="".join(deltas))]
        assert session.status == ChatStatus.STREAMING

    @pytest.mark.asyncio
    async def test_new_text_part_after_non_text_part(self, scripted_transport):
        session = _session(scripted_transport())
        await session.assembler.apply(TextDeltaFrame(text_delta="Looking up"))
        session.assembler.open_message.parts.append(
            ToolCallPart(tool_name="search", tool_call_id="t1", args={})
        )
        await session.assembler.apply(TextDeltaFrame(text_delta="Found it"))

        parts = session.messages[-1].parts
        assert [p.type for p in parts] == ["text", "tool-call", "text"]
        assert parts[2].text == "Found it"

    @pytest.mark.asyncio
    async def test_adopts_message_id_from_frame(self, scripted_transport):
        session = _session(scripted_transport())
        await session.assembler.apply(TextDeltaFrame(text_delta="Hi", message_id="server-id"))
        assert session.messages[-1].id == "server-id"

    @pytest.mark.asyncio
    async def test_finish_sets_idle_and_stops(self, scripted_transport):
        session = _session(scripted_transport())
        await session.assembler.apply(TextDeltaFrame(text_delta="Hi"))

        assert not await session.assembler.apply(FinishFrame())
        assert session.status == ChatStatus.IDLE
        assert session.assembler.finished
        # Frames after the finish are ignored
        assert not await session.assembler.apply(TextDeltaFrame(text_delta="late"))
        assert session.messages[-1].text == "Hi"

    @pytest.mark.asyncio
    async def test_error_frame_raises_upstream_error(self, scripted_transport):
        session = _session(scripted_transport())
        await session.assembler.apply(TextDeltaFrame(text_delta="partial"))

        with pytest.raises(UpstreamError) as exc_info:
            await session.assembler.apply(ErrorFrame(data="model overloaded"))

        assert exc_info.value.detail == "model overloaded"
        assert session.status == ChatStatus.STREAMING

    @pytest.mark.asyncio
    async def test_fail_appends_error_message(self, scripted_transport):
        session = _session(scripted_transport())
        await session.assembler.apply(TextDeltaFrame(text_delta="partial"))

        session.assembler.fail("model overloaded")

        assert session.status == ChatStatus.ERROR
        assert session.assembler.finished
        assert session.messages[-2].text == "partial"
        assert session.messages[-1].role == "assistant"
        assert session.messages[-1].text == "Sorry, I encountered an error: model overloaded"

    @pytest.mark.asyncio
    async def test_error_before_content_adds_only_error_message(self, scripted_transport):
        session = SessionController("chat-1", scripted_transport([ErrorFrame(data="boom")]))

        assert await session.send("hi") == ChatStatus.ERROR

        assert [m.role for m in session.messages] == ["user", "assistant"]
        assert session.messages[-1].text.endswith("boom")

    @pytest.mark.asyncio
    async def test_append_message_frame_held_until_idle(self, scripted_transport):
        """A replay inside a turn response is merged only after the turn ends."""
        replayed = Message(id="x-1", role="assistant", parts=[TextPart(text="replayed")])
        transport = scripted_transport(
            [
                TextDeltaFrame(text_delta="Hel"),
                AppendMessageFrame.for_message(replayed),
                TextDeltaFrame(text_delta="lo"),
                FinishFrame(),
            ]
        )
        session = SessionController("chat-1", transport)
        merged_at = []

        def record(s):
            if any(m.id == "x-1" for m in s.messages) and not merged_at:
                merged_at.append(s.status)

        session.subscribe(record)

        assert await session.send("hi") == ChatStatus.IDLE

        assert merged_at == [ChatStatus.IDLE]
        reply = session.messages[1]
        assert [p.text for p in reply.parts] == ["Hello"]
        assert [m.id for m in session.messages][2:] == ["x-1"]
        assert session.resume_coordinator.held_count == 0


class TestMergeReplay:
    """Tests for the replay dedupe path."""

    def test_inserts_unknown_message(self, scripted_transport):
        session = SessionController("chat-1", scripted_transport())
        message = Message(id="a1", role="assistant", parts=[TextPart(text="hi")])

        assert session.merge_replay(message)
        assert [m.id for m in session.messages] == ["a1"]

    def test_duplicate_leaves_length_unchanged(self, scripted_transport):
        """Replaying a message already present does not grow the list."""
        initial = [
            Message(id="u1", role="user", parts=[TextPart(text="hi")]),
            Message(id="a1", role="assistant", parts=[TextPart(text="hello")]),
        ]
        session = SessionController("chat-1", scripted_transport(), initial_messages=initial)

        assert not session.merge_replay(initial[1].model_copy(deep=True))
        assert len(session.messages) == 2

    def test_known_from_initial_messages_only(self, scripted_transport):
        """A message dropped from the current list but present initially stays out."""
        initial = [Message(id="a1", role="assistant", parts=[TextPart(text="x")])]
        session = SessionController("chat-1", scripted_transport(), initial_messages=initial)
        session.messages.clear()

        assert not session.merge_replay(initial[0])
        assert session.messages == []

    def test_second_replay_of_same_message_ignored(self, scripted_transport):
        session = SessionController("chat-1", scripted_transport())
        message = Message(id="a1", role="assistant", parts=[TextPart(text="hi")])

        assert session.merge_replay(message)
        assert not session.merge_replay(message)
        assert len(session.messages) == 1
