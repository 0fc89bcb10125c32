"""Tests for SessionManager."""

import asyncio
from datetime import datetime, timedelta

import pytest

from chatstream.chat.manager import SessionManager
from chatstream.models.chat import ChatStatus, FinishFrame, TextDeltaFrame


class TestSessionManager:
    """Tests for session lifecycle management."""

    def test_one_session_per_chat(self, scripted_transport):
        manager = SessionManager(session_timeout_minutes=5)
        first = manager.open_session("chat-1", scripted_transport())
        again = manager.open_session("chat-1", scripted_transport())
        other = manager.open_session("chat-2", scripted_transport(), auto_resume=True)

        assert first is again
        assert other is not first
        assert other.resume_coordinator.auto_resume
        assert manager.active_session_count == 2

    def test_timeout_from_environment(self, monkeypatch):
        monkeypatch.setenv("CHAT_SESSION_TIMEOUT_MINUTES", "7")
        manager = SessionManager()
        assert manager._session_timeout == timedelta(minutes=7)

    @pytest.mark.asyncio
    async def test_close_session(self, scripted_transport):
        manager = SessionManager()
        manager.open_session("chat-1", scripted_transport())

        assert await manager.close_session("chat-1")
        assert not await manager.close_session("chat-1")
        assert manager.get_session("chat-1") is None

    @pytest.mark.asyncio
    async def test_cleanup_skips_busy_sessions(self, scripted_transport):
        manager = SessionManager(session_timeout_minutes=1)
        gate = asyncio.Event()
        busy = manager.open_session(
            "busy", scripted_transport([TextDeltaFrame(text_delta="x"), gate, FinishFrame()])
        )
        idle = manager.open_session("idle", scripted_transport())

        turn = asyncio.create_task(busy.send("hi"))
        for _ in range(100):
            if busy.status == ChatStatus.STREAMING:
                break
            await asyncio.sleep(0)

        stale = datetime.now() - timedelta(minutes=5)
        busy.last_activity = stale
        idle.last_activity = stale

        assert await manager.cleanup_expired() == 1
        assert [s["chat_id"] for s in manager.list_sessions()] == ["busy"]

        gate.set()
        assert await turn == ChatStatus.IDLE

    @pytest.mark.asyncio
    async def test_shutdown_stops_in_flight_turns(self, scripted_transport):
        manager = SessionManager()
        never = asyncio.Event()
        session = manager.open_session(
            "chat-1", scripted_transport([TextDeltaFrame(text_delta="x"), never])
        )
        turn = asyncio.create_task(session.send("hi"))
        for _ in range(100):
            if session.status == ChatStatus.STREAMING:
                break
            await asyncio.sleep(0)

        await manager.start_cleanup_task()
        assert manager.get_stats()["busy_sessions"] == 1

        await manager.shutdown()

        assert await turn == ChatStatus.IDLE
        stats = manager.get_stats()
        assert stats["active_sessions"] == 0
        assert stats["cleanup_task_running"] is False

    @pytest.mark.asyncio
    async def test_close_does_not_send_queued_turns(self, scripted_transport):
        manager = SessionManager()
        never = asyncio.Event()
        transport = scripted_transport([TextDeltaFrame(text_delta="x"), never], [FinishFrame()])
        session = manager.open_session("chat-1", transport)
        first = asyncio.create_task(session.send("one"))
        for _ in range(100):
            if session.status == ChatStatus.STREAMING:
                break
            await asyncio.sleep(0)
        second = asyncio.create_task(session.send("two"))
        await asyncio.sleep(0)

        assert await manager.close_session("chat-1")

        assert await first == ChatStatus.IDLE
        assert await second == ChatStatus.IDLE
        assert [r.message.text for r in transport.requests] == ["one"]
        assert not session.is_busy
        assert [m.text for m in session.messages] == ["one", "x"]
