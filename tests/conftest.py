"""Pytest configuration and fixtures."""

import asyncio
import os
import tempfile
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from chatstream.chat.frames import encode_frame
from chatstream.chat.transport import (
    TransportPort,
    TransportRequest,
    TransportResponse,
    empty_body,
)
from chatstream.db.database import close_database, init_database
from chatstream.llm.base import ModelClient
from chatstream.main import app
from chatstream.models.provider import Provider


class ScriptedTransport(TransportPort):
    """Transport that replays canned responses.

    Each turn script is either an exception to raise from send_messages or a
    list of items making up the body: raw bytes, frames (encoded on the fly)
    or asyncio.Event instances the body waits on before continuing.
    """

    def __init__(self, *turns: Any, resume: Any = None):
        self.turns = list(turns)
        self.resume = resume
        self.requests: list[TransportRequest] = []
        self.resume_calls = 0

    async def send_messages(self, request: TransportRequest) -> TransportResponse:
        self.requests.append(request)
        script = self.turns.pop(0) if self.turns else []
        if isinstance(script, Exception):
            raise script
        return TransportResponse(status=200, body=self._body(script))

    async def resume_stream(self, chat_id: str) -> TransportResponse:
        self.resume_calls += 1
        if isinstance(self.resume, Exception):
            raise self.resume
        if not self.resume:
            return TransportResponse(status=204, body=empty_body())
        return TransportResponse(status=200, body=self._body(self.resume))

    @staticmethod
    async def _body(script: list[Any]) -> AsyncIterator[bytes]:
        for item in script:
            if isinstance(item, asyncio.Event):
                await item.wait()
            elif isinstance(item, bytes):
                yield item
            else:
                yield encode_frame(item)


class FakeModelClient(ModelClient):
    """Model client yielding fixed deltas, optionally failing afterwards."""

    def __init__(
        self,
        provider: Provider,
        model: str | None = None,
        deltas: tuple[str, ...] = ("Hel", "lo"),
        error: Exception | None = None,
    ):
        super().__init__(provider, model)
        self.deltas = deltas
        self.error = error
        self.seen_messages: list[dict[str, str]] = []
        self.closed = False

    async def stream_text(
        self, messages: list[dict[str, str]], system: str | None = None
    ) -> AsyncIterator[str]:
        self.seen_messages = messages
        for delta in self.deltas:
            yield delta
        if self.error:
            raise self.error
        self.usage = self._usage(3, len(self.deltas))

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
async def setup_test_db(monkeypatch):
    """Set up a test database and fresh service singletons for each test."""
    monkeypatch.setattr("chatstream.chat.turn._service", None)
    monkeypatch.setattr("chatstream.chat.resume._service", None)

    # Create a temporary database file
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    await init_database(db_path)

    yield

    # Clean up
    app.dependency_overrides.clear()
    await close_database()
    os.unlink(db_path)


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def scripted_transport() -> type[ScriptedTransport]:
    return ScriptedTransport


@pytest.fixture
def fake_model_client() -> type[FakeModelClient]:
    return FakeModelClient


@pytest.fixture
def provider() -> Provider:
    return Provider(
        id="prov-1",
        name="Local",
        kind="openai",
        base_url="http://upstream.test/v1",
        model="test-model",
        api_key="sk-test",
    )
