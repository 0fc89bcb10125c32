"""Transport strategies carrying turns and resume requests.

Every strategy returns raw event-stream bytes; decoding is the caller's job.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from chatstream.errors import STATUS_BY_TYPE, ChatError, ResumeError, TransportError
from chatstream.models.chat import ChatRequest, Message

if TYPE_CHECKING:
    from chatstream.chat.identity import UserIdentity
    from chatstream.chat.resume import ResumeService
    from chatstream.chat.turn import TurnService

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


async def empty_body() -> AsyncIterator[bytes]:
    """A response body with no bytes."""
    for chunk in ():
        yield chunk


@dataclass
class TransportRequest:
    """One user turn addressed to a session."""

    session_id: str
    message: Message
    body: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """The JSON body of a turn request."""
        payload: dict[str, Any] = {
            "id": self.session_id,
            "message": {
                "id": self.message.id,
                "role": self.message.role,
                "parts": [part.model_dump(mode="json", by_alias=True) for part in self.message.parts],
            },
        }
        for key, value in self.body.items():
            if value is None:
                continue
            payload[key] = value.value if isinstance(value, Enum) else value
        return payload


@dataclass
class TransportResponse:
    """Status plus a lazily consumed byte stream."""

    status: int
    body: AsyncIterator[bytes]
    close: Callable[[], Awaitable[None]] | None = None

    async def aclose(self) -> None:
        """Release the underlying stream."""
        if self.close is not None:
            await self.close()
        elif hasattr(self.body, "aclose"):
            await self.body.aclose()


class TransportPort(ABC):
    """Abstract transport used by SessionController and ResumeCoordinator."""

    @abstractmethod
    async def send_messages(self, request: TransportRequest) -> TransportResponse:
        """Start a turn.

        Raises:
            TransportError: If the call failed before any frame was produced.
        """
        ...

    @abstractmethod
    async def resume_stream(self, chat_id: str) -> TransportResponse:
        """Request a replay for a chat. A 204 response has an empty body.

        Raises:
            ResumeError: If the request was rejected.
        """
        ...

    async def fetch_messages(self, chat_id: str) -> list[Message]:
        """Load the persisted history of a chat. Empty when unsupported."""
        return []

    async def aclose(self) -> None:
        """Release client resources."""
        return None


def _code_for_status(status_code: int, surface: str = "chat") -> str:
    for error_type, status in STATUS_BY_TYPE.items():
        if status == status_code:
            return f"{error_type}:{surface}"
    return f"bad_request:{surface}" if status_code < 500 else f"offline:{surface}"


class HttpTransport(TransportPort):
    """Network transport against a chatstream server."""

    def __init__(
        self,
        base_url: str,
        user_id: str | None = None,
        user_type: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the transport.

        Args:
            base_url: Server root, e.g. ``http://localhost:8000``.
            user_id: Sent as ``X-User-Id``.
            user_type: Sent as ``X-User-Type`` (guest or regular).
            timeout: Connect and per-read timeout in seconds.
            client: Pre-built client (tests pass one with a mock transport).
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers: dict[str, str] = {}
        if user_id:
            self._headers["X-User-Id"] = user_id
        if user_type:
            self._headers["X-User-Type"] = user_type

    async def send_messages(self, request: TransportRequest) -> TransportResponse:
        http_request = self._client.build_request(
            "POST", "/api/chat", json=request.to_payload(), headers=self._headers
        )
        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}") from e

        if not response.is_success:
            code, message = await self._read_error(response)
            raise TransportError(message, status_code=response.status_code, code=code)

        logger.debug(f"Turn {request.message.id} accepted ({response.status_code})")
        return TransportResponse(
            status=response.status_code, body=response.aiter_bytes(), close=response.aclose
        )

    async def resume_stream(self, chat_id: str) -> TransportResponse:
        http_request = self._client.build_request(
            "GET", f"/api/chat/{chat_id}/stream", headers=self._headers
        )
        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise ResumeError("offline:chat", f"Resume request failed: {e}") from e

        if response.status_code == 204:
            await response.aclose()
            return TransportResponse(status=204, body=empty_body())

        if not response.is_success:
            code, message = await self._read_error(response)
            raise ResumeError(
                code or _code_for_status(response.status_code),
                message,
                status_code=response.status_code,
            )

        return TransportResponse(
            status=response.status_code, body=response.aiter_bytes(), close=response.aclose
        )

    async def fetch_messages(self, chat_id: str) -> list[Message]:
        """Load a chat's history. An unknown chat has no history.

        Raises:
            ResumeError: If the server refused access.
        """
        try:
            response = await self._client.get(f"/api/chat/{chat_id}/messages", headers=self._headers)
        except httpx.HTTPError as e:
            raise ResumeError("offline:chat", f"Failed to load messages: {e}") from e
        if response.status_code == 404:
            return []
        if not response.is_success:
            code, message = await self._read_error(response)
            raise ResumeError(
                code or _code_for_status(response.status_code),
                message,
                status_code=response.status_code,
            )
        return [Message.model_validate(item) for item in response.json()]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    async def _read_error(response: httpx.Response) -> tuple[str | None, str]:
        """Read ``{code, error}`` from an error response and close it."""
        try:
            await response.aread()
        finally:
            await response.aclose()
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None, response.text or f"HTTP {response.status_code}"
        if not isinstance(data, dict):
            return None, f"HTTP {response.status_code}"
        code = data.get("code")
        if not isinstance(code, str) or code.partition(":")[0] not in STATUS_BY_TYPE:
            code = None
        return code, data.get("error") or data.get("detail") or f"HTTP {response.status_code}"


class InProcessTransport(TransportPort):
    """Runs turns against local services instead of the network.

    Shares TurnService and ResumeService with the HTTP routes, so the bytes
    produced are exactly what the server would send.
    """

    def __init__(
        self,
        turns: "TurnService",
        resumes: "ResumeService",
        user: "UserIdentity | None",
    ):
        self._turns = turns
        self._resumes = resumes
        self._user = user

    async def send_messages(self, request: TransportRequest) -> TransportResponse:
        try:
            chat_request = ChatRequest.model_validate(request.to_payload())
        except ValidationError as e:
            raise TransportError(
                f"Invalid request: {e.error_count()} validation error(s)",
                status_code=400,
                code="bad_request:api",
            ) from e

        try:
            body = await self._turns.start_turn(chat_request, self._user)
        except ChatError as e:
            raise TransportError(e.message, status_code=e.status_code, code=e.code) from e
        return TransportResponse(status=200, body=body)

    async def fetch_messages(self, chat_id: str) -> list[Message]:
        try:
            await self._resumes.authorize(chat_id, self._user)
        except ResumeError as e:
            if e.type == "not_found":
                return []
            raise
        return await self._resumes.persistence.load_messages(chat_id)

    async def resume_stream(self, chat_id: str) -> TransportResponse:
        frames = await self._resumes.resume_frames(chat_id, self._user)
        if not frames:
            return TransportResponse(status=204, body=empty_body())
        return TransportResponse(status=200, body=self._resumes.stream(frames))
