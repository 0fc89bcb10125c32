"""Event-stream framing for the chat wire protocol.

A response body is a sequence of records::

    data: {"type": "text-delta", "textDelta": "Hel"}\\n\\n
    data: {"type": "data-finish", "data": null}\\n\\n
    data: [DONE]\\n\\n

SseFrameDecoder turns arbitrarily fragmented bytes back into typed frames.
A record may be split anywhere, including inside a multibyte UTF-8 sequence,
so decoding is incremental and a frame is only emitted once its line is
complete. A malformed record is logged and skipped; decoding continues.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from pydantic import TypeAdapter, ValidationError

from chatstream.errors import ProtocolError
from chatstream.models.chat import StreamFrame, TextDeltaFrame

logger = logging.getLogger(__name__)

DATA_FIELD = "data:"
DONE_SENTINEL = "[DONE]"
DONE_RECORD = b"data: [DONE]\n\n"

# Payload keys probed by the compatibility shim, in order
COMPAT_TEXT_KEYS = ("content", "delta", "textDelta", "text")

_frame_adapter: TypeAdapter[StreamFrame] = TypeAdapter(StreamFrame)


def encode_frame(frame: StreamFrame) -> bytes:
    """Serialize one frame as an event-stream record."""
    payload = frame.model_dump(mode="json", by_alias=True)
    if isinstance(frame, TextDeltaFrame) and frame.message_id is None:
        payload.pop("messageId", None)
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


def parse_frame(data: Any, compat: bool = False) -> StreamFrame:
    """Validate a decoded JSON payload as a frame.

    Raises:
        ProtocolError: If the payload is not a known frame.
    """
    try:
        return _frame_adapter.validate_python(data)
    except ValidationError as e:
        if compat:
            coerced = _coerce_text_delta(data)
            if coerced is not None:
                return coerced
        raise ProtocolError(f"Unrecognized frame ({e.error_count()} validation errors)") from e


def _coerce_text_delta(data: Any) -> TextDeltaFrame | None:
    """Best-effort mapping of non-conforming upstream payloads to a text delta."""
    if isinstance(data, str) and data:
        return TextDeltaFrame(text_delta=data)
    if not isinstance(data, dict):
        return None
    for key in COMPAT_TEXT_KEYS:
        value = data.get(key)
        if isinstance(value, (str, int, float)) and value != "":
            return TextDeltaFrame(text_delta=str(value))
    return None


def _data_payload(line: str) -> str | None:
    """Extract the payload of a ``data:`` line, None for any other line."""
    if not line.startswith(DATA_FIELD):
        return None
    payload = line[len(DATA_FIELD):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


class SseFrameDecoder:
    """Incremental decoder from raw bytes to stream frames.

    One decoder instance handles exactly one response body.
    """

    def __init__(self, compat: bool = False) -> None:
        """Initialize the decoder.

        Args:
            compat: Coerce non-canonical payloads (``content``, ``delta``,
                ``textDelta``, ``text``) into text deltas. Only meant for
                upstreams that do not speak the frame protocol.
        """
        self.compat = compat
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._done = False

    @property
    def done(self) -> bool:
        """Whether the stream ended (sentinel seen or input closed)."""
        return self._done

    def feed_payloads(self, chunk: bytes | str) -> list[str]:
        """Feed a chunk and return the raw payloads of all completed data lines."""
        if self._done:
            return []
        if isinstance(chunk, bytes):
            self._buffer += self._utf8.decode(chunk)
        else:
            self._buffer += chunk

        payloads: list[str] = []
        while True:
            newline = self._buffer.find("\n")
            if newline < 0:
                break
            line = self._buffer[:newline].rstrip("\r")
            self._buffer = self._buffer[newline + 1:]

            payload = _data_payload(line)
            if payload is None:
                # Blank record separators, comments and other fields
                continue
            if payload == DONE_SENTINEL:
                self._done = True
                self._buffer = ""
                break
            payloads.append(payload)
        return payloads

    def feed(self, chunk: bytes | str) -> list[StreamFrame]:
        """Feed a chunk and return all frames it completed."""
        frames: list[StreamFrame] = []
        for payload in self.feed_payloads(chunk):
            frame = self._parse(payload)
            if frame is not None:
                frames.append(frame)
        return frames

    def close(self) -> None:
        """Mark the input as finished. An unterminated trailing line is dropped."""
        tail = self._buffer + self._utf8.decode(b"", final=True)
        if tail.strip():
            logger.debug(f"Discarding unterminated trailing line: {tail[:200]!r}")
        self._buffer = ""
        self._done = True

    async def frames(self, stream: AsyncIterable[bytes]) -> AsyncIterator[StreamFrame]:
        """Decode a whole byte stream into frames, stopping at ``[DONE]``."""
        async for chunk in stream:
            for frame in self.feed(chunk):
                yield frame
            if self._done:
                break
        self.close()

    async def payloads(self, stream: AsyncIterable[bytes]) -> AsyncIterator[Any]:
        """Decode a byte stream into JSON payloads without frame validation.

        Used for upstream event streams that carry their own payload schema.
        """
        async for chunk in stream:
            for payload in self.feed_payloads(chunk):
                try:
                    yield json.loads(payload)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping malformed event payload: {e}: {payload[:200]!r}")
            if self._done:
                break
        self.close()

    def _parse(self, payload: str) -> StreamFrame | None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed frame: {e}: {payload[:200]!r}")
            return None
        try:
            return parse_frame(data, compat=self.compat)
        except ProtocolError as e:
            logger.warning(f"Skipping frame: {e}: {payload[:200]!r}")
            return None
