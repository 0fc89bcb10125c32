"""Error types for the chat engine and its HTTP surface.

Structured errors carry a ``"<type>:<surface>"`` code (e.g. ``not_found:chat``)
that maps to an HTTP status. Engine-level errors classify what went wrong
during a turn:

- TransportError: the call failed before any frame arrived
- ProtocolError: a single frame could not be decoded (logged and skipped)
- UpstreamError: the remote side reported a ``data-error`` frame
- ResumeError: the resume endpoint rejected the request
"""

from typing import Any

STATUS_BY_TYPE: dict[str, int] = {
    "bad_request": 400,
    "unauthorized": 401,
    "forbidden": 403,
    "not_found": 404,
    "rate_limit": 429,
    "offline": 503,
}

DEFAULT_MESSAGES: dict[str, str] = {
    "bad_request:api": "The request couldn't be processed. Please check your input and try again.",
    "bad_request:chat": "The chat request couldn't be processed.",
    "unauthorized:chat": "You need to sign in to view this chat.",
    "forbidden:chat": "This chat belongs to another user.",
    "not_found:chat": "The requested chat was not found.",
    "rate_limit:chat": "You have exceeded your maximum number of messages for the day.",
    "offline:chat": "We're having trouble sending your message. Please check your connection.",
}


class ChatError(Exception):
    """An error with a structured ``type:surface`` code."""

    def __init__(self, code: str, message: str | None = None):
        error_type, _, surface = code.partition(":")
        if error_type not in STATUS_BY_TYPE:
            raise ValueError(f"Unknown error type: {error_type}")
        self.code = code
        self.type = error_type
        self.surface = surface or "api"
        self.message = message or DEFAULT_MESSAGES.get(code, "Something went wrong.")
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_TYPE[self.type]

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "error": self.message}


class ResumeError(ChatError):
    """Resume request rejected (auth, validation or not found)."""

    def __init__(self, code: str, message: str | None = None, status_code: int | None = None):
        super().__init__(code, message)
        self._status_override = status_code

    @property
    def status_code(self) -> int:
        return self._status_override or super().status_code


class TransportError(Exception):
    """A transport call failed before producing any frame."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ProtocolError(Exception):
    """A single record of the frame stream was malformed."""

    pass


class UpstreamError(Exception):
    """The remote side reported an error inside the frame stream."""

    def __init__(self, detail: str | None):
        super().__init__(detail or "Unknown error")
        self.detail = detail
