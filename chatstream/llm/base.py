"""Common interface for upstream text generation clients."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from chatstream.models.chat import ChatRole, Message
from chatstream.models.provider import Provider

DEFAULT_MAX_TOKENS = 4096


class ModelError(Exception):
    """The upstream model call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ModelClient(ABC):
    """Streams a completion for a conversation.

    After ``stream_text`` is exhausted, ``usage`` holds token counts when the
    upstream reported them.
    """

    def __init__(self, provider: Provider, model: str | None = None):
        self.provider = provider
        self.model = model or provider.model
        self.usage: dict[str, Any] | None = None

    @abstractmethod
    def stream_text(
        self, messages: list[dict[str, str]], system: str | None = None
    ) -> AsyncIterator[str]:
        """Yield text deltas of the assistant reply."""
        ...

    async def aclose(self) -> None:
        return None

    def _usage(self, input_tokens: int | None, output_tokens: int | None) -> dict[str, Any]:
        total = (input_tokens or 0) + (output_tokens or 0)
        return {
            "modelId": self.model,
            "inputTokens": input_tokens,
            "outputTokens": output_tokens,
            "totalTokens": total,
        }


def to_model_messages(messages: list[Message]) -> list[dict[str, str]]:
    """Flatten messages to role/content pairs, text parts joined by newlines.

    Messages without text (only files or tool parts) are left out.
    """
    converted = []
    for message in messages:
        if message.role not in (ChatRole.USER, ChatRole.ASSISTANT, ChatRole.SYSTEM):
            continue
        content = "\n".join(
            part.text for part in message.parts if getattr(part, "type", None) == "text"
        )
        if content:
            converted.append({"role": ChatRole(message.role).value, "content": content})
    return converted
