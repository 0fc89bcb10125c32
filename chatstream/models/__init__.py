"""Pydantic models for the chat engine."""

from chatstream.models.chat import (
    BUSY_STATUSES,
    AppendMessageFrame,
    ChatRequest,
    ChatRole,
    ChatStatus,
    DataPart,
    ErrorFrame,
    FilePart,
    FinishFrame,
    Message,
    MessageMetadata,
    Part,
    PersistedChat,
    StreamFrame,
    TextDeltaFrame,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Visibility,
)
from chatstream.models.provider import Provider, ProviderCreate, ProviderKind, ProviderSummary

__all__ = [
    # Messages
    "Message",
    "MessageMetadata",
    "ChatRole",
    "Part",
    "TextPart",
    "FilePart",
    "ToolCallPart",
    "ToolResultPart",
    "DataPart",
    # Sessions and chats
    "ChatStatus",
    "BUSY_STATUSES",
    "PersistedChat",
    "Visibility",
    "ChatRequest",
    # Frames
    "StreamFrame",
    "TextDeltaFrame",
    "FinishFrame",
    "ErrorFrame",
    "AppendMessageFrame",
    # Providers
    "Provider",
    "ProviderCreate",
    "ProviderKind",
    "ProviderSummary",
]
