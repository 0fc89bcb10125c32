"""Pydantic models for chat messages, persisted chats, turn requests and stream frames."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import AnyUrl, BaseModel, Field

MAX_TEXT_PART_LENGTH = 2000


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ChatRole(str, Enum):
    """Role of a chat message sender."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ChatStatus(str, Enum):
    """Status of a chat session.

    None of the states is terminal: ``error`` returns to ``submitted`` on the
    next send.
    """

    IDLE = "idle"
    SUBMITTED = "submitted"
    LOADING = "loading"
    STREAMING = "streaming"
    ERROR = "error"


BUSY_STATUSES = frozenset({ChatStatus.SUBMITTED, ChatStatus.LOADING, ChatStatus.STREAMING})


class Visibility(str, Enum):
    """Who can read a persisted chat."""

    PRIVATE = "private"
    PUBLIC = "public"


# ==================== Message parts ====================


class TextPart(BaseModel):
    """Text content. The only part type that is mutated in place."""

    type: Literal["text"] = "text"
    text: str = ""


class FilePart(BaseModel):
    """An attached file referenced by URL."""

    type: Literal["file"] = "file"
    url: str
    name: str
    media_type: str = Field(alias="mediaType")

    model_config = {"populate_by_name": True}


class ToolCallPart(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    tool_name: str = Field(alias="toolName")
    tool_call_id: str = Field(alias="toolCallId")
    args: Any = None

    model_config = {"populate_by_name": True}


class ToolResultPart(BaseModel):
    type: Literal["tool-result"] = "tool-result"
    tool_name: str = Field(alias="toolName")
    tool_call_id: str = Field(alias="toolCallId")
    result: Any = None
    is_error: bool = Field(default=False, alias="isError")

    model_config = {"populate_by_name": True}


class DataPart(BaseModel):
    """Custom data part, ``type`` is ``data-<kind>``."""

    type: str = Field(pattern=r"^data-.+")
    data: Any = None


Part = Annotated[
    TextPart | FilePart | ToolCallPart | ToolResultPart | DataPart,
    Field(union_mode="left_to_right"),
]


# ==================== Messages ====================


class MessageMetadata(BaseModel):
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    model_config = {"populate_by_name": True}


class Message(BaseModel):
    """A single message in a chat session."""

    id: str
    role: ChatRole
    parts: list[Part] = Field(default_factory=list)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)

    model_config = {"populate_by_name": True, "use_enum_values": True}

    @property
    def created_at(self) -> datetime:
        return self.metadata.created_at

    @property
    def text(self) -> str:
        """All text parts joined together."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class PersistedChat(BaseModel):
    """Chat metadata as kept by the durable store."""

    id: str
    user_id: str = Field(alias="userId")
    title: str
    visibility: Visibility = Visibility.PRIVATE
    last_context: dict[str, Any] | None = Field(default=None, alias="lastContext")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    model_config = {"populate_by_name": True, "use_enum_values": True}


# ==================== Turn request ====================


class RequestTextPart(BaseModel):
    type: Literal["text"]
    text: str = Field(min_length=1, max_length=MAX_TEXT_PART_LENGTH)


class RequestFilePart(BaseModel):
    type: Literal["file"]
    media_type: Literal["image/jpeg", "image/png"] = Field(alias="mediaType")
    name: str = Field(min_length=1, max_length=100)
    url: AnyUrl

    model_config = {"populate_by_name": True}


class RequestMessage(BaseModel):
    id: UUID
    role: Literal["user"]
    parts: list[Annotated[RequestTextPart | RequestFilePart, Field(discriminator="type")]]
    provider_id: str | None = Field(default=None, alias="providerId")

    model_config = {"populate_by_name": True}


class ChatRequest(BaseModel):
    """Body of a turn request (POST /api/chat)."""

    id: UUID
    message: RequestMessage
    selected_chat_model: str = Field(alias="selectedChatModel")
    selected_provider_id: str | None = Field(default=None, alias="selectedProviderId")
    selected_visibility_type: Visibility = Field(
        default=Visibility.PRIVATE, alias="selectedVisibilityType"
    )

    model_config = {"populate_by_name": True}

    @property
    def chat_id(self) -> str:
        return str(self.id)

    @property
    def provider_id(self) -> str | None:
        return self.selected_provider_id or self.message.provider_id

    def to_message(self) -> Message:
        """Convert the validated request message into a user Message."""
        parts: list[TextPart | FilePart] = []
        for part in self.message.parts:
            if isinstance(part, RequestTextPart):
                parts.append(TextPart(text=part.text))
            else:
                parts.append(FilePart(url=str(part.url), name=part.name, media_type=part.media_type))
        return Message(id=str(self.message.id), role=ChatRole.USER, parts=parts)


# ==================== Stream frames ====================


class TextDeltaFrame(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    text_delta: str = Field(alias="textDelta")
    message_id: str | None = Field(default=None, alias="messageId")

    model_config = {"populate_by_name": True}


class FinishFrame(BaseModel):
    type: Literal["data-finish"] = "data-finish"
    data: Any = None


class ErrorFrame(BaseModel):
    type: Literal["data-error"] = "data-error"
    data: str


class AppendMessageFrame(BaseModel):
    """Replay of a persisted message; ``data`` is the message serialized as JSON."""

    type: Literal["data-appendMessage"] = "data-appendMessage"
    data: str

    @classmethod
    def for_message(cls, message: Message) -> "AppendMessageFrame":
        return cls(data=message.to_json())

    def message(self) -> Message:
        return Message.model_validate_json(self.data)


StreamFrame = Annotated[
    TextDeltaFrame | FinishFrame | ErrorFrame | AppendMessageFrame,
    Field(discriminator="type"),
]
