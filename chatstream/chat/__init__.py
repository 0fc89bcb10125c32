"""Resumable streaming chat session engine.

- SessionController: per-chat state machine (send, stop, regenerate, resume)
- SseFrameDecoder: incremental event-stream decoder
- MessageAssembler: folds frames into the message list
- ResumeCoordinator / ResumeService: replay after reconnect
- TransportPort: in-process and HTTP strategies
- PersistenceBridge: write-behind access to the chat store
"""

from chatstream.chat.assembler import MessageAssembler
from chatstream.chat.frames import DONE_RECORD, SseFrameDecoder, encode_frame, parse_frame
from chatstream.chat.identity import UserIdentity, UserType
from chatstream.chat.manager import SessionManager, get_session_manager
from chatstream.chat.persistence import ChatStore, InMemoryChatStore, PersistenceBridge
from chatstream.chat.resume import RESUME_WINDOW_SECONDS, ResumeCoordinator, ResumeService
from chatstream.chat.session import SessionController
from chatstream.chat.transport import (
    HttpTransport,
    InProcessTransport,
    TransportPort,
    TransportRequest,
    TransportResponse,
)

__all__ = [
    "ChatStore",
    "DONE_RECORD",
    "HttpTransport",
    "InMemoryChatStore",
    "InProcessTransport",
    "MessageAssembler",
    "PersistenceBridge",
    "RESUME_WINDOW_SECONDS",
    "ResumeCoordinator",
    "ResumeService",
    "SessionController",
    "SessionManager",
    "SseFrameDecoder",
    "TransportPort",
    "TransportRequest",
    "TransportResponse",
    "UserIdentity",
    "UserType",
    "encode_frame",
    "get_session_manager",
    "parse_frame",
]
