"""Chat API endpoints: turn streaming and resume."""

import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from chatstream.api.deps import get_current_user
from chatstream.chat.identity import UserIdentity
from chatstream.chat.resume import ResumeService, get_resume_service
from chatstream.chat.turn import TurnService, get_turn_service
from chatstream.errors import ChatError
from chatstream.models.chat import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _event_stream(body: AsyncIterator[bytes]) -> StreamingResponse:
    return StreamingResponse(
        body,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/chat")
async def create_chat_turn(
    request: Request,
    user: UserIdentity | None = Depends(get_current_user),
    turns: TurnService = Depends(get_turn_service),
) -> StreamingResponse:
    """Submit a user message and stream the assistant reply.

    Records sent to the client:
    data: {"type": "text-delta", "textDelta": "...", "messageId": "..."}
    data: {"type": "data-finish", "data": null}
    data: {"type": "data-error", "data": "..."}
    data: [DONE]
    """
    try:
        payload = await request.json()
    except ValueError as e:
        raise ChatError("bad_request:api", "Request body must be JSON.") from e

    try:
        chat_request = ChatRequest.model_validate(payload)
    except ValidationError as e:
        logger.info(f"Rejected chat request: {e.error_count()} validation error(s)")
        raise ChatError("bad_request:api") from e

    body = await turns.start_turn(chat_request, user)
    return _event_stream(body)


@router.get("/chat/{chat_id}/messages")
async def get_chat_messages(
    chat_id: str,
    user: UserIdentity | None = Depends(get_current_user),
    resumes: ResumeService = Depends(get_resume_service),
) -> list[dict[str, Any]]:
    """Persisted messages of a chat, oldest first."""
    await resumes.authorize(chat_id, user)
    messages = await resumes.persistence.load_messages(chat_id)
    return [m.to_wire() for m in messages]


@router.get("/chat/{chat_id}/stream")
async def resume_chat_stream(
    chat_id: str,
    user: UserIdentity | None = Depends(get_current_user),
    resumes: ResumeService = Depends(get_resume_service),
) -> Response:
    """Replay the latest assistant message if it was saved moments ago.

    Returns 204 when there is nothing to resume.
    """
    frames = await resumes.resume_frames(chat_id, user)
    if not frames:
        return Response(status_code=204)
    return _event_stream(resumes.stream(frames))
