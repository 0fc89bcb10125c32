"""Request dependencies shared by the routers."""

from fastapi import Header

from chatstream.chat.identity import UserIdentity, UserType
from chatstream.errors import ChatError


async def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_type: str | None = Header(default=None),
) -> UserIdentity | None:
    """Resolve the caller from the identity headers set upstream.

    Returns None for anonymous requests; routes decide whether that is allowed.
    """
    if not x_user_id:
        return None
    try:
        user_type = UserType(x_user_type) if x_user_type else UserType.REGULAR
    except ValueError as e:
        raise ChatError("bad_request:api", f"Unknown user type: {x_user_type}") from e
    return UserIdentity(id=x_user_id, type=user_type)


async def require_user(
    x_user_id: str | None = Header(default=None),
    x_user_type: str | None = Header(default=None),
) -> UserIdentity:
    """Like get_current_user but rejects anonymous requests."""
    user = await get_current_user(x_user_id, x_user_type)
    if user is None:
        raise ChatError("unauthorized:chat")
    return user
