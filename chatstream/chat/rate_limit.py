"""Per-user message rate limiting over a rolling 24 hour window."""

import logging
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from chatstream.chat.identity import UserIdentity, UserType
from chatstream.errors import ChatError
from chatstream.models.chat import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlements:
    max_messages_per_day: int


ENTITLEMENTS_BY_USER_TYPE: dict[UserType, Entitlements] = {
    UserType.GUEST: Entitlements(max_messages_per_day=20),
    UserType.REGULAR: Entitlements(max_messages_per_day=100),
}


class MessageRateLimiter:
    """Rolling counter of accepted user messages.

    Each user keeps a deque of send timestamps; entries older than the window
    are dropped from the left as time advances, so checks cost only the
    number of expired entries.
    """

    def __init__(
        self,
        window: timedelta = timedelta(hours=24),
        entitlements: dict[UserType, Entitlements] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.window = window
        self.entitlements = entitlements or ENTITLEMENTS_BY_USER_TYPE
        self._clock = clock
        self._sent: dict[str, deque[datetime]] = defaultdict(deque)

    def count(self, user_id: str) -> int:
        """Messages sent by a user within the window."""
        sent = self._sent.get(user_id)
        if not sent:
            return 0
        cutoff = self._clock() - self.window
        while sent and sent[0] <= cutoff:
            sent.popleft()
        return len(sent)

    def check(self, user: UserIdentity) -> None:
        """Raise if the user already reached their daily entitlement.

        Raises:
            ChatError: ``rate_limit:chat``.
        """
        limit = self.entitlements[UserType(user.type)].max_messages_per_day
        if self.count(user.id) >= limit:
            logger.info(f"User {user.id} hit the daily limit of {limit} messages")
            raise ChatError("rate_limit:chat")

    def record(self, user_id: str) -> None:
        """Count one accepted message."""
        self._sent[user_id].append(self._clock())

    def reset(self) -> None:
        self._sent.clear()
