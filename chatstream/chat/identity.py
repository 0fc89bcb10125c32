"""Caller identity as seen by the server."""

from dataclasses import dataclass
from enum import Enum


class UserType(str, Enum):
    GUEST = "guest"
    REGULAR = "regular"


@dataclass(frozen=True)
class UserIdentity:
    """An authenticated caller. How it was authenticated is not our concern."""

    id: str
    type: UserType = UserType.REGULAR
