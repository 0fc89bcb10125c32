"""Small shared helpers."""

import uuid
from datetime import datetime, timezone


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
