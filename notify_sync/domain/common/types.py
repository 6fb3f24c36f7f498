"""Common domain types."""
from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

UserId = int
Role = Literal["student", "teacher"]


def generate_local_id() -> str:
    """Generate an id for a locally produced notification."""
    return f"local-{uuid4().hex}"


def remote_notification_id(source_id: int) -> str:
    """Deterministic log id for a backend notification, shared by stream and REST paths."""
    return f"backend-{source_id}"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(tz=timezone.utc)
