"""Notification log domain models."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from notify_sync.domain.common.types import generate_local_id, remote_notification_id, utcnow
from notify_sync.domain.stream.events import EventPayload, NotificationPayload, UtcDatetime

MAX_NOTIFICATIONS = 50

Origin = Literal["remote", "local"]


class NotificationCategory(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# Backend notification type -> category. Anything else is INFO.
_TYPE_CATEGORIES = {
    "REFUND": NotificationCategory.SUCCESS,
    "LESSON_CONFIRMED": NotificationCategory.SUCCESS,
    "LESSON_CANCELLED": NotificationCategory.WARNING,
    "NEW_BOOKING": NotificationCategory.INFO,
    "PENDING_VALIDATION": NotificationCategory.WARNING,
}


def category_for_type(backend_type: str) -> NotificationCategory:
    """Map a backend notification type (any case) to a display category."""
    return _TYPE_CATEGORIES.get((backend_type or "").upper(), NotificationCategory.INFO)


class Notification(BaseModel):
    """One entry in a user's notification log."""

    model_config = ConfigDict(frozen=True)

    id: str
    source_id: Optional[int] = None
    category: NotificationCategory = NotificationCategory.INFO
    title: str
    message: str
    link: Optional[str] = None
    created_at: UtcDatetime
    read: bool = False
    origin: Origin = "local"

    @classmethod
    def from_remote(cls, payload: NotificationPayload) -> "Notification":
        """Build a remote entry; the id is derived from the backend id so both transports agree."""
        return cls(
            id=remote_notification_id(payload.notification_id),
            source_id=payload.notification_id,
            category=category_for_type(payload.type),
            title=payload.title,
            message=payload.message,
            link=payload.link,
            created_at=payload.created_at,
            read=False,
            origin="remote",
        )

    @classmethod
    def create_local(
        cls,
        category: NotificationCategory,
        title: str,
        message: str,
        link: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> "Notification":
        return cls(
            id=generate_local_id(),
            category=category,
            title=title,
            message=message,
            link=link,
            created_at=created_at or utcnow(),
            origin="local",
        )


class UnreadNotification(EventPayload):
    """Item of the REST unread list: {id, type, title, message, link, isRead, createdAt}."""

    id: int
    type: str
    title: str
    message: str
    link: Optional[str] = None
    is_read: bool = False
    created_at: UtcDatetime

    def to_payload(self) -> NotificationPayload:
        """Same shape as a stream ``notification`` frame, so ingestion has one path."""
        return NotificationPayload(
            notification_id=self.id,
            type=self.type,
            title=self.title,
            message=self.message,
            link=self.link,
            created_at=self.created_at,
        )


class NotificationFeed(BaseModel):
    """Read-only snapshot handed to observers."""

    model_config = ConfigDict(frozen=True)

    items: tuple[Notification, ...] = Field(default_factory=tuple)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.items if not n.read)
