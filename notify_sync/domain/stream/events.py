"""Stream event contracts: raw SSE frames and typed payloads per event kind."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Dict, Optional, Type, Union

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def _assume_utc(value: datetime) -> datetime:
    # Backend serializes LocalDateTime without an offset; its clock is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_assume_utc)]


class EventPayload(BaseModel):
    """Base for stream payloads: camelCase on the wire, immutable once parsed."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ConnectionAck(EventPayload):
    """Initial handshake sent by the server right after the stream opens."""
    user_id: Optional[int] = None
    timestamp: Optional[int] = None


class NotificationPayload(EventPayload):
    notification_id: int
    type: str
    title: str
    message: str
    link: Optional[str] = None
    created_at: UtcDatetime


class LessonStatusPayload(EventPayload):
    lesson_id: int
    old_status: Optional[str] = None
    new_status: str
    teacher_name: str = ""
    student_name: str = ""
    scheduled_at: Optional[str] = None


class AvailabilityPayload(EventPayload):
    availability_id: int
    teacher_id: int
    teacher_name: str
    day_info: Optional[str] = None
    time_range: Optional[str] = None


class TeacherJoinedPayload(EventPayload):
    lesson_id: int
    teacher_name: str


class HeartbeatPayload(EventPayload):
    timestamp: int


class ReplacedPayload(EventPayload):
    reason: str = "new_connection"


# Wire kinds (SSE "event:" names)
KIND_CONNECTED = "connected"
KIND_NOTIFICATION = "notification"
KIND_LESSON_STATUS = "lesson_status"
KIND_LESSON_BOOKED = "lesson_booked"
KIND_AVAILABILITY = "availability"
KIND_TEACHER_JOINED = "teacher_joined"
KIND_HEARTBEAT = "heartbeat"
KIND_REPLACED = "replaced"

PAYLOAD_TYPES: Dict[str, Type[EventPayload]] = {
    KIND_CONNECTED: ConnectionAck,
    KIND_NOTIFICATION: NotificationPayload,
    KIND_LESSON_STATUS: LessonStatusPayload,
    KIND_LESSON_BOOKED: LessonStatusPayload,
    KIND_AVAILABILITY: AvailabilityPayload,
    KIND_TEACHER_JOINED: TeacherJoinedPayload,
    KIND_HEARTBEAT: HeartbeatPayload,
    KIND_REPLACED: ReplacedPayload,
}

AnyPayload = Union[
    ConnectionAck,
    NotificationPayload,
    LessonStatusPayload,
    AvailabilityPayload,
    TeacherJoinedPayload,
    HeartbeatPayload,
    ReplacedPayload,
]


@dataclass(frozen=True)
class RawFrame:
    """One SSE frame as read off the wire, before parsing."""
    kind: str
    data: str
    event_id: Optional[str] = None


@dataclass(frozen=True)
class StreamEvent:
    """A parsed frame: the kind discriminator plus its typed payload."""
    kind: str
    payload: AnyPayload
    event_id: Optional[str] = None
