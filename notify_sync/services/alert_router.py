"""Turn lesson and notification events into user-facing alerts."""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from notify_sync.domain.common.types import Role
from notify_sync.domain.notifications.models import Notification, NotificationCategory

logger = logging.getLogger(__name__)

DISPLAY_MS = 8000
ERROR_DISPLAY_MS = 10000
TEACHER_JOINED_DISPLAY_MS = 15000

LESSONS_LINK = "/lessons"


@dataclass(frozen=True)
class Alert:
    category: NotificationCategory
    title: str
    message: str
    link: Optional[str] = None
    display_ms: int = DISPLAY_MS


AlertCallback = Callable[[Alert], None]


class AlertRouter:
    """Single place where events become alerts, whichever transport saw them.

    Local alerts are also recorded in the notification store. Backend
    notifications are already in the store by the time they get here, so
    they only reach the callbacks.
    """

    def __init__(self, store=None, role: Optional[Role] = None):
        self.store = store
        self.role = role
        self._callbacks: List[AlertCallback] = []

    def subscribe(self, callback: AlertCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def _emit(self, alert: Alert, record: bool = True) -> Alert:
        if record and self.store is not None:
            self.store.add_local(alert.category, alert.title, alert.message, alert.link)
        for callback in list(self._callbacks):
            try:
                callback(alert)
            except Exception:
                logger.exception("[ALERT] Callback %r failed", callback)
        return alert

    def lesson_status_changed(
        self,
        new_status: str,
        teacher_name: str = "",
        student_name: str = "",
        role: Optional[Role] = None,
    ) -> Optional[Alert]:
        role = role or self.role
        status = (new_status or "").upper()
        if role == "student":
            if status == "CONFIRMED":
                return self._emit(Alert(
                    NotificationCategory.SUCCESS,
                    "Lesson confirmed",
                    f"{teacher_name} confirmed your lesson",
                    LESSONS_LINK,
                ))
            if status == "CANCELLED":
                return self._emit(Alert(
                    NotificationCategory.ERROR,
                    "Lesson cancelled",
                    f"{teacher_name} cancelled your lesson",
                    LESSONS_LINK,
                    ERROR_DISPLAY_MS,
                ))
        elif role == "teacher" and status == "CANCELLED":
            return self._emit(Alert(
                NotificationCategory.ERROR,
                "Lesson cancelled",
                f"{student_name} cancelled their lesson",
                LESSONS_LINK,
                ERROR_DISPLAY_MS,
            ))
        logger.debug("[ALERT] No alert for %s -> %s", role, status)
        return None

    def lesson_booked(self, student_name: str) -> Alert:
        return self._emit(Alert(
            NotificationCategory.INFO,
            "New booking",
            f"New booking from {student_name}",
            LESSONS_LINK,
        ))

    def availability_added(self, teacher_id: int, teacher_name: str) -> Alert:
        return self._emit(Alert(
            NotificationCategory.INFO,
            "New availability",
            f"{teacher_name} just added an availability",
            f"/book/{teacher_id}",
        ))

    def teacher_joined(self, lesson_id: int, teacher_name: str) -> Alert:
        return self._emit(Alert(
            NotificationCategory.SUCCESS,
            "Video call",
            f"{teacher_name} is waiting for you in the video call",
            f"/lessons?openCall={lesson_id}",
            TEACHER_JOINED_DISPLAY_MS,
        ))

    def backend_notification(self, notification: Notification) -> Alert:
        display_ms = ERROR_DISPLAY_MS if notification.category == NotificationCategory.ERROR else DISPLAY_MS
        return self._emit(
            Alert(notification.category, notification.title, notification.message, notification.link, display_ms),
            record=False,
        )
