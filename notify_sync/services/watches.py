"""Polled collections of the lessons backend: upcoming lessons and teacher availabilities."""
import logging
from typing import Any, Dict, List, Mapping, Optional

from notify_sync.infra.vendors.notifications_api import NotificationsApi
from notify_sync.services.change_poller import WatchedCollection

logger = logging.getLogger(__name__)

LESSONS = "lessons"
AVAILABILITIES = "availabilities"


def last_name(full_name: Any, default: str = "Coach") -> str:
    """'Magnus Carlsen' -> 'Carlsen'."""
    parts = str(full_name or "").split()
    return parts[-1] if parts else default


def project_lesson(record: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": record["id"],
        "status": record.get("status"),
        "teacher_name": last_name(record.get("teacherName")),
        "student_name": record.get("studentName") or "Player",
        "teacher_joined_at": record.get("teacherJoinedAt") or None,
    }


def lessons_watch(api: NotificationsApi, path: str = "/lessons/upcoming") -> WatchedCollection:
    async def _fetch() -> List[dict]:
        return await api.get_collection(path)

    return WatchedCollection(
        name=LESSONS,
        fetch=_fetch,
        project=project_lesson,
        tracked_fields=("status", "teacher_joined_at"),
    )


class AvailabilityFetcher:
    """Flattens per-teacher availability lists into one collection.

    The teacher list is fetched once per polling run and cached until reset.
    Any failing request fails the whole fetch, so a partial snapshot never
    reaches the diff and shows up as a burst of "new" entries later.
    """

    def __init__(
        self,
        api: NotificationsApi,
        teachers_path: str = "/teachers",
        availabilities_path: str = "/availabilities/teacher/{teacher_id}",
    ):
        self.api = api
        self.teachers_path = teachers_path
        self.availabilities_path = availabilities_path
        self._teachers: Optional[List[dict]] = None

    def reset(self) -> None:
        self._teachers = None

    async def teachers(self) -> List[dict]:
        if self._teachers is None:
            self._teachers = await self.api.get_collection(self.teachers_path)
            logger.info("[POLL] Found %d teachers", len(self._teachers))
        return self._teachers

    async def __call__(self) -> List[dict]:
        records = []
        for teacher in await self.teachers():
            teacher_id = teacher.get("id")
            if teacher_id is None:
                continue
            name = teacher.get("lastName") or last_name(teacher.get("name"))
            path = self.availabilities_path.format(teacher_id=teacher_id)
            for availability in await self.api.get_collection(path):
                if "id" not in availability:
                    continue
                records.append(
                    {"id": availability["id"], "teacher_id": teacher_id, "teacher_name": name}
                )
        return records


def availabilities_watch(
    api: NotificationsApi,
    teachers_path: str = "/teachers",
    availabilities_path: str = "/availabilities/teacher/{teacher_id}",
) -> WatchedCollection:
    fetcher = AvailabilityFetcher(api, teachers_path, availabilities_path)
    return WatchedCollection(
        name=AVAILABILITIES,
        fetch=fetcher,
        tracked_fields=(),
        reset=fetcher.reset,
    )
