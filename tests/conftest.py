"""Pytest configuration and shared fakes for the notify_sync tests."""
import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from notify_sync.domain.common.errors import StorageError
from notify_sync.domain.notifications.models import UnreadNotification
from notify_sync.domain.stream.events import RawFrame


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: marks tests that need a live backend (deselect with '-m \"not integration\"')"
    )


# --- Timers ---


class _ManualTimer:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when the test calls advance()."""

    def __init__(self) -> None:
        self._now = 0.0
        self._timers: List[_ManualTimer] = []

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(0.0, delay_s), callback)
        self._timers.append(timer)
        return timer

    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> List[_ManualTimer]:
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in due order."""
        target = self._now + seconds
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self._timers.remove(timer)
            self._now = timer.due
            timer.callback()
        self._now = target


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# --- Event stream ---

_CLOSE = object()


class FakeStream:
    """One scripted stream session: queued frames, then stays open until closed or failed."""

    def __init__(self, *frames: RawFrame):
        self._queue: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self._queue.put_nowait(frame)
        self.opened = False
        self.exited = False

    def push(self, frame: RawFrame) -> None:
        self._queue.put_nowait(frame)

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    def close(self) -> None:
        self._queue.put_nowait(_CLOSE)

    async def frames(self):
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            if isinstance(item, Exception):
                raise item
            yield item


class FakeStreamTransport:
    """Each open() consumes the next script: an exception (connect failure) or a FakeStream.

    When the script runs out, further opens get a fresh stream that stays open.
    """

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.open_calls = 0
        self.streams: List[FakeStream] = []

    @asynccontextmanager
    async def open(self):
        self.open_calls += 1
        script = self.scripts.pop(0) if self.scripts else FakeStream()
        if isinstance(script, Exception):
            raise script
        self.streams.append(script)
        script.opened = True
        try:
            yield script.frames()
        finally:
            script.exited = True

    @property
    def current(self) -> FakeStream:
        return self.streams[-1]


def frame(kind: str, event_id: Optional[str] = None, **data: Any) -> RawFrame:
    return RawFrame(kind=kind, data=json.dumps(data), event_id=event_id)


def notification_frame(notification_id: int, type: str = "NEW_BOOKING", **extra: Any) -> RawFrame:
    data = {
        "notificationId": notification_id,
        "type": type,
        "title": extra.pop("title", f"Notification {notification_id}"),
        "message": extra.pop("message", "Something happened"),
        "link": extra.pop("link", "/lessons"),
        "createdAt": extra.pop("createdAt", "2026-03-01T10:00:00"),
    }
    data.update(extra)
    return RawFrame(kind="notification", data=json.dumps(data))


# --- Backend ---


def unread(notification_id: int, minute: int = 0, type: str = "new_booking") -> UnreadNotification:
    return UnreadNotification(
        id=notification_id,
        type=type,
        title=f"Notification {notification_id}",
        message="Something happened",
        link="/lessons",
        created_at=datetime(2026, 3, 1, 10, minute, tzinfo=timezone.utc),
    )


class FakeApi:
    """In-memory stand-in for NotificationsApi."""

    def __init__(self, unread_items: Optional[List[UnreadNotification]] = None):
        self.unread_items = list(unread_items or [])
        self.unread_error: Optional[Exception] = None
        self.mark_read_error: Optional[Exception] = None
        self.before_unread_returns: Optional[Callable[[], None]] = None
        self.collections: Dict[str, Any] = {}
        self.list_unread_calls = 0
        self.marked_read: List[int] = []
        self.mark_all_read_calls = 0
        self.collection_calls: List[str] = []

    async def list_unread(self) -> List[UnreadNotification]:
        self.list_unread_calls += 1
        if self.unread_error is not None:
            raise self.unread_error
        if self.before_unread_returns is not None:
            self.before_unread_returns()
        return list(self.unread_items)

    async def mark_read(self, notification_id: int) -> None:
        if self.mark_read_error is not None:
            raise self.mark_read_error
        self.marked_read.append(notification_id)

    async def mark_all_read(self) -> None:
        self.mark_all_read_calls += 1

    async def get_collection(self, path: str) -> List[dict]:
        self.collection_calls.append(path)
        result = self.collections.get(path, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


class FailingStore:
    """Key-value store whose every call fails, like a full or read-only disk."""

    def get(self, key: str) -> Optional[str]:
        raise StorageError(key, "disk unavailable")

    def set(self, key: str, value: str) -> None:
        raise StorageError(key, "quota exceeded")

    def delete(self, key: str) -> None:
        raise StorageError(key, "disk unavailable")


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()
