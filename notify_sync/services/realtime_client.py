"""Wires stream, store, poller and alerts together behind one auth gate."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import OrderedDict
from typing import Optional, Set

import httpx

from notify_sync.domain.common.types import Role, UserId
from notify_sync.domain.polling.diff import SnapshotDiff
from notify_sync.domain.stream.backoff import BackoffPolicy
from notify_sync.domain.stream.events import (
    KIND_AVAILABILITY,
    KIND_CONNECTED,
    KIND_LESSON_BOOKED,
    KIND_LESSON_STATUS,
    KIND_NOTIFICATION,
    KIND_TEACHER_JOINED,
    StreamEvent,
)
from notify_sync.domain.stream.state import ConnectionState
from notify_sync.infra.realtime.scheduler import Scheduler
from notify_sync.infra.realtime.sse_transport import SseStreamTransport, StreamTransport
from notify_sync.infra.realtime.visibility import VisibilityProvider
from notify_sync.infra.storage import KeyValueStore, build_store
from notify_sync.infra.vendors.notifications_api import NotificationsApi, build_http_client
from notify_sync.services.alert_router import AlertRouter
from notify_sync.services.change_poller import ChangeDetectionPoller, WatchedCollection
from notify_sync.services.connection_manager import ConnectionManager
from notify_sync.services.event_dispatcher import EventDispatcher
from notify_sync.services.notification_store import NotificationStore
from notify_sync.services.watches import AVAILABILITIES, LESSONS, availabilities_watch, last_name, lessons_watch
from notify_sync.settings import Settings, get_settings

logger = logging.getLogger(__name__)

POLL_ALWAYS = "always"
POLL_FALLBACK = "fallback"
POLL_OFF = "off"


class RealtimeClient:
    """Owns one user session's realtime machinery.

    ``set_auth`` is the only way in: it scopes the store to a user, opens the
    stream and starts polling according to ``poll_mode``. In fallback mode the
    poller runs only while the stream is retrying or has given up.
    """

    def __init__(
        self,
        *,
        store: NotificationStore,
        manager: ConnectionManager,
        dispatcher: EventDispatcher,
        poller: ChangeDetectionPoller,
        router: AlertRouter,
        lessons: WatchedCollection,
        availabilities: WatchedCollection,
        poll_mode: str = POLL_FALLBACK,
        http_client: Optional[httpx.AsyncClient] = None,
        storage: Optional[KeyValueStore] = None,
    ):
        self.store = store
        self.manager = manager
        self.dispatcher = dispatcher
        self.poller = poller
        self.router = router
        self.poll_mode = poll_mode
        self._lessons = lessons
        self._availabilities = availabilities
        self._http_client = http_client
        self._storage = storage
        self._role: Optional[Role] = None
        self._background: Set[asyncio.Task] = set()

        dispatcher.register(KIND_CONNECTED, self._on_connected)
        dispatcher.register(KIND_NOTIFICATION, self._on_notification)
        dispatcher.register(KIND_LESSON_STATUS, self._on_lesson_status)
        dispatcher.register(KIND_LESSON_BOOKED, self._on_lesson_booked)
        dispatcher.register(KIND_AVAILABILITY, self._on_availability)
        dispatcher.register(KIND_TEACHER_JOINED, self._on_teacher_joined)
        manager.connectivity_restored.connect(self._on_connectivity_restored)
        manager.state.subscribe(self._on_state_change)
        poller.subscribe(self._on_poll_diff)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        visibility: Optional[VisibilityProvider] = None,
        *,
        scheduler: Optional[Scheduler] = None,
        transport: Optional[StreamTransport] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        storage: Optional[KeyValueStore] = None,
    ) -> "RealtimeClient":
        """Build every component from settings; keyword overrides are for hosts and tests."""
        settings = settings or get_settings()
        http_client = build_http_client(
            settings.api_base_url,
            timeout_s=settings.request_timeout_s,
            session_cookie_name=settings.session_cookie_name,
            session_cookie=settings.session_cookie,
            transport=http_transport,
        )
        api = NotificationsApi(
            http_client,
            unread_path=settings.unread_path,
            mark_read_path=settings.mark_read_path,
            mark_all_read_path=settings.mark_all_read_path,
        )
        if storage is None:
            storage = build_store(settings.storage_backend, settings.storage_dir, settings.redis_url)
        store = NotificationStore(
            storage,
            api,
            max_notifications=settings.max_notifications,
            key_prefix=settings.storage_key_prefix,
        )
        dispatcher = EventDispatcher()
        manager = ConnectionManager(
            transport or SseStreamTransport(http_client, settings.stream_path, settings.stream_connect_timeout_s),
            dispatcher,
            scheduler=scheduler,
            visibility=visibility,
            backoff=BackoffPolicy(
                initial_delay_s=settings.initial_retry_delay_s,
                max_delay_s=settings.max_retry_delay_s,
                max_attempts=settings.max_retry_attempts,
            ),
            hidden_grace_s=settings.hidden_grace_s,
        )
        lessons = lessons_watch(api, settings.lessons_path)
        availabilities = availabilities_watch(api, settings.teachers_path, settings.teacher_availabilities_path)
        poller = ChangeDetectionPoller([], interval_s=settings.poll_interval_s)
        return cls(
            store=store,
            manager=manager,
            dispatcher=dispatcher,
            poller=poller,
            router=AlertRouter(store),
            lessons=lessons,
            availabilities=availabilities,
            poll_mode=settings.poll_mode,
            http_client=http_client,
            storage=storage,
        )

    # ------------------------------------------------------------------
    # Auth gate
    # ------------------------------------------------------------------

    @property
    def role(self) -> Optional[Role]:
        return self._role

    async def set_auth(self, user_id: Optional[UserId], role: Optional[Role] = None) -> None:
        """Log in ``user_id`` as ``role``, or log out with ``None``."""
        if user_id is None or role is None:
            self._logout()
            return
        active = self.store.active_user_id
        if active == user_id and self._role == role:
            return
        if active is not None:
            logger.info("[AUTH] Switching session %s/%s -> %s/%s", active, self._role, user_id, role)
            self._logout()

        self._role = role
        self.router.role = role
        await self.store.initialize_for_user(user_id)
        if self.store.active_user_id != user_id:
            # Logged out while the log was loading.
            return
        self.manager.connect(role)
        self._configure_polling(role)

    def _logout(self) -> None:
        if self._role is not None:
            logger.info("[AUTH] Logging out; closing stream and polling")
        self._role = None
        self.router.role = None
        self.manager.disconnect()
        self.poller.stop()
        self.store.clear_on_logout()

    async def aclose(self) -> None:
        # Let the stream and poll tasks unwind before the shared HTTP client closes.
        await self.manager.aclose()
        await self.poller.aclose()
        self._logout()
        for task in list(self._background):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        close = getattr(self._storage, "close", None)
        if close is not None:
            close()
        if self._http_client is not None:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _configure_polling(self, role: Role) -> None:
        watches = [self._lessons]
        if role == "student":
            watches.append(self._availabilities)
        self.poller.stop()
        self.poller.watches = watches
        if self.poll_mode == POLL_ALWAYS:
            self.poller.start()
        elif self.poll_mode == POLL_FALLBACK:
            self._on_state_change(self.manager.state.value)

    def _on_state_change(self, state: ConnectionState) -> None:
        if self.poll_mode != POLL_FALLBACK or self._role is None:
            return
        if state == ConnectionState.RECONNECTING or (
            state == ConnectionState.DISCONNECTED and self.manager.gave_up
        ):
            if not self.poller.running:
                logger.info("[POLL] Stream unavailable; falling back to polling")
                self.poller.start()
        elif state in (ConnectionState.CONNECTED, ConnectionState.SUSPENDED, ConnectionState.DISCONNECTED):
            self.poller.stop()

    def _on_poll_diff(self, diff: SnapshotDiff) -> None:
        if diff.collection == LESSONS:
            self._on_lessons_diff(diff)
        elif diff.collection == AVAILABILITIES:
            self._on_availabilities_diff(diff)

    def _on_lessons_diff(self, diff: SnapshotDiff) -> None:
        if self._role == "teacher":
            for lesson in diff.new_entries:
                self.router.lesson_booked(lesson.get("student_name", ""))
        for change in diff.changed_entries:
            lesson = change.current
            if change.changed("status"):
                self.router.lesson_status_changed(
                    lesson.get("status") or "",
                    teacher_name=lesson.get("teacher_name", ""),
                    student_name=lesson.get("student_name", ""),
                )
            if (
                self._role == "student"
                and change.changed("teacher_joined_at")
                and not change.previous.get("teacher_joined_at")
                and lesson.get("teacher_joined_at")
            ):
                self.router.teacher_joined(change.entity_id, lesson.get("teacher_name", ""))

    def _on_availabilities_diff(self, diff: SnapshotDiff) -> None:
        if self._role != "student":
            return
        # One alert per teacher, however many slots were added.
        by_teacher: "OrderedDict[str, int]" = OrderedDict()
        for availability in diff.new_entries:
            by_teacher.setdefault(availability["teacher_name"], availability["teacher_id"])
        for teacher_name, teacher_id in by_teacher.items():
            self.router.availability_added(teacher_id, teacher_name)

    # ------------------------------------------------------------------
    # Stream handlers
    # ------------------------------------------------------------------

    def _on_connectivity_restored(self) -> None:
        if self.store.active_user_id is None:
            return
        task = asyncio.get_running_loop().create_task(self.store.reconcile())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_connected(self, event: StreamEvent) -> None:
        logger.info("[STREAM] Server acknowledged connection for user %s", event.payload.user_id)

    def _on_notification(self, event: StreamEvent) -> None:
        notification = self.store.add_from_remote(event.payload)
        if notification is not None:
            self.router.backend_notification(notification)

    def _on_lesson_status(self, event: StreamEvent) -> None:
        payload = event.payload
        self.router.lesson_status_changed(
            payload.new_status,
            teacher_name=last_name(payload.teacher_name),
            student_name=payload.student_name,
        )

    def _on_lesson_booked(self, event: StreamEvent) -> None:
        self.router.lesson_booked(event.payload.student_name)

    def _on_availability(self, event: StreamEvent) -> None:
        self.router.availability_added(event.payload.teacher_id, event.payload.teacher_name)

    def _on_teacher_joined(self, event: StreamEvent) -> None:
        self.router.teacher_joined(event.payload.lesson_id, event.payload.teacher_name)
