"""Per-user notification log: deduplicated, capped, persisted, reconciled with the backend."""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Set

from pydantic import TypeAdapter, ValidationError

from notify_sync.domain.common.errors import NotifySyncError, StorageError
from notify_sync.domain.common.observable import Observable
from notify_sync.domain.common.types import UserId, remote_notification_id
from notify_sync.domain.notifications.models import (
    MAX_NOTIFICATIONS,
    Notification,
    NotificationCategory,
    NotificationFeed,
    UnreadNotification,
)
from notify_sync.domain.stream.events import NotificationPayload
from notify_sync.infra.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

_log_adapter = TypeAdapter(List[Notification])


class NotificationBackend(Protocol):
    """The REST calls the store needs (see infra.vendors.notifications_api)."""

    async def list_unread(self) -> List[UnreadNotification]:
        ...

    async def mark_read(self, notification_id: int) -> None:
        ...

    async def mark_all_read(self) -> None:
        ...


class NotificationStore:
    """Owns the NotificationLog for exactly one user at a time.

    The log holds pending items only: reading a notification deletes it.
    Backend and storage failures are logged and absorbed; the in-memory log
    stays authoritative for the session. Observers of ``feed`` get an
    immutable snapshot after each mutation completes.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        backend: NotificationBackend,
        *,
        max_notifications: int = MAX_NOTIFICATIONS,
        key_prefix: str = "notifications",
    ):
        self._storage = storage
        self._backend = backend
        self.max_notifications = max_notifications
        self.key_prefix = key_prefix
        self._items: List[Notification] = []
        self._known_ids: Set[str] = set()
        self._user_id: Optional[UserId] = None
        self.feed: Observable[NotificationFeed] = Observable(NotificationFeed())

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def active_user_id(self) -> Optional[UserId]:
        return self._user_id

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return tuple(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def get(self, notification_id: str) -> Optional[Notification]:
        for item in self._items:
            if item.id == notification_id:
                return item
        return None

    def is_known(self, notification_id: str) -> bool:
        return notification_id in self._known_ids

    def storage_key(self, user_id: UserId) -> str:
        return f"{self.key_prefix}:{user_id}"

    # ------------------------------------------------------------------
    # User scoping
    # ------------------------------------------------------------------

    async def initialize_for_user(self, user_id: UserId) -> None:
        """Load ``user_id``'s log and reconcile it. Re-entry for the active user is a no-op."""
        if self._user_id == user_id:
            logger.debug("[STORE] Already initialized for user %s", user_id)
            return
        self._reset_memory()
        self._user_id = user_id
        self._items = self._load(user_id)
        self._known_ids = {n.id for n in self._items if n.origin == "remote"}
        logger.info("[STORE] Loaded %d notifications for user %s", len(self._items), user_id)
        self._publish()
        await self.reconcile()

    def clear_on_logout(self) -> None:
        """Forget the active user in memory; persisted logs of every user stay on disk."""
        logger.info("[STORE] Clearing notifications for user %s", self._user_id)
        self._reset_memory()
        self._user_id = None
        self._publish()

    def _reset_memory(self) -> None:
        self._items = []
        self._known_ids = set()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def add_from_remote(self, payload: NotificationPayload) -> Optional[Notification]:
        """Insert a backend notification once, whichever transport delivers it first."""
        if self._user_id is None:
            logger.debug("[STORE] No active user; dropping notification %s", payload.notification_id)
            return None
        notification_id = remote_notification_id(payload.notification_id)
        if notification_id in self._known_ids:
            logger.debug("[STORE] Duplicate notification %s ignored", notification_id)
            return None
        notification = Notification.from_remote(payload)
        self._known_ids.add(notification_id)
        self._prepend(notification)
        return notification

    def add_local(
        self,
        category: NotificationCategory,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> Optional[Notification]:
        """Record a locally produced alert (lesson confirmed, teacher joined, ...)."""
        if self._user_id is None:
            return None
        notification = Notification.create_local(category, title, message, link)
        self._prepend(notification)
        return notification

    def _prepend(self, notification: Notification) -> None:
        self._items.insert(0, notification)
        del self._items[self.max_notifications:]
        self._save()
        self._publish()

    async def reconcile(self) -> int:
        """Fetch the backend's unread set and ingest what the stream missed. Returns entries added."""
        user_id = self._user_id
        if user_id is None:
            return 0
        try:
            unread = await self._backend.list_unread()
        except NotifySyncError as e:
            logger.info("[STORE] Reconciliation fetch failed (will retry on next reconnect): %s", e)
            return 0
        if self._user_id != user_id:
            logger.debug("[STORE] User changed during reconciliation; discarding result")
            return 0
        added = 0
        # Oldest first, so the newest ends up at the head of the log.
        for item in sorted(unread, key=lambda n: n.created_at):
            if item.is_read:
                continue
            if self.add_from_remote(item.to_payload()) is not None:
                added += 1
        if added:
            logger.info("[STORE] Reconciliation added %d notifications", added)
        return added

    # ------------------------------------------------------------------
    # Read marking
    # ------------------------------------------------------------------

    async def mark_read(self, notification_id: str) -> None:
        """Remove the entry locally, then tell the backend (best effort)."""
        notification = self.get(notification_id)
        if notification is None:
            return
        self._items = [n for n in self._items if n.id != notification_id]
        self._save()
        self._publish()
        if notification.origin != "remote" or notification.source_id is None:
            return
        try:
            await self._backend.mark_read(notification.source_id)
        except NotifySyncError as e:
            logger.warning("[STORE] Failed to mark notification %s read on server: %s", notification.source_id, e)

    async def mark_all_read(self) -> None:
        if self._user_id is None:
            return
        self._items = []
        self._save()
        self._publish()
        try:
            await self._backend.mark_all_read()
        except NotifySyncError as e:
            logger.warning("[STORE] Failed to mark all notifications read on server: %s", e)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self, user_id: UserId) -> List[Notification]:
        key = self.storage_key(user_id)
        try:
            raw = self._storage.get(key)
        except StorageError as e:
            logger.error("[STORE] Error loading notifications from storage: %s", e)
            return []
        if not raw:
            return []
        try:
            items = _log_adapter.validate_json(raw)
        except ValidationError as e:
            logger.error("[STORE] Discarding unreadable notification log %s: %s", key, e)
            return []
        unique: List[Notification] = []
        seen: Set[str] = set()
        for item in items:
            if item.id not in seen:
                seen.add(item.id)
                unique.append(item)
        return unique[: self.max_notifications]

    def _save(self) -> None:
        if self._user_id is None:
            return
        key = self.storage_key(self._user_id)
        try:
            self._storage.set(key, _log_adapter.dump_json(self._items).decode("utf-8"))
        except (StorageError, ValueError) as e:
            logger.error("[STORE] Error saving notifications to storage: %s", e)

    def _publish(self) -> None:
        self.feed.set(NotificationFeed(items=tuple(self._items)))
