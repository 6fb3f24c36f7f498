"""Interval polling with snapshot diffing, for collections the stream does not push."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from notify_sync.domain.common.errors import NotifySyncError
from notify_sync.domain.polling.diff import EntityId, EntityRecord, EntitySnapshot, SnapshotDiff, diff_snapshots

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 8.0

ChangeCallback = Callable[[SnapshotDiff], None]


def _record_id(record: Mapping[str, Any]) -> EntityId:
    return record["id"]


def _identity(record: Mapping[str, Any]) -> EntityRecord:
    return dict(record)


@dataclass
class WatchedCollection:
    """One polled collection.

    ``fetch`` returns the raw records, ``key`` extracts the entity id and
    ``project`` reduces a record to the fields worth keeping in a snapshot.
    ``reset`` (optional) drops any per-run cache when polling stops.
    """

    name: str
    fetch: Callable[[], Awaitable[Sequence[Mapping[str, Any]]]]
    key: Callable[[Mapping[str, Any]], EntityId] = _record_id
    project: Callable[[Mapping[str, Any]], EntityRecord] = _identity
    tracked_fields: Tuple[str, ...] = ("status",)
    reset: Optional[Callable[[], None]] = None


class ChangeDetectionPoller:
    """Polls each watched collection every ``interval_s`` and reports diffs.

    The first successful fetch of a collection after ``start()`` only records
    its baseline. Later cycles report new and changed entries, then replace the
    snapshot whether or not a callback raised. A failed fetch leaves the
    previous snapshot in place for the next cycle.
    """

    def __init__(
        self,
        watches: Sequence[WatchedCollection],
        interval_s: float = POLL_INTERVAL_S,
        on_changes: Optional[Sequence[ChangeCallback]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.watches = list(watches)
        self.interval_s = interval_s
        self._callbacks: List[ChangeCallback] = list(on_changes or ())
        self._sleep = sleep
        self._snapshots: Dict[str, EntitySnapshot] = {}
        self._task: Optional[asyncio.Task] = None
        self.cycle_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def has_baseline(self, name: str) -> bool:
        return name in self._snapshots

    def snapshot(self, name: str) -> EntitySnapshot:
        return dict(self._snapshots.get(name, {}))

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def start(self) -> None:
        """Begin polling on the running loop. No-op if already running."""
        if self.running:
            return
        logger.info("[POLL] Starting polling every %.0fs for %s", self.interval_s, [w.name for w in self.watches])
        self._task = asyncio.get_running_loop().create_task(self._run(), name="notify-sync-poller")

    def stop(self) -> None:
        """Cancel the loop and forget every snapshot; the next start() re-baselines."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            logger.info("[POLL] Stopping polling")
            task.cancel()
        self._snapshots.clear()
        for watch in self.watches:
            if watch.reset is not None:
                watch.reset()

    async def aclose(self) -> None:
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("[POLL] Polling cycle %d failed", self.cycle_count)
            await self._sleep(self.interval_s)

    async def poll_once(self) -> List[SnapshotDiff]:
        """Run one cycle over every collection; returns the non-empty diffs reported."""
        self.cycle_count += 1
        reported = []
        for watch in self.watches:
            diff = await self._poll_collection(watch)
            if diff is not None and not diff.is_empty:
                reported.append(diff)
        return reported

    async def _poll_collection(self, watch: WatchedCollection) -> Optional[SnapshotDiff]:
        try:
            records = await watch.fetch()
        except NotifySyncError as e:
            logger.warning("[POLL] Fetching %s failed, keeping previous snapshot: %s", watch.name, e)
            return None

        current: EntitySnapshot = {}
        for record in records:
            try:
                current[watch.key(record)] = watch.project(record)
            except Exception as e:
                logger.warning("[POLL] Skipping unusable %s record %r: %s", watch.name, record, e)

        previous = self._snapshots.get(watch.name)
        self._snapshots[watch.name] = current
        if previous is None:
            logger.info("[POLL] Baseline for %s: %d entries", watch.name, len(current))
            return None

        diff = diff_snapshots(watch.name, previous, current, watch.tracked_fields)
        if diff.is_empty:
            return diff
        logger.info(
            "[POLL] %s: %d new, %d changed",
            watch.name,
            len(diff.new_entries),
            len(diff.changed_entries),
        )
        for callback in list(self._callbacks):
            try:
                callback(diff)
            except Exception:
                logger.exception("[POLL] Change callback %r failed for %s", callback, watch.name)
        return diff
