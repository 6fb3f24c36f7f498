"""Event stream lifecycle: open, retry with backoff, suspend in background, close."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from notify_sync.domain.common.errors import StreamClosedError
from notify_sync.domain.common.observable import Observable, Signal
from notify_sync.domain.common.types import Role
from notify_sync.domain.stream.backoff import BackoffPolicy
from notify_sync.domain.stream.events import KIND_HEARTBEAT, KIND_REPLACED, StreamEvent
from notify_sync.domain.stream.state import RETRY_RESET, ConnectionState, RetryState
from notify_sync.infra.realtime.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from notify_sync.infra.realtime.sse_transport import StreamTransport
from notify_sync.infra.realtime.visibility import ManualVisibility, VisibilityProvider
from notify_sync.services.event_dispatcher import EventDispatcher
from notify_sync.services.visibility_policy import HIDDEN_GRACE_S, VisibilityPolicy

logger = logging.getLogger(__name__)

_LIVE_STATES = (ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.RECONNECTING)


class ConnectionManager:
    """Owns ConnectionState and RetryState; everyone else only observes them.

    One consumer task per connection attempt reads frames and hands them to the
    dispatcher. Every attempt gets a generation number; a task whose generation
    is no longer current is stale and its outcome is ignored, so a late error
    from a closed attempt can never schedule a second, competing reconnect.
    """

    def __init__(
        self,
        transport: StreamTransport,
        dispatcher: EventDispatcher,
        *,
        scheduler: Optional[Scheduler] = None,
        visibility: Optional[VisibilityProvider] = None,
        backoff: Optional[BackoffPolicy] = None,
        hidden_grace_s: float = HIDDEN_GRACE_S,
    ):
        self._transport = transport
        self._dispatcher = dispatcher
        self._scheduler = scheduler or AsyncioScheduler()
        self._backoff = backoff or BackoffPolicy()

        self.state: Observable[ConnectionState] = Observable(ConnectionState.DISCONNECTED)
        self.retry: Observable[RetryState] = Observable(RETRY_RESET)
        self.connectivity_restored = Signal("connectivity_restored")
        self.gave_up_signal = Signal("gave_up")

        self.role: Optional[Role] = None
        self._last_role: Optional[Role] = None
        self.gave_up = False
        self.last_heartbeat_at: Optional[float] = None
        self.open_count = 0

        self._intentional = True
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._retry_timer: Optional[TimerHandle] = None

        self._policy = VisibilityPolicy(
            visibility or ManualVisibility(),
            self._scheduler,
            is_stream_active=lambda: self.state.value in _LIVE_STATES,
            on_grace_expired=self._suspend_for_background,
            on_foreground=self._on_foreground,
            grace_s=hidden_grace_s,
        )

        dispatcher.register(KIND_HEARTBEAT, self._on_heartbeat)
        dispatcher.register(KIND_REPLACED, self._on_replaced)

    # ------------------------------------------------------------------
    # Observed state
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self.state.value == ConnectionState.CONNECTED

    @property
    def connecting(self) -> bool:
        return self.state.value == ConnectionState.CONNECTING

    @property
    def visibility(self) -> VisibilityPolicy:
        return self._policy

    @property
    def retry_pending(self) -> bool:
        return self._retry_timer is not None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def connect(self, role: Role) -> None:
        """Open the stream for ``role``. No-op while already connecting or connected.

        Also the manual "reconnect" affordance: the retry counter starts from zero.
        """
        if self.state.value in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug("[STREAM] Already connected or connecting")
            return
        self.role = role
        self._last_role = role
        self._intentional = False
        self.gave_up = False
        self._policy.attach()
        self._cancel_retry_timer()
        self.retry.set(RETRY_RESET)
        self._start_attempt()

    def reconnect(self) -> None:
        """Manual reconnect after a give-up, reusing the last role."""
        if self._last_role is None:
            logger.warning("[STREAM] Reconnect requested but no role was ever connected")
            return
        self.connect(self._last_role)

    def disconnect(self) -> None:
        """Intentional close: no auto-retry and no resume on foreground. Idempotent."""
        if not self._intentional or self.state.value != ConnectionState.DISCONNECTED:
            logger.info("[STREAM] Disconnecting...")
        self._intentional = True
        self._cancel_retry_timer()
        self._close_stream()
        self._policy.detach()
        self.role = None
        self.state.set(ConnectionState.DISCONNECTED)

    async def aclose(self) -> None:
        """Disconnect and wait for the consumer task to unwind."""
        task = self._task
        self.disconnect()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def _start_attempt(self) -> None:
        self._cancel_retry_timer()
        if self._policy.is_hidden:
            logger.info("[STREAM] Skipping connect - client is in the background")
            self._close_stream()
            self._policy.mark_deferred()
            self.state.set(ConnectionState.SUSPENDED)
            return
        self._close_stream()
        self._generation += 1
        generation = self._generation
        self.open_count += 1
        self.state.set(ConnectionState.CONNECTING)
        logger.info("[STREAM] Connecting to stream (attempt %d)...", self.retry.value.attempt_count + 1)
        self._task = asyncio.get_running_loop().create_task(
            self._consume(generation), name=f"notify-sync-stream-{generation}"
        )

    async def _consume(self, generation: int) -> None:
        try:
            async with self._transport.open() as frames:
                if generation != self._generation:
                    return
                self._on_opened()
                # Listeners of the CONNECTED transition may have closed this attempt.
                if generation != self._generation:
                    return
                async for frame in frames:
                    if generation != self._generation:
                        return
                    self._dispatcher.dispatch(frame)
                    # A handler (e.g. "replaced") may have closed this attempt.
                    if generation != self._generation:
                        return
            error: Exception = StreamClosedError()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        if generation == self._generation:
            self._on_stream_error(error)

    def _on_opened(self) -> None:
        logger.info("[STREAM] Connection opened")
        self.retry.set(RETRY_RESET)
        self.state.set(ConnectionState.CONNECTED)
        self.connectivity_restored.emit()

    def _on_stream_error(self, error: Exception) -> None:
        logger.warning("[STREAM] Connection error: %s", error)
        self._task = None
        self._generation += 1
        if self._intentional:
            self.state.set(ConnectionState.DISCONNECTED)
            return

        failures = self.retry.value.attempt_count + 1
        if self._backoff.exhausted(failures):
            self.retry.set(RetryState(attempt_count=failures, last_delay_ms=self.retry.value.last_delay_ms))
            self.gave_up = True
            self.state.set(ConnectionState.DISCONNECTED)
            logger.warning("[STREAM] Max reconnect attempts reached (%d). Giving up.", failures)
            self.gave_up_signal.emit()
            return

        if self._policy.is_hidden:
            logger.info("[STREAM] In background, deferring reconnect")
            self.retry.set(RetryState(attempt_count=failures, last_delay_ms=self.retry.value.last_delay_ms))
            self._policy.mark_deferred()
            self.state.set(ConnectionState.SUSPENDED)
            return

        delay_ms = self._backoff.delay_ms_for(failures - 1)
        self.retry.set(self.retry.value.next(delay_ms))
        self.state.set(ConnectionState.RECONNECTING)
        logger.info(
            "[STREAM] Scheduling reconnect attempt %d/%d in %dms",
            failures,
            self._backoff.max_attempts,
            delay_ms,
        )
        self._retry_timer = self._scheduler.call_later(delay_ms / 1000.0, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self._retry_timer = None
        if self._intentional:
            return
        self._start_attempt()

    def _cancel_retry_timer(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _close_stream(self) -> None:
        task, self._task = self._task, None
        self._generation += 1
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def _suspend_for_background(self) -> None:
        if self._intentional or self.state.value not in _LIVE_STATES:
            return
        self._cancel_retry_timer()
        self._close_stream()
        self._policy.mark_deferred()
        self.state.set(ConnectionState.SUSPENDED)

    def _on_foreground(self, resume: bool) -> None:
        if not resume or self._intentional:
            return
        if self.state.value != ConnectionState.SUSPENDED:
            return
        logger.info("[STREAM] Foreground again, reconnecting")
        self.retry.set(RETRY_RESET)
        self._start_attempt()

    # ------------------------------------------------------------------
    # Protocol frames
    # ------------------------------------------------------------------

    def _on_heartbeat(self, event: StreamEvent) -> None:
        self.last_heartbeat_at = self._scheduler.now()

    def _on_replaced(self, event: StreamEvent) -> None:
        # Another session of this user took our slot; reconnecting would evict it in turn.
        logger.info("[STREAM] Stream replaced by server (%s); not reconnecting", event.payload.reason)
        self.disconnect()
