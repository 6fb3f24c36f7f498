"""Background/foreground policy for the event stream."""
import logging
from typing import Callable, Optional

from notify_sync.infra.realtime.scheduler import Scheduler, TimerHandle
from notify_sync.infra.realtime.visibility import VisibilityProvider

logger = logging.getLogger(__name__)

HIDDEN_GRACE_S = 30.0


class VisibilityPolicy:
    """Drops the stream after a grace period in the background and resumes it on return.

    The policy only decides; the connection manager acts through the callbacks:
    ``on_grace_expired()`` when the client stayed hidden past the grace period,
    and ``on_foreground(resume)`` on every return to the foreground, where
    ``resume`` tells whether a connection was live (or deferred) before hiding.
    """

    def __init__(
        self,
        provider: VisibilityProvider,
        scheduler: Scheduler,
        *,
        is_stream_active: Callable[[], bool],
        on_grace_expired: Callable[[], None],
        on_foreground: Callable[[bool], None],
        grace_s: float = HIDDEN_GRACE_S,
    ):
        self._provider = provider
        self._scheduler = scheduler
        self._is_stream_active = is_stream_active
        self._on_grace_expired = on_grace_expired
        self._on_foreground = on_foreground
        self.grace_s = grace_s
        self._grace_timer: Optional[TimerHandle] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.was_connected_before_hidden = False

    @property
    def is_hidden(self) -> bool:
        return self._provider.is_hidden()

    @property
    def grace_pending(self) -> bool:
        return self._grace_timer is not None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._provider.subscribe(self._on_visibility_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.reset()

    def reset(self) -> None:
        self._cancel_grace_timer()
        self.was_connected_before_hidden = False

    def mark_deferred(self) -> None:
        """A connection attempt was skipped while hidden; resume it on foreground."""
        self.was_connected_before_hidden = True

    def _cancel_grace_timer(self) -> None:
        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None

    def _on_visibility_change(self, hidden: bool) -> None:
        if hidden:
            if self._is_stream_active():
                self.was_connected_before_hidden = True
                self._cancel_grace_timer()
                self._grace_timer = self._scheduler.call_later(self.grace_s, self._grace_expired)
                logger.debug("[STREAM] Hidden; closing stream in %.0fs unless foregrounded", self.grace_s)
            return
        self._cancel_grace_timer()
        resume = self.was_connected_before_hidden
        self.was_connected_before_hidden = False
        self._on_foreground(resume)

    def _grace_expired(self) -> None:
        self._grace_timer = None
        if not self._provider.is_hidden():
            return
        logger.info("[STREAM] Hidden for too long, closing stream")
        self._on_grace_expired()
