"""Foreground/background signal of the host environment."""
import logging
from typing import Callable, List, Protocol

logger = logging.getLogger(__name__)

VisibilityListener = Callable[[bool], None]


class VisibilityProvider(Protocol):
    """Host visibility source. Listeners receive ``hidden`` (True when backgrounded)."""

    def is_hidden(self) -> bool:
        ...

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        ...


class ManualVisibility:
    """In-process visibility flag, driven by the host (app lifecycle hooks, tests).

    Headless hosts never call ``set_hidden`` and stay in the foreground.
    """

    def __init__(self, hidden: bool = False):
        self._hidden = hidden
        self._listeners: List[VisibilityListener] = []

    def is_hidden(self) -> bool:
        return self._hidden

    def set_hidden(self, hidden: bool) -> None:
        if hidden == self._hidden:
            return
        self._hidden = hidden
        logger.debug("Visibility changed: hidden=%s", hidden)
        for listener in list(self._listeners):
            try:
                listener(hidden)
            except Exception:
                logger.exception("Visibility listener %r failed", listener)

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe
