"""Observable state holder: a current value plus change listeners."""
from __future__ import annotations

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class Observable(Generic[T]):
    """Mutable value with synchronous change notification.

    Only the owner calls ``set``; everyone else reads ``value`` or subscribes.
    Listeners run after the value is stored, in subscription order, and a
    listener that raises is logged without affecting the others.

    A ``set`` made from inside a listener does not notify recursively: the
    current pass stops and a new pass delivers the latest value to every
    listener, so no listener is left holding an older value.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._listeners: List[Listener] = []
        self._notifying = False
        self._changed = False

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        if self._notifying:
            self._changed = True
            return
        self._notifying = True
        try:
            self._changed = True
            while self._changed:
                self._changed = False
                current = self._value
                for listener in list(self._listeners):
                    try:
                        listener(current)
                    except Exception:
                        logger.exception("Observable listener %r failed", listener)
                    if self._changed:
                        break
        finally:
            self._notifying = False
            self._changed = False

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe


class Signal:
    """Fire-and-forget event with no stored value (e.g. "connectivity restored")."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[Callable[[], None]] = []

    def connect(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _disconnect() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _disconnect

    def emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Signal %s listener %r failed", self.name, listener)
