"""Parse raw stream frames and route them to per-kind handlers."""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Dict, List, Mapping, Optional, Type

from pydantic import ValidationError

from notify_sync.domain.stream.events import PAYLOAD_TYPES, EventPayload, RawFrame, StreamEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[StreamEvent], None]


class EventDispatcher:
    """Synchronous, in-order dispatch of stream frames.

    Each frame is parsed and fully handled before the next one is read, so a
    handler always sees a notification's creation before any later frame
    about the same id. Malformed frames are dropped; unknown kinds are ignored.
    """

    def __init__(self, payload_types: Optional[Mapping[str, Type[EventPayload]]] = None):
        self._payload_types: Dict[str, Type[EventPayload]] = dict(payload_types or PAYLOAD_TYPES)
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self.dispatched_count = 0
        self.dropped_count = 0
        self.ignored_count = 0

    def register(self, kind: str, handler: EventHandler) -> Callable[[], None]:
        """Add a handler for ``kind``; handlers run in registration order. Returns an unregister function."""
        self._handlers[kind].append(handler)

        def _unregister() -> None:
            handlers = self._handlers.get(kind, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unregister

    def parse(self, frame: RawFrame) -> Optional[StreamEvent]:
        model = self._payload_types.get(frame.kind)
        if model is None:
            # Forward compatibility: the server may add kinds before clients know them.
            logger.debug("[STREAM] Ignoring frame of unknown kind %r", frame.kind)
            self.ignored_count += 1
            return None
        try:
            payload = model.model_validate_json(frame.data)
        except ValidationError as e:
            logger.warning(
                "[STREAM] Dropping malformed %s frame (id=%s): %s",
                frame.kind,
                frame.event_id,
                e.errors(include_url=False),
            )
            self.dropped_count += 1
            return None
        return StreamEvent(kind=frame.kind, payload=payload, event_id=frame.event_id)

    def dispatch(self, frame: RawFrame) -> Optional[StreamEvent]:
        """Parse and route one frame. Never raises."""
        event = self.parse(frame)
        if event is None:
            return None
        self.dispatched_count += 1
        logger.debug("[STREAM] %s received: %s", event.kind, event.payload)
        for handler in list(self._handlers.get(event.kind, ())):
            try:
                handler(event)
            except Exception:
                logger.exception("[STREAM] Handler %r failed for %s frame", handler, event.kind)
        return event
