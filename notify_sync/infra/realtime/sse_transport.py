"""Server-Sent Events transport over httpx."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, List, Optional, Protocol

import httpx

from notify_sync.domain.common.errors import TransportError
from notify_sync.domain.stream.events import RawFrame

logger = logging.getLogger(__name__)

DEFAULT_EVENT_KIND = "message"


class SseFrameParser:
    """Incremental parser for the text/event-stream format.

    Feed it decoded lines (without line terminators); it returns a RawFrame
    whenever a blank line completes a frame that carried data.
    """

    def __init__(self) -> None:
        self._kind: Optional[str] = None
        self._data: List[str] = []
        self.last_event_id: Optional[str] = None

    def feed_line(self, line: str) -> Optional[RawFrame]:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None  # comment / keepalive
        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._kind = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self.last_event_id = value
        # "retry" and unknown fields are ignored: reconnect timing is ours.
        return None

    def _dispatch(self) -> Optional[RawFrame]:
        if not self._data:
            self._kind = None
            return None
        frame = RawFrame(
            kind=self._kind or DEFAULT_EVENT_KIND,
            data="\n".join(self._data),
            event_id=self.last_event_id,
        )
        self._kind = None
        self._data = []
        return frame


class StreamTransport(Protocol):
    """Opens the event stream. Entering the context means the stream is open."""

    def open(self) -> AsyncContextManager[AsyncIterator[RawFrame]]:
        ...


class SseStreamTransport:
    """Long-lived GET on the stream endpoint; credentials travel as cookies on the shared client."""

    def __init__(self, client: httpx.AsyncClient, path: str, connect_timeout_s: float = 10.0):
        self._client = client
        self._path = path
        # No read timeout: liveness comes from the transport closing or erroring.
        self._timeout = httpx.Timeout(connect_timeout_s, read=None)

    @asynccontextmanager
    async def open(self) -> AsyncIterator[AsyncIterator[RawFrame]]:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        try:
            async with self._client.stream(
                "GET", self._path, headers=headers, timeout=self._timeout
            ) as response:
                if response.status_code != 200:
                    raise TransportError(
                        f"Stream endpoint returned {response.status_code}",
                        status_code=response.status_code,
                    )
                content_type = response.headers.get("content-type", "")
                if not content_type.startswith("text/event-stream"):
                    raise TransportError(f"Unexpected stream content type: {content_type!r}")
                logger.debug("[STREAM] Response open: %s", response.url)
                yield self._frames(response)
        except httpx.HTTPError as e:
            raise TransportError(f"Stream request failed: {e}") from e

    async def _frames(self, response: httpx.Response) -> AsyncIterator[RawFrame]:
        parser = SseFrameParser()
        try:
            async for line in response.aiter_lines():
                frame = parser.feed_line(line)
                if frame is not None:
                    yield frame
        except httpx.HTTPError as e:
            raise TransportError(f"Stream read failed: {e}") from e
