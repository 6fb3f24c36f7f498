"""REST client for the notification, lesson and availability endpoints."""
import logging
from typing import Any, List, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from notify_sync.domain.common.errors import PayloadError, TransportError
from notify_sync.domain.notifications.models import UnreadNotification

logger = logging.getLogger(__name__)

_unread_list = TypeAdapter(List[UnreadNotification])


def build_http_client(
    base_url: str,
    timeout_s: float = 10.0,
    session_cookie_name: str = "",
    session_cookie: str = "",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Shared AsyncClient for REST calls and the event stream (same cookie jar)."""
    cookies = {session_cookie_name: session_cookie} if session_cookie_name and session_cookie else None
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        timeout=timeout_s,
        cookies=cookies,
        transport=transport,
    )


def _log_connection_error(operation: str, url: str, e: Exception) -> None:
    """Log a clear message when the backend is unreachable."""
    if isinstance(e, httpx.ConnectError):
        logger.warning("Backend unreachable at %s during %s: %s", url, operation, e)
    else:
        logger.warning("Backend %s failed: %s", operation, e)


class NotificationsApi:
    """Thin async wrapper; every failure surfaces as TransportError or PayloadError."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        unread_path: str = "/notifications/unread",
        mark_read_path: str = "/notifications/{notification_id}/read",
        mark_all_read_path: str = "/notifications/read-all",
    ):
        self.client = client
        self.unread_path = unread_path
        self.mark_read_path = mark_read_path
        self.mark_all_read_path = mark_all_read_path

    async def _request(self, method: str, path: str, operation: str) -> httpx.Response:
        try:
            response = await self.client.request(method, path)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{operation} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            _log_connection_error(operation, path, e)
            raise TransportError(f"{operation} failed: {e}") from e

    async def get_json(self, path: str, operation: str = "GET") -> Any:
        response = await self._request("GET", path, operation)
        try:
            return response.json()
        except ValueError as e:
            raise PayloadError(operation, f"invalid JSON body: {e}") from e

    async def list_unread(self) -> List[UnreadNotification]:
        """Currently unread notifications for the session user."""
        data = await self.get_json(self.unread_path, "list unread notifications")
        try:
            return _unread_list.validate_python(data)
        except ValidationError as e:
            raise PayloadError("unread list", str(e)) from e

    async def mark_read(self, notification_id: int) -> None:
        path = self.mark_read_path.format(notification_id=notification_id)
        await self._request("PATCH", path, f"mark notification {notification_id} read")

    async def mark_all_read(self) -> None:
        await self._request("PATCH", self.mark_all_read_path, "mark all notifications read")

    async def get_collection(self, path: str) -> List[dict]:
        """GET a polled collection: a JSON array of objects with at least an id."""
        data = await self.get_json(path, f"fetch {path}")
        if not isinstance(data, list):
            raise PayloadError(path, f"expected a JSON array, got {type(data).__name__}")
        return [item for item in data if isinstance(item, dict)]
