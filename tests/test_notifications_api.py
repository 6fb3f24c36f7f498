"""Tests for notify_sync.infra.vendors.notifications_api using httpx.MockTransport."""
import json

import httpx
import pytest

from notify_sync.domain.common.errors import PayloadError, TransportError
from notify_sync.infra.vendors.notifications_api import NotificationsApi, build_http_client


def make_api(handler):
    client = build_http_client(
        "http://test/api/",
        session_cookie_name="JSESSIONID",
        session_cookie="abc123",
        transport=httpx.MockTransport(handler),
    )
    return NotificationsApi(client)


async def test_list_unread_parses_camel_case():
    requests = []

    def handler(request):
        requests.append(request)
        body = [
            {
                "id": 5,
                "type": "lesson_confirmed",
                "title": "Lesson confirmed",
                "message": "See you Tuesday",
                "link": "/lessons",
                "isRead": False,
                "createdAt": "2026-03-01T10:00:00",
            }
        ]
        return httpx.Response(200, json=body)

    api = make_api(handler)
    (item,) = await api.list_unread()
    await api.client.aclose()

    assert item.id == 5
    assert item.is_read is False
    assert item.to_payload().notification_id == 5
    assert requests[0].url.path == "/api/notifications/unread"
    assert "JSESSIONID=abc123" in requests[0].headers["cookie"]


async def test_http_error_status_becomes_transport_error():
    api = make_api(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(TransportError) as exc_info:
        await api.list_unread()
    assert exc_info.value.status_code == 500


async def test_connect_error_becomes_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    api = make_api(handler)
    with pytest.raises(TransportError) as exc_info:
        await api.mark_all_read()
    assert exc_info.value.status_code is None


async def test_invalid_body_becomes_payload_error():
    api = make_api(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(PayloadError):
        await api.list_unread()


async def test_wrong_shape_becomes_payload_error():
    api = make_api(lambda request: httpx.Response(200, json=[{"id": "not-a-number"}]))
    with pytest.raises(PayloadError):
        await api.list_unread()


async def test_mark_read_patches_item():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    api = make_api(handler)
    await api.mark_read(17)
    await api.mark_all_read()
    assert [(r.method, r.url.path) for r in requests] == [
        ("PATCH", "/api/notifications/17/read"),
        ("PATCH", "/api/notifications/read-all"),
    ]


async def test_get_collection_requires_array():
    api = make_api(lambda request: httpx.Response(200, content=json.dumps({"id": 1})))
    with pytest.raises(PayloadError):
        await api.get_collection("/lessons/upcoming")


async def test_get_collection_skips_non_objects():
    api = make_api(lambda request: httpx.Response(200, json=[{"id": 1}, 2, "x"]))
    assert await api.get_collection("/lessons/upcoming") == [{"id": 1}]
