from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from photo_mirror.errors import (
    AuthError,
    RemoteRequestError,
    ThrottledError,
    TransientNetworkError,
)
from photo_mirror.remote import GooglePhotosClient
from photo_mirror.schemas import Token

pytestmark = pytest.mark.asyncio

BASE = "https://photoslibrary.googleapis.com/v1"


def _media(item_id: str) -> Dict[str, Any]:
    return {
        "id": item_id,
        "filename": f"{item_id}.jpg",
        "mimeType": "image/jpeg",
        "baseUrl": f"https://lh3.example/{item_id}",
        "mediaMetadata": {
            "creationTime": "2024-05-01T12:00:00Z",
            "width": "4032",
            "height": "3024",
            "photo": {"cameraMake": "Canon", "cameraModel": "EOS R6"},
        },
    }


class _Recorder:
    def __init__(self, responder):
        self.requests: List[httpx.Request] = []
        self.responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)


def _client(settings, responder, token: str = "access") -> GooglePhotosClient:
    return GooglePhotosClient(settings, access_token=token, transport=httpx.MockTransport(responder))


async def test_list_media_items_parses_page_and_cursor(settings):
    recorder = _Recorder(
        lambda request: httpx.Response(
            200, json={"mediaItems": [_media("A"), _media("B")], "nextPageToken": "next"}
        )
    )
    client = _client(settings, recorder)

    page = await client.list_media_items("prev")
    await client.aclose()

    assert [item.id for item in page.items] == ["A", "B"]
    assert page.next_cursor == "next"
    assert page.items[0].camera_make == "Canon"
    assert page.items[0].width == 4032
    request = recorder.requests[0]
    assert request.url.params["pageToken"] == "prev"
    assert request.url.params["pageSize"] == str(settings.PAGE_SIZE)
    assert request.headers["Authorization"] == "Bearer access"


async def test_last_page_has_no_cursor(settings):
    client = _client(settings, lambda request: httpx.Response(200, json={}))

    page = await client.list_media_items()

    assert page.items == []
    assert page.next_cursor is None


async def test_list_albums_fetches_membership(settings):
    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/albums"):
            return httpx.Response(
                200,
                json={"albums": [{"id": "trip", "title": "Trip", "mediaItemsCount": "2"}]},
            )
        body = json.loads(request.content)
        assert body["albumId"] == "trip"
        if "pageToken" not in body:
            return httpx.Response(200, json={"mediaItems": [_media("A")], "nextPageToken": "p2"})
        return httpx.Response(200, json={"mediaItems": [_media("B")]})

    client = _client(settings, responder)

    albums = await client.list_albums()

    assert len(albums) == 1
    assert albums[0].title == "Trip"
    assert albums[0].media_items_count == 2
    assert albums[0].media_item_ids == ["A", "B"]


async def test_album_writes_use_expected_endpoints(settings):
    def responder(request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE" or ":batch" in request.url.path:
            return httpx.Response(200, json={})
        return httpx.Response(200, json={"id": "new", "title": "Holiday"})

    recorder = _Recorder(responder)
    client = _client(settings, recorder)

    created = await client.create_album("Holiday")
    await client.rename_album("new", "Holiday")
    await client.add_item_to_album("new", "A")
    await client.remove_item_from_album("new", "A")
    await client.delete_album("new")

    assert created.id == "new"
    assert created.media_item_ids == []
    calls = [(r.method, r.url.path) for r in recorder.requests]
    assert calls == [
        ("POST", "/v1/albums"),
        ("PATCH", "/v1/albums/new"),
        ("POST", "/v1/albums/new:batchAddMediaItems"),
        ("POST", "/v1/albums/new:batchRemoveMediaItems"),
        ("DELETE", "/v1/albums/new"),
    ]
    assert json.loads(recorder.requests[0].content) == {"album": {"title": "Holiday"}}
    assert recorder.requests[1].url.params["updateMask"] == "title"
    assert json.loads(recorder.requests[2].content) == {"mediaItemIds": ["A"]}


@pytest.mark.parametrize(
    "status, headers, expected",
    [
        (401, {}, AuthError),
        (429, {"Retry-After": "7"}, ThrottledError),
        (500, {}, TransientNetworkError),
        (503, {}, TransientNetworkError),
        (400, {}, RemoteRequestError),
        (403, {}, RemoteRequestError),
    ],
)
async def test_error_statuses_map_to_application_errors(settings, status, headers, expected):
    client = _client(
        settings,
        lambda request: httpx.Response(status, headers=headers, json={"error": {"message": "nope"}}),
    )

    with pytest.raises(expected) as caught:
        await client.list_media_items()

    assert type(caught.value) is expected
    if expected is ThrottledError:
        assert caught.value.retry_after == 7.0


async def test_transport_failures_are_transient(settings):
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(settings, responder)

    with pytest.raises(TransientNetworkError):
        await client.list_albums()


async def test_timeouts_are_transient(settings):
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransientNetworkError):
        await _client(settings, responder).list_media_items()


async def test_missing_token_is_an_auth_error(settings):
    client = GooglePhotosClient(settings, transport=httpx.MockTransport(lambda r: httpx.Response(200)))

    with pytest.raises(AuthError):
        await client.list_media_items()

    client.set_access_token(Token(access_token="fresh", expires_at="2030-01-01T00:00:00Z"))
    assert client.headers["Authorization"] == "Bearer fresh"


async def test_download_thumbnail_requests_sized_image_without_auth(settings, make_item):
    recorder = _Recorder(lambda request: httpx.Response(200, content=b"jpeg-bytes"))
    client = _client(settings, recorder)

    data = await client.download_thumbnail(make_item("A"))

    assert data == b"jpeg-bytes"
    request = recorder.requests[0]
    assert str(request.url) == f"https://photos.example/A=w{settings.THUMBNAIL_SIZE}-h{settings.THUMBNAIL_SIZE}"
    assert "Authorization" not in request.headers


async def test_download_without_base_url_is_rejected(settings, make_item):
    client = _client(settings, lambda request: httpx.Response(200))

    with pytest.raises(RemoteRequestError):
        await client.download_thumbnail(make_item("A", base_url=""))
