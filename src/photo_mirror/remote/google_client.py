"""Google Photos Library API client for media and album operations."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings
from ..errors import (
    AuthError,
    RemoteRequestError,
    ThrottledError,
    TransientNetworkError,
    get_retry_after,
)
from ..schemas import Album, MediaItem, MediaPage, Token

logger = logging.getLogger("photo_mirror.remote.google")

ALBUM_PAGE_SIZE = 50


def parse_media_item(data: Dict[str, Any]) -> MediaItem:
    """Build a MediaItem from a ``mediaItems`` resource."""
    metadata = data.get("mediaMetadata") or {}
    photo = metadata.get("photo") or metadata.get("video") or {}
    return MediaItem(
        id=data["id"],
        filename=data.get("filename", ""),
        description=data.get("description"),
        mime_type=data.get("mimeType", "application/octet-stream"),
        width=int(metadata.get("width") or 0),
        height=int(metadata.get("height") or 0),
        creation_time=metadata["creationTime"],
        base_url=data.get("baseUrl", ""),
        product_url=data.get("productUrl"),
        camera_make=photo.get("cameraMake"),
        camera_model=photo.get("cameraModel"),
    )


def parse_album(data: Dict[str, Any], member_ids: Optional[List[str]] = None) -> Album:
    count = data.get("mediaItemsCount")
    return Album(
        id=data["id"],
        title=data.get("title", ""),
        cover_item_id=data.get("coverPhotoMediaItemId"),
        product_url=data.get("productUrl"),
        is_writeable=data.get("isWriteable"),
        media_items_count=int(count) if count is not None else None,
        media_item_ids=member_ids,
    )


class GooglePhotosClient:
    """Google Photos client used by the sync loop and library actions.

    Every HTTP failure is mapped onto the application error taxonomy so the
    scheduler can decide between retry and abort without knowing about HTTP.
    """

    def __init__(
        self,
        settings: Settings,
        access_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.base_url = settings.PHOTOS_API_BASE_URL.rstrip("/")
        self.access_token = access_token
        self.client = httpx.AsyncClient(
            timeout=settings.REMOTE_TIMEOUT_SECONDS,
            transport=transport,
        )

    def set_access_token(self, token: Token) -> None:
        self.access_token = token.access_token

    @property
    def headers(self) -> Dict[str, str]:
        if not self.access_token:
            raise AuthError("No access token available")
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning({"event": "remote.timeout", "method": method, "error": str(exc)})
            raise TransientNetworkError(f"Request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            logger.warning({"event": "remote.transport_error", "method": method, "error": str(exc)})
            raise TransientNetworkError(f"Connection failed: {exc}") from exc
        self._handle_error_response(response)
        return response

    @staticmethod
    def _handle_error_response(response: httpx.Response) -> None:
        """
        Map error responses onto application errors.

        Args:
            response: HTTPX response object

        Raises:
            AuthError: 401
            ThrottledError: 429, with the Retry-After delay when present
            TransientNetworkError: 5xx
            RemoteRequestError: any other 4xx
        """
        if not response.is_error:
            return

        try:
            message = response.json().get("error", {}).get("message")
        except ValueError:
            message = None
        message = message or response.reason_phrase or "Unknown Photos API error"
        status = response.status_code
        logger.warning({"event": "remote.error", "status": status, "message": message})

        if status == 401:
            raise AuthError(message)
        if status == 429:
            raise ThrottledError(message, retry_after=get_retry_after(response.headers))
        if status >= 500:
            raise TransientNetworkError(f"{status}: {message}")
        raise RemoteRequestError(f"{status}: {message}")

    async def list_media_items(self, cursor: Optional[str] = None) -> MediaPage:
        params: Dict[str, Any] = {"pageSize": self.settings.PAGE_SIZE}
        if cursor:
            params["pageToken"] = cursor
        response = await self._request(
            "GET", f"{self.base_url}/mediaItems", params=params, headers=self.headers
        )
        data = response.json()
        items = [parse_media_item(entry) for entry in data.get("mediaItems", [])]
        return MediaPage(items=items, next_cursor=data.get("nextPageToken") or None)

    async def _album_member_ids(self, album_id: str) -> List[str]:
        member_ids: List[str] = []
        body: Dict[str, Any] = {"albumId": album_id, "pageSize": self.settings.PAGE_SIZE}
        while True:
            response = await self._request(
                "POST", f"{self.base_url}/mediaItems:search", json=body, headers=self.headers
            )
            data = response.json()
            member_ids.extend(entry["id"] for entry in data.get("mediaItems", []))
            token = data.get("nextPageToken")
            if not token:
                return member_ids
            body["pageToken"] = token

    async def list_albums(self) -> List[Album]:
        """List every album together with its membership."""
        albums: List[Album] = []
        params: Dict[str, Any] = {"pageSize": ALBUM_PAGE_SIZE}
        while True:
            response = await self._request(
                "GET", f"{self.base_url}/albums", params=params, headers=self.headers
            )
            data = response.json()
            for entry in data.get("albums", []):
                albums.append(parse_album(entry, await self._album_member_ids(entry["id"])))
            token = data.get("nextPageToken")
            if not token:
                break
            params["pageToken"] = token
        logger.debug({"event": "remote.albums.listed", "count": len(albums)})
        return albums

    async def create_album(self, title: str) -> Album:
        response = await self._request(
            "POST",
            f"{self.base_url}/albums",
            json={"album": {"title": title}},
            headers=self.headers,
        )
        return parse_album(response.json(), [])

    async def rename_album(self, album_id: str, title: str) -> Album:
        response = await self._request(
            "PATCH",
            f"{self.base_url}/albums/{album_id}",
            params={"updateMask": "title"},
            json={"title": title},
            headers=self.headers,
        )
        return parse_album(response.json())

    async def delete_album(self, album_id: str) -> None:
        await self._request("DELETE", f"{self.base_url}/albums/{album_id}", headers=self.headers)

    async def add_item_to_album(self, album_id: str, item_id: str) -> None:
        await self._request(
            "POST",
            f"{self.base_url}/albums/{album_id}:batchAddMediaItems",
            json={"mediaItemIds": [item_id]},
            headers=self.headers,
        )

    async def remove_item_from_album(self, album_id: str, item_id: str) -> None:
        await self._request(
            "POST",
            f"{self.base_url}/albums/{album_id}:batchRemoveMediaItems",
            json={"mediaItemIds": [item_id]},
            headers=self.headers,
        )

    async def download_thumbnail(self, item: MediaItem) -> bytes:
        """Download a preview sized for the thumbnail cache.

        Base URLs are pre-signed, so no Authorization header is sent.
        """
        if not item.base_url:
            raise RemoteRequestError(f"Media item {item.id!r} has no base URL")
        size = self.settings.THUMBNAIL_SIZE
        response = await self._request("GET", f"{item.base_url}=w{size}-h{size}")
        return response.content
