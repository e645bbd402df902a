from __future__ import annotations

import asyncio
import io
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest
from PIL import Image

from photo_mirror.config import Settings
from photo_mirror.errors import AuthError
from photo_mirror.schemas import Album, MediaItem, MediaPage, Token
from photo_mirror.storage import CacheStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _jpeg_bytes(size: Tuple[int, int] = (640, 480)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, (200, 40, 40)).save(buffer, format="JPEG")
    return buffer.getvalue()


class FakeRemote:
    """In-memory remote library with scriptable failures."""

    def __init__(self) -> None:
        self.pages: Dict[Optional[str], MediaPage] = {None: MediaPage(items=[])}
        self.albums: List[Album] = []
        self.calls: List[Tuple[str, Any]] = []
        self.failures: List[BaseException] = []
        self.rejected_tokens: Set[str] = set()
        self.access_token: Optional[str] = None
        self.image = _jpeg_bytes()
        self.download_delay = 0.0
        self.list_delay = 0.0
        self.cursor_failures: Dict[str, BaseException] = {}
        self.download_errors: Dict[str, BaseException] = {}
        self.downloads: List[str] = []
        self.concurrent = 0
        self.max_concurrent = 0
        self._album_seq = 0

    def set_pages(self, *pages: List[MediaItem]) -> None:
        self.pages = {}
        for index, items in enumerate(pages):
            cursor = None if index == 0 else f"cursor-{index}"
            next_cursor = f"cursor-{index + 1}" if index + 1 < len(pages) else None
            self.pages[cursor] = MediaPage(items=list(items), next_cursor=next_cursor)

    def set_access_token(self, token: Token) -> None:
        self.access_token = token.access_token

    def _check(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))
        if self.failures:
            raise self.failures.pop(0)
        if self.access_token in self.rejected_tokens:
            raise AuthError("token rejected")

    def call_count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def list_media_items(self, cursor: Optional[str] = None) -> MediaPage:
        self._check("list_media_items", cursor)
        if cursor in self.cursor_failures:
            raise self.cursor_failures.pop(cursor)
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        page = self.pages.get(cursor, MediaPage(items=[]))
        return MediaPage(items=[item.model_copy() for item in page.items], next_cursor=page.next_cursor)

    async def list_albums(self) -> List[Album]:
        self._check("list_albums")
        return [album.model_copy(deep=True) for album in self.albums]

    async def create_album(self, title: str) -> Album:
        self._check("create_album", title)
        self._album_seq += 1
        album = Album(id=f"remote-album-{self._album_seq}", title=title, is_writeable=True, media_item_ids=[])
        self.albums.append(album)
        return album

    async def rename_album(self, album_id: str, title: str) -> Album:
        self._check("rename_album", (album_id, title))
        return Album(id=album_id, title=title)

    async def delete_album(self, album_id: str) -> None:
        self._check("delete_album", album_id)

    async def add_item_to_album(self, album_id: str, item_id: str) -> None:
        self._check("add_item_to_album", (album_id, item_id))

    async def remove_item_from_album(self, album_id: str, item_id: str) -> None:
        self._check("remove_item_from_album", (album_id, item_id))

    async def download_thumbnail(self, item: MediaItem) -> bytes:
        self.downloads.append(item.id)
        self.concurrent += 1
        self.max_concurrent = max(self.max_concurrent, self.concurrent)
        try:
            await asyncio.sleep(self.download_delay)
            if item.id in self.download_errors:
                raise self.download_errors[item.id]
            return self.image
        finally:
            self.concurrent -= 1


class FakeTokenProvider:
    def __init__(self) -> None:
        self.gets = 0
        self.refreshes = 0
        self.refresh_delay = 0.0
        self.failing_refreshes = 0
        self.current = self._token("token-0")

    @staticmethod
    def _token(value: str) -> Token:
        return Token(
            access_token=value,
            refresh_token="refresh",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    async def get_valid_access_token(self) -> Token:
        self.gets += 1
        return self.current

    async def force_refresh(self) -> Token:
        self.refreshes += 1
        await asyncio.sleep(self.refresh_delay)
        if self.failing_refreshes:
            self.failing_refreshes -= 1
            raise AuthError("refresh rejected")
        self.current = self._token(f"token-{self.refreshes}")
        return self.current


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        DB_PATH=":memory:",
        THUMBNAIL_DIR=tmp_path / "thumbnails",
        THUMBNAIL_SIZE=64,
        SYNC_ON_START=False,
        PAGE_DELAY_SECONDS=0,
        BACKOFF_INITIAL_SECONDS=0.01,
        BACKOFF_FACTOR=2.0,
        BACKOFF_MAX_SECONDS=0.05,
        REMOTE_TIMEOUT_SECONDS=2,
        PREFETCH_WORKERS=2,
        TOKEN_STORE="file",
        TOKEN_FILE_PATH=tmp_path / "tokens.enc",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def store(settings: Settings):
    cache = CacheStore(settings)
    yield cache
    cache.close()


@pytest.fixture
def make_item() -> Callable[..., MediaItem]:
    def _make(item_id: str, minutes: int = 0, **overrides: Any) -> MediaItem:
        values: Dict[str, Any] = {
            "id": item_id,
            "filename": f"{item_id}.jpg",
            "mime_type": "image/jpeg",
            "width": 4032,
            "height": 3024,
            "creation_time": BASE_TIME + timedelta(minutes=minutes),
            "base_url": f"https://photos.example/{item_id}",
        }
        values.update(overrides)
        return MediaItem(**values)

    return _make


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def token_provider() -> FakeTokenProvider:
    return FakeTokenProvider()
