"""User-initiated library mutations.

Album changes go to the remote library first and are applied to the cache
only once the remote accepted them. Favorites are local only.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from .config import Settings
from .errors import ValidationError
from .remote.interfaces import RemoteClient
from .schemas import Album, MediaItem
from .storage.cache import CacheStore
from .sync.tokens import TokenCoordinator, call_with_token

logger = logging.getLogger("photo_mirror.actions")

T = TypeVar("T")


def _clean_title(title: str) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("Album title must not be empty")
    return cleaned


class LibraryActions:
    def __init__(
        self,
        settings: Settings,
        store: CacheStore,
        remote: RemoteClient,
        tokens: TokenCoordinator,
    ):
        self.settings = settings
        self.store = store
        self.remote = remote
        self.tokens = tokens

    async def _push(self, make_call: Callable[[], Awaitable[T]]) -> T:
        return await call_with_token(
            self.tokens, self.remote, make_call, self.settings.REMOTE_TIMEOUT_SECONDS
        )

    async def set_favorite(self, item_id: str, favorite: bool) -> MediaItem:
        await asyncio.to_thread(self.store.set_favorite, item_id, favorite)
        logger.info({"event": "actions.favorite", "media_item_id": item_id, "favorite": favorite})
        return await asyncio.to_thread(self.store.get_item, item_id)

    async def create_album(self, title: str) -> Album:
        title = _clean_title(title)
        album = await self._push(lambda: self.remote.create_album(title))
        await asyncio.to_thread(self.store.upsert_albums, [album])
        logger.info({"event": "actions.album.created", "album_id": album.id})
        return album

    async def rename_album(self, album_id: str, title: str) -> Album:
        title = _clean_title(title)
        await asyncio.to_thread(self.store.get_album, album_id)
        await self._push(lambda: self.remote.rename_album(album_id, title))
        await asyncio.to_thread(self.store.rename_album, album_id, title)
        logger.info({"event": "actions.album.renamed", "album_id": album_id})
        return await asyncio.to_thread(self.store.get_album, album_id)

    async def delete_album(self, album_id: str) -> None:
        await asyncio.to_thread(self.store.get_album, album_id)
        await self._push(lambda: self.remote.delete_album(album_id))
        await asyncio.to_thread(self.store.delete_album, album_id)
        logger.info({"event": "actions.album.deleted", "album_id": album_id})

    async def add_to_album(self, album_id: str, item_id: str) -> bool:
        # Validate locally before touching the remote library.
        await asyncio.to_thread(self.store.require_album_and_item, album_id, item_id)
        await self._push(lambda: self.remote.add_item_to_album(album_id, item_id))
        added = await asyncio.to_thread(self.store.add_to_album, album_id, item_id)
        logger.info({"event": "actions.album.item_added", "album_id": album_id, "added": added})
        return added

    async def remove_from_album(self, album_id: str, item_id: str) -> bool:
        await asyncio.to_thread(self.store.require_album_and_item, album_id, item_id)
        await self._push(lambda: self.remote.remove_item_from_album(album_id, item_id))
        removed = await asyncio.to_thread(self.store.remove_from_album, album_id, item_id)
        logger.info({"event": "actions.album.item_removed", "album_id": album_id, "removed": removed})
        return removed
