from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from ..schemas import Album, MediaItem, MediaPage, Token


@runtime_checkable
class TokenProvider(Protocol):
    """Source of access tokens. Both calls raise ``AuthError`` on failure."""

    async def get_valid_access_token(self) -> Token:
        ...

    async def force_refresh(self) -> Token:
        ...


@runtime_checkable
class RemoteClient(Protocol):
    """Operations the sync layer and library actions need from the remote library."""

    def set_access_token(self, token: Token) -> None:
        ...

    async def list_media_items(self, cursor: Optional[str] = None) -> MediaPage:
        ...

    async def list_albums(self) -> List[Album]:
        ...

    async def create_album(self, title: str) -> Album:
        ...

    async def rename_album(self, album_id: str, title: str) -> Album:
        ...

    async def delete_album(self, album_id: str) -> None:
        ...

    async def add_item_to_album(self, album_id: str, item_id: str) -> None:
        ...

    async def remove_item_from_album(self, album_id: str, item_id: str) -> None:
        ...

    async def download_thumbnail(self, item: MediaItem) -> bytes:
        ...
