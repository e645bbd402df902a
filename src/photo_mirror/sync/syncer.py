from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, TypeVar

from ..config import Settings
from ..remote.interfaces import RemoteClient
from ..storage.cache import CacheStore
from ..thumbnails import PrefetchReport, ThumbnailPrefetcher
from .channel import StatusChannel
from .events import Progress, Status, TaskKind
from .tokens import TokenCoordinator, call_with_token

logger = logging.getLogger("photo_mirror.sync.syncer")

T = TypeVar("T")

# Emit a Progress event every time this many more items have been processed.
PROGRESS_EVERY = 50


@dataclass
class SyncReport:
    pages: int = 0
    items_seen: int = 0
    new_ids: List[str] = field(default_factory=list)
    changed: int = 0
    albums: int = 0
    albums_removed: int = 0
    resumed_from: Optional[str] = None
    completed: bool = False
    last_synced_at: Optional[datetime] = None
    thumbnails: Optional[PrefetchReport] = None


class Syncer:
    """One full pass: media pages, then albums, then thumbnails for new items.

    Each page is committed together with the cursor that follows it, so an
    interrupted pass resumes at the first page that was not committed.
    """

    def __init__(
        self,
        settings: Settings,
        store: CacheStore,
        remote: RemoteClient,
        tokens: TokenCoordinator,
        channel: StatusChannel,
        prefetcher: Optional[ThumbnailPrefetcher] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.settings = settings
        self.store = store
        self.remote = remote
        self.tokens = tokens
        self.channel = channel
        self.prefetcher = prefetcher
        self._stop = stop_event if stop_event is not None else asyncio.Event()

    async def _remote(self, make_call: Callable[[], Awaitable[T]]) -> T:
        return await call_with_token(
            self.tokens, self.remote, make_call, self.settings.REMOTE_TIMEOUT_SECONDS
        )

    async def _between_pages(self) -> bool:
        """Pause before the next page. Returns True if a stop was requested."""
        delay = self.settings.PAGE_DELAY_SECONDS
        if delay <= 0:
            return self._stop.is_set()
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def run_once(self) -> SyncReport:
        report = SyncReport()
        state = await asyncio.to_thread(self.store.get_sync_state)
        cursor = state.cursor
        report.resumed_from = cursor
        logger.info({"event": "sync.started", "resumed": cursor is not None})
        self.channel.publish(Progress(task=TaskKind.SYNC, synced=0, message="Sync started"))

        next_progress = PROGRESS_EVERY
        while True:
            page = await self._remote(lambda: self.remote.list_media_items(cursor))
            diff = await asyncio.to_thread(self.store.apply_media_page, page.items, page.next_cursor)
            report.pages += 1
            report.items_seen += len(page.items)
            report.new_ids.extend(diff.new_ids)
            report.changed += len(diff.changed_ids)
            logger.debug(
                {
                    "event": "sync.page.applied",
                    "page": report.pages,
                    "items": len(page.items),
                    "new": len(diff.new_ids),
                    "changed": len(diff.changed_ids),
                }
            )
            if report.items_seen >= next_progress:
                self.channel.publish(
                    Progress(
                        task=TaskKind.SYNC,
                        synced=report.items_seen,
                        message=f"Synced {report.items_seen} items",
                    )
                )
                next_progress = (report.items_seen // PROGRESS_EVERY + 1) * PROGRESS_EVERY

            cursor = page.next_cursor
            if not cursor:
                break
            if await self._between_pages():
                logger.info({"event": "sync.interrupted", "pages": report.pages})
                return report

        albums = await self._remote(self.remote.list_albums)
        report.albums, report.albums_removed = await asyncio.to_thread(
            self.store.sync_albums, albums
        )
        report.last_synced_at = await asyncio.to_thread(self.store.mark_synced)
        report.completed = True

        message = (
            f"Synced {report.items_seen} items ({len(report.new_ids)} new, "
            f"{report.changed} updated), {report.albums} albums"
        )
        logger.info(
            {
                "event": "sync.finished",
                "items": report.items_seen,
                "new": len(report.new_ids),
                "changed": report.changed,
                "albums": report.albums,
                "albums_removed": report.albums_removed,
            }
        )
        self.channel.publish(
            Progress(task=TaskKind.SYNC, synced=report.items_seen, message="Sync finished")
        )
        self.channel.publish(
            Status(task=TaskKind.SYNC, last_synced=report.last_synced_at, message=message)
        )

        if self.prefetcher is not None and report.new_ids and not self._stop.is_set():
            report.thumbnails = await self.prefetcher.prefetch(report.new_ids)
        return report
