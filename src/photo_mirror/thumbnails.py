from __future__ import annotations

import asyncio
import io
import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List

from PIL import Image, ImageOps

from .config import Settings
from .errors import TransientNetworkError
from .remote.interfaces import RemoteClient
from .storage.cache import CacheStore

logger = logging.getLogger("photo_mirror.thumbnails")


class FetchOutcome(str, Enum):
    FETCHED = "fetched"
    CACHED = "cached"
    SKIPPED = "skipped"


@dataclass
class PrefetchReport:
    fetched: List[str] = field(default_factory=list)
    cached: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ThumbnailPrefetcher:
    """Fetch preview images with a fixed cap on concurrent downloads.

    Requests for an id that is already being fetched share that fetch.
    Thumbnails already on disk and recorded in the store are not fetched again.
    """

    def __init__(self, store: CacheStore, remote: RemoteClient, settings: Settings):
        self.store = store
        self.remote = remote
        self.settings = settings
        self.directory = Path(settings.THUMBNAIL_DIR)
        self.size = (settings.THUMBNAIL_SIZE, settings.THUMBNAIL_SIZE)
        self._semaphore = asyncio.Semaphore(settings.PREFETCH_WORKERS)
        self._inflight: Dict[str, "asyncio.Task[FetchOutcome]"] = {}
        self._closed = False

    @property
    def accepting(self) -> bool:
        return not self._closed

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    def _task_for(self, item_id: str) -> "asyncio.Task[FetchOutcome]":
        task = self._inflight.get(item_id)
        if task is None:
            task = asyncio.create_task(self._fetch(item_id), name=f"thumbnail-{item_id}")
            self._inflight[item_id] = task

            def _forget(done: "asyncio.Task[FetchOutcome]", key: str = item_id) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            task.add_done_callback(_forget)
        return task

    async def prefetch(self, item_ids: Iterable[str]) -> PrefetchReport:
        report = PrefetchReport()
        tasks: Dict[str, "asyncio.Task[FetchOutcome]"] = {}
        for item_id in dict.fromkeys(item_ids):
            if self._closed:
                report.skipped.append(item_id)
                continue
            tasks[item_id] = self._task_for(item_id)

        # A shared fetch outlives the cancellation of any one caller.
        results = await asyncio.gather(
            *(asyncio.shield(task) for task in tasks.values()), return_exceptions=True
        )
        for item_id, result in zip(tasks, results):
            if isinstance(result, asyncio.CancelledError) or result is FetchOutcome.SKIPPED:
                report.skipped.append(item_id)
            elif isinstance(result, BaseException):
                report.failed[item_id] = str(result) or type(result).__name__
                logger.warning(
                    {"event": "thumbnail.failed", "media_item_id": item_id, "error": str(result)}
                )
            elif result is FetchOutcome.CACHED:
                report.cached.append(item_id)
            else:
                report.fetched.append(item_id)

        logger.info(
            {
                "event": "thumbnail.batch.finished",
                "fetched": len(report.fetched),
                "cached": len(report.cached),
                "skipped": len(report.skipped),
                "failed": len(report.failed),
            }
        )
        return report

    async def _fetch(self, item_id: str) -> FetchOutcome:
        async with self._semaphore:
            if self._closed:
                return FetchOutcome.SKIPPED

            recorded = await asyncio.to_thread(self.store.get_thumbnail_path, item_id)
            if recorded is not None and recorded.exists():
                return FetchOutcome.CACHED

            destination = self.directory / f"{item_id}.jpg"
            if not destination.exists():
                item = await asyncio.to_thread(self.store.get_item, item_id)
                try:
                    data = await asyncio.wait_for(
                        self.remote.download_thumbnail(item),
                        timeout=self.settings.REMOTE_TIMEOUT_SECONDS,
                    )
                except asyncio.TimeoutError as exc:
                    raise TransientNetworkError(f"Thumbnail download for {item_id} timed out") from exc
                await asyncio.to_thread(self._write_thumbnail, data, destination)
                outcome = FetchOutcome.FETCHED
            else:
                outcome = FetchOutcome.CACHED

            await asyncio.to_thread(self.store.record_thumbnail, item_id, destination)
            logger.debug({"event": "thumbnail.stored", "media_item_id": item_id, "outcome": outcome.value})
            return outcome

    def _write_thumbnail(self, data: bytes, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_suffix(".part")
        with Image.open(io.BytesIO(data)) as image:
            processed = ImageOps.exif_transpose(image)
            processed = processed.convert("RGB")
            processed.thumbnail(self.size, Image.Resampling.LANCZOS)
            processed.save(partial, format="JPEG", optimize=True, quality=85)
        os.replace(partial, destination)

    async def cancel(self, abort: bool = False) -> None:
        """Stop accepting work.

        Fetches already holding a worker slot finish unless ``abort`` is set,
        in which case every fetch in flight is cancelled.
        """
        self._closed = True
        pending = list(self._inflight.values())
        if abort:
            for task in pending:
                task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info({"event": "thumbnail.cancelled", "abort": abort, "pending": len(pending)})

    def resume(self) -> None:
        self._closed = False

    def remove_thumbnails(self) -> None:
        if self.directory.exists():
            shutil.rmtree(self.directory)
        logger.info({"event": "thumbnail.directory_removed"})
