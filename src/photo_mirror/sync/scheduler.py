"""Scheduled synchronization and token refresh."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import Settings
from ..remote.interfaces import RemoteClient, TokenProvider
from ..schemas import CacheStats, CacheTransferResponse, SchedulerStatus, TaskStatus
from ..storage.cache import CacheStore
from ..thumbnails import ThumbnailPrefetcher
from .channel import StatusChannel
from .events import TaskKind
from .syncer import SyncReport, Syncer
from .tasks import BackoffPolicy, PeriodicTask
from .tokens import TokenCoordinator

logger = logging.getLogger("photo_mirror.sync.scheduler")

SYNC_JOB_ID = "photo_mirror.sync"
TOKEN_JOB_ID = "photo_mirror.token_refresh"


class SyncScheduler:
    """Owns the sync and token-refresh tasks and the timer that wakes them.

    The two tasks keep separate failure counters. Interval ticks only wake a
    task; whether it runs is up to the task's own state.
    """

    def __init__(
        self,
        settings: Settings,
        store: CacheStore,
        remote: RemoteClient,
        token_provider: TokenProvider,
        prefetcher: Optional[ThumbnailPrefetcher] = None,
        channel: Optional[StatusChannel] = None,
    ):
        self.settings = settings
        self.store = store
        self.remote = remote
        self.channel = channel if channel is not None else StatusChannel()
        self.tokens = TokenCoordinator(token_provider)
        self.prefetcher = prefetcher
        self._stop = asyncio.Event()
        # Held by each sync run and by cache maintenance.
        self._exclusive = asyncio.Lock()
        self.syncer = Syncer(
            settings,
            store,
            remote,
            self.tokens,
            self.channel,
            prefetcher=prefetcher,
            stop_event=self._stop,
        )
        policy = BackoffPolicy.from_settings(settings)
        self.sync_task = PeriodicTask(
            TaskKind.SYNC, self._sync_exclusively, self.channel, policy, stop_event=self._stop
        )
        self.token_task = PeriodicTask(
            TaskKind.TOKEN_REFRESH, self.tokens.refresh, self.channel, policy, stop_event=self._stop
        )
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def started(self) -> bool:
        return self._scheduler is not None

    async def _sync_exclusively(self) -> SyncReport:
        async with self._exclusive:
            return await self.syncer.run_once()

    async def _sync_tick(self) -> None:
        self.sync_task.tick()

    async def _token_tick(self) -> None:
        self.token_task.tick()

    async def start(self) -> None:
        """Start both tasks and the interval timer. Must run inside the event loop."""
        if self._scheduler is not None:
            return
        self.sync_task.start()
        self.token_task.start()

        scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        scheduler.add_job(
            self._sync_tick,
            IntervalTrigger(minutes=self.settings.SYNC_INTERVAL_MINUTES),
            id=SYNC_JOB_ID,
            coalesce=True,
            max_instances=1,
        )
        scheduler.add_job(
            self._token_tick,
            IntervalTrigger(minutes=self.settings.TOKEN_REFRESH_INTERVAL_MINUTES),
            id=TOKEN_JOB_ID,
            coalesce=True,
            max_instances=1,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            {
                "event": "sync.scheduler.started",
                "sync_interval_minutes": self.settings.SYNC_INTERVAL_MINUTES,
                "token_interval_minutes": self.settings.TOKEN_REFRESH_INTERVAL_MINUTES,
            }
        )
        if self.settings.SYNC_ON_START:
            self.sync_task.trigger()

    def trigger_sync(self) -> bool:
        return self.sync_task.trigger()

    def restart_sync(self) -> bool:
        return self.sync_task.restart()

    def restart_token_refresh(self) -> bool:
        return self.token_task.restart()

    async def clear_cache(self) -> CacheStats:
        """Drop every cached entity and the thumbnail files behind them.

        Waits for a sync in flight to finish. A sync requested meanwhile runs
        afterwards, against the empty cache.
        """
        async with self._exclusive:
            if self.prefetcher is not None:
                await self.prefetcher.cancel(abort=True)
            try:
                await asyncio.to_thread(self.store.clear)
                if self.prefetcher is not None:
                    await asyncio.to_thread(self.prefetcher.remove_thumbnails)
            finally:
                if self.prefetcher is not None and not self._stop.is_set():
                    self.prefetcher.resume()
        logger.info({"event": "sync.cache.cleared"})
        return await asyncio.to_thread(self.store.stats)

    async def export_cache(self, directory: Union[str, Path]) -> CacheTransferResponse:
        async with self._exclusive:
            items, albums, faces = await asyncio.to_thread(self.store.export_to, directory)
        return CacheTransferResponse(
            directory=str(directory), items=items, albums=albums, faces=faces
        )

    async def import_cache(self, directory: Union[str, Path]) -> CacheTransferResponse:
        async with self._exclusive:
            items, albums, faces = await asyncio.to_thread(self.store.import_from, directory)
        return CacheTransferResponse(
            directory=str(directory), items=items, albums=albums, faces=faces
        )

    async def stop(self) -> None:
        """Stop scheduling, let in-flight work finish, then wind down."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self._stop.set()
        if self.prefetcher is not None:
            await self.prefetcher.cancel(abort=False)
        await asyncio.gather(self.sync_task.stop(), self.token_task.stop())
        logger.info({"event": "sync.scheduler.stopped"})

    @staticmethod
    def _task_status(task: PeriodicTask) -> TaskStatus:
        return TaskStatus(
            state=task.state.value,
            consecutive_failures=task.failures,
            runs=task.runs,
            last_error=task.last_error,
        )

    async def snapshot(self) -> SchedulerStatus:
        sync_state = await asyncio.to_thread(self.store.get_sync_state)
        last_status = self.channel.last_status
        return SchedulerStatus(
            sync=self._task_status(self.sync_task),
            token_refresh=self._task_status(self.token_task),
            last_synced_at=sync_state.last_synced_at,
            cursor=sync_state.cursor,
            message=last_status.message if last_status is not None else None,
        )
