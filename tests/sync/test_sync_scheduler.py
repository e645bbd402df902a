from __future__ import annotations

import pytest

from photo_mirror.errors import AuthError
from photo_mirror.sync import SyncScheduler, TaskState
from photo_mirror.sync.scheduler import SYNC_JOB_ID, TOKEN_JOB_ID
from photo_mirror.thumbnails import ThumbnailPrefetcher

pytestmark = pytest.mark.asyncio


@pytest.fixture
def scheduler(settings, store, fake_remote, token_provider):
    prefetcher = ThumbnailPrefetcher(store, fake_remote, settings)
    return SyncScheduler(settings, store, fake_remote, token_provider, prefetcher=prefetcher)


async def test_start_registers_interval_jobs(scheduler, settings):
    await scheduler.start()
    try:
        jobs = {job.id: job for job in scheduler._scheduler.get_jobs()}
        assert set(jobs) == {SYNC_JOB_ID, TOKEN_JOB_ID}
        assert jobs[SYNC_JOB_ID].trigger.interval.total_seconds() == settings.SYNC_INTERVAL_MINUTES * 60
        assert jobs[SYNC_JOB_ID].max_instances == 1
    finally:
        await scheduler.stop()

    assert scheduler.started is False
    assert scheduler.sync_task.state is TaskState.STOPPED
    assert scheduler.token_task.state is TaskState.STOPPED


async def test_triggered_sync_fills_cache_and_snapshot(scheduler, store, fake_remote, make_item):
    fake_remote.set_pages([make_item("A"), make_item("B")])
    await scheduler.start()
    try:
        scheduler.trigger_sync()
        await scheduler.sync_task.wait_idle()

        status = await scheduler.snapshot()
        assert store.stats().items == 2
        assert status.sync.state == TaskState.IDLE.value
        assert status.sync.runs == 1
        assert status.last_synced_at is not None
        assert status.cursor is None
        assert status.message.startswith("Synced 2 items")
    finally:
        await scheduler.stop()


async def test_sync_tick_is_ignored_after_abort(scheduler, fake_remote):
    fake_remote.failures = [AuthError("rejected")] * 20
    await scheduler.start()
    try:
        scheduler.trigger_sync()
        await scheduler.sync_task.wait_idle()
        assert scheduler.sync_task.state is TaskState.ABORTED

        await scheduler._sync_tick()
        assert scheduler.sync_task.tick() is False

        status = await scheduler.snapshot()
        assert status.sync.state == TaskState.ABORTED.value
        assert status.sync.consecutive_failures == 5
        assert status.sync.last_error == "rejected"
    finally:
        await scheduler.stop()


async def test_token_task_keeps_its_own_failure_counter(scheduler, token_provider):
    token_provider.failing_refreshes = 2
    await scheduler.start()
    try:
        scheduler.token_task.trigger()
        await scheduler.token_task.wait_idle()

        assert token_provider.refreshes == 3
        assert scheduler.token_task.state is TaskState.IDLE
        assert scheduler.token_task.failures == 0
        assert scheduler.sync_task.failures == 0
        assert scheduler.sync_task.runs == 0
    finally:
        await scheduler.stop()


async def test_restart_clears_abort(scheduler, fake_remote, make_item):
    fake_remote.failures = [AuthError("rejected")] * 10
    fake_remote.set_pages([make_item("A")])
    await scheduler.start()
    try:
        scheduler.trigger_sync()
        await scheduler.sync_task.wait_idle()
        assert scheduler.sync_task.state is TaskState.ABORTED

        fake_remote.failures = []
        scheduler.restart_sync()
        await scheduler.sync_task.wait_idle()

        assert scheduler.sync_task.state is TaskState.IDLE
        assert scheduler.sync_task.failures == 0
    finally:
        await scheduler.stop()


async def test_sync_on_start_runs_immediately(settings, store, fake_remote, token_provider, make_item):
    fake_remote.set_pages([make_item("A")])
    eager = SyncScheduler(
        settings.model_copy(update={"SYNC_ON_START": True}), store, fake_remote, token_provider
    )
    await eager.start()
    try:
        await eager.sync_task.wait_idle()
        assert store.stats().items == 1
    finally:
        await eager.stop()
