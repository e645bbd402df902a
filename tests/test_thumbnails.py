from __future__ import annotations

import asyncio

import pytest
from PIL import Image

from photo_mirror.errors import TransientNetworkError
from photo_mirror.thumbnails import ThumbnailPrefetcher

pytestmark = pytest.mark.asyncio


async def _until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


@pytest.fixture
def cached_items(store, make_item):
    items = [make_item(f"item-{index}", minutes=index) for index in range(6)]
    store.upsert_media_items(items)
    return [item.id for item in items]


@pytest.fixture
def prefetcher(store, fake_remote, settings):
    return ThumbnailPrefetcher(store, fake_remote, settings)


async def test_downloads_are_bounded_by_worker_count(prefetcher, fake_remote, cached_items, settings):
    fake_remote.download_delay = 0.01

    report = await prefetcher.prefetch(cached_items)

    assert sorted(report.fetched) == sorted(cached_items)
    assert report.ok
    assert 1 <= fake_remote.max_concurrent <= settings.PREFETCH_WORKERS
    assert prefetcher.in_flight == 0


async def test_thumbnails_are_resized_jpegs(prefetcher, store, cached_items, settings):
    await prefetcher.prefetch(cached_items[:1])

    path = store.get_thumbnail_path(cached_items[0])
    assert path == settings.THUMBNAIL_DIR / f"{cached_items[0]}.jpg"
    with Image.open(path) as image:
        assert image.format == "JPEG"
        assert max(image.size) <= settings.THUMBNAIL_SIZE
    assert not path.with_suffix(".part").exists()


async def test_concurrent_requests_for_one_id_share_a_download(prefetcher, fake_remote, cached_items):
    fake_remote.download_delay = 0.02

    first, second = await asyncio.gather(
        prefetcher.prefetch([cached_items[0]]), prefetcher.prefetch([cached_items[0]])
    )

    assert fake_remote.downloads == [cached_items[0]]
    assert first.fetched == second.fetched == [cached_items[0]]


async def test_failures_are_isolated_per_item(prefetcher, fake_remote, cached_items):
    fake_remote.download_errors[cached_items[1]] = TransientNetworkError("reset")

    report = await prefetcher.prefetch(cached_items[:3])

    assert sorted(report.fetched) == [cached_items[0], cached_items[2]]
    assert list(report.failed) == [cached_items[1]]
    assert report.ok is False


async def test_slow_download_times_out(store, fake_remote, settings, cached_items):
    fake_remote.download_delay = 0.5
    prefetcher = ThumbnailPrefetcher(
        store, fake_remote, settings.model_copy(update={"REMOTE_TIMEOUT_SECONDS": 0.01})
    )

    report = await prefetcher.prefetch(cached_items[:1])

    assert cached_items[0] in report.failed


async def test_existing_thumbnails_are_not_downloaded_again(prefetcher, fake_remote, cached_items):
    await prefetcher.prefetch(cached_items[:2])
    fake_remote.downloads.clear()

    report = await prefetcher.prefetch(cached_items[:2])

    assert fake_remote.downloads == []
    assert sorted(report.cached) == sorted(cached_items[:2])


async def test_file_on_disk_is_recorded_without_download(prefetcher, store, fake_remote, cached_items, settings):
    settings.THUMBNAIL_DIR.mkdir(parents=True)
    target = settings.THUMBNAIL_DIR / f"{cached_items[0]}.jpg"
    Image.new("RGB", (8, 8)).save(target, format="JPEG")

    report = await prefetcher.prefetch(cached_items[:1])

    assert report.cached == [cached_items[0]]
    assert fake_remote.downloads == []
    assert store.get_thumbnail_path(cached_items[0]) == target


async def test_cancel_skips_queued_work(prefetcher, fake_remote, cached_items):
    fake_remote.download_delay = 0.05
    running = asyncio.create_task(prefetcher.prefetch(cached_items))
    await _until(lambda: fake_remote.concurrent == 2)

    await prefetcher.cancel()
    report = await running

    assert len(report.fetched) == 2
    assert len(report.skipped) == len(cached_items) - 2
    assert prefetcher.accepting is False

    later = await prefetcher.prefetch(cached_items[:1])
    assert later.skipped == cached_items[:1]


async def test_abort_cancels_downloads_in_flight(prefetcher, fake_remote, cached_items):
    fake_remote.download_delay = 5.0
    running = asyncio.create_task(prefetcher.prefetch(cached_items[:2]))
    await _until(lambda: fake_remote.concurrent == 2)

    await asyncio.wait_for(prefetcher.cancel(abort=True), timeout=1.0)
    report = await running

    assert sorted(report.skipped) == sorted(cached_items[:2])
    assert report.fetched == []


async def test_resume_and_remove(prefetcher, cached_items, settings):
    await prefetcher.cancel()
    prefetcher.resume()

    report = await prefetcher.prefetch(cached_items[:1])
    assert report.fetched == cached_items[:1]

    prefetcher.remove_thumbnails()
    assert not settings.THUMBNAIL_DIR.exists()


async def test_cancelled_caller_does_not_cancel_a_shared_fetch(prefetcher, fake_remote, cached_items):
    fake_remote.download_delay = 0.05
    first = asyncio.create_task(prefetcher.prefetch([cached_items[0]]))
    await _until(lambda: fake_remote.concurrent == 1)
    second = asyncio.create_task(prefetcher.prefetch([cached_items[0]]))
    await asyncio.sleep(0)

    first.cancel()
    report = await second

    assert report.fetched == [cached_items[0]]
    assert fake_remote.downloads == [cached_items[0]]
    with pytest.raises(asyncio.CancelledError):
        await first
