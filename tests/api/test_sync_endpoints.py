from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from photo_mirror.actions import LibraryActions
from photo_mirror.app import Services, create_app
from photo_mirror.schemas import Album
from photo_mirror.sync import SyncScheduler
from photo_mirror.thumbnails import ThumbnailPrefetcher

pytestmark = pytest.mark.asyncio


async def test_triggered_sync_is_visible_through_the_api(
    settings, store, fake_remote, token_provider, make_item
):
    fake_remote.set_pages([make_item("A", minutes=1), make_item("B", minutes=2)], [make_item("C", minutes=3)])
    fake_remote.albums = [Album(id="Trip", title="Trip", media_item_ids=["A", "B"])]
    prefetcher = ThumbnailPrefetcher(store, fake_remote, settings)
    scheduler = SyncScheduler(settings, store, fake_remote, token_provider, prefetcher=prefetcher)
    services = Services(
        settings=settings,
        store=store,
        scheduler=scheduler,
        actions=LibraryActions(settings, store, fake_remote, scheduler.tokens),
    )
    app = create_app(services=services, start_scheduler=False)

    await scheduler.start()
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post("/api/sync")
            assert response.status_code == 202
            await scheduler.sync_task.wait_idle()

            status = (await client.get("/api/sync/status")).json()
            stats = (await client.get("/api/stats")).json()
            album_items = (await client.get("/api/items", params={"album_id": "Trip"})).json()
    finally:
        await scheduler.stop()

    assert status["sync"]["state"] == "idle"
    assert status["last_synced_at"] is not None
    assert status["message"].startswith("Synced 3 items")
    assert stats == {"albums": 1, "items": 3, "faces": 0, "thumbnails": 3}
    assert [item["id"] for item in album_items] == ["B", "A"]


async def test_restart_after_abort(settings, store, fake_remote, token_provider, make_item):
    fake_remote.failures = [RuntimeError("boom")]
    scheduler = SyncScheduler(settings, store, fake_remote, token_provider)
    services = Services(
        settings=settings,
        store=store,
        scheduler=scheduler,
        actions=LibraryActions(settings, store, fake_remote, scheduler.tokens),
    )
    app = create_app(services=services, start_scheduler=False)

    await scheduler.start()
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            await client.post("/api/sync")
            await scheduler.sync_task.wait_idle()
            aborted = (await client.get("/api/sync/status")).json()

            fake_remote.set_pages([make_item("A")])
            restarted = await client.post("/api/sync", params={"restart": "true"})
            await scheduler.sync_task.wait_idle()
            recovered = (await client.get("/api/sync/status")).json()
    finally:
        await scheduler.stop()

    assert aborted["sync"]["state"] == "aborted"
    assert aborted["sync"]["last_error"] == "boom"
    assert restarted.status_code == 202
    assert recovered["sync"]["state"] == "idle"
    assert recovered["sync"]["consecutive_failures"] == 0
