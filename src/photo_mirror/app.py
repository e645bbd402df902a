from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

import pydantic
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse

from .actions import LibraryActions
from .auth import OAuthTokenProvider
from .config import Settings, get_settings
from .errors import PhotoMirrorError, ValidationError, error_code
from .remote import GooglePhotosClient
from .schemas import (
    Album,
    AlbumItemRequest,
    AlbumItemResponse,
    AlbumTitleRequest,
    CacheStats,
    CacheTransferRequest,
    CacheTransferResponse,
    DateRange,
    ErrorResponse,
    FaceBox,
    FavoriteRequest,
    HealthResponse,
    ItemFilter,
    MediaItem,
    SchedulerStatus,
    SyncTriggerResponse,
)
from .storage import CacheStore
from .sync import SyncScheduler
from .telemetry import setup_logging
from .thumbnails import ThumbnailPrefetcher

logger = logging.getLogger("photo_mirror.app")


@dataclass
class Services:
    settings: Settings
    store: CacheStore
    scheduler: SyncScheduler
    actions: LibraryActions
    closers: List[Callable[[], Awaitable[None]]] = field(default_factory=list)


def build_services(settings: Settings) -> Services:
    """Wire the production components together."""
    store = CacheStore(settings)
    remote = GooglePhotosClient(settings)
    provider = OAuthTokenProvider(settings)
    prefetcher = ThumbnailPrefetcher(store, remote, settings)
    scheduler = SyncScheduler(settings, store, remote, provider, prefetcher=prefetcher)
    actions = LibraryActions(settings, store, remote, scheduler.tokens)
    return Services(
        settings=settings,
        store=store,
        scheduler=scheduler,
        actions=actions,
        closers=[remote.aclose, provider.aclose],
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


router = APIRouter(
    responses={
        code: {"model": ErrorResponse}
        for code in (
            status.HTTP_401_UNAUTHORIZED,
            status.HTTP_404_NOT_FOUND,
            status.HTTP_409_CONFLICT,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            status.HTTP_502_BAD_GATEWAY,
            status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    }
)


@router.get("/health", response_model=HealthResponse)
def health(services: Services = Depends(get_services)) -> HealthResponse:
    logger.debug({"event": "health.check"})
    return HealthResponse(
        ok=True, version=services.settings.VERSION, service=services.settings.APP_NAME
    )


@router.get("/api/items", response_model=List[MediaItem])
def list_items(
    q: Optional[str] = None,
    favorite: bool = False,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    mime_type: Optional[str] = None,
    camera_make: Optional[str] = None,
    camera_model: Optional[str] = None,
    has_faces: Optional[bool] = None,
    album_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    services: Services = Depends(get_services),
) -> List[MediaItem]:
    try:
        date_range = DateRange(start=start, end=end) if start or end else None
    except pydantic.ValidationError as exc:
        raise ValidationError(exc.errors()[0]["msg"]) from exc
    item_filter = ItemFilter(
        text=q,
        favorite_only=favorite,
        date_range=date_range,
        mime_type=mime_type,
        camera_make=camera_make,
        camera_model=camera_model,
        has_faces=has_faces,
        album_id=album_id,
        limit=limit,
        offset=offset,
    )
    return services.store.query_items(item_filter)


@router.get("/api/items/{item_id}", response_model=MediaItem)
def get_item(item_id: str, services: Services = Depends(get_services)) -> MediaItem:
    return services.store.get_item(item_id)


@router.put("/api/items/{item_id}/favorite", response_model=MediaItem)
async def set_favorite(
    item_id: str, body: FavoriteRequest, services: Services = Depends(get_services)
) -> MediaItem:
    return await services.actions.set_favorite(item_id, body.favorite)


@router.get("/api/items/{item_id}/faces", response_model=List[FaceBox])
def get_faces(item_id: str, services: Services = Depends(get_services)) -> List[FaceBox]:
    return services.store.get_faces(item_id)


@router.get("/api/albums", response_model=List[Album])
def list_albums(services: Services = Depends(get_services)) -> List[Album]:
    return services.store.list_albums()


@router.get("/api/albums/{album_id}", response_model=Album)
def get_album(album_id: str, services: Services = Depends(get_services)) -> Album:
    return services.store.get_album(album_id)


@router.post("/api/albums", response_model=Album, status_code=status.HTTP_201_CREATED)
async def create_album(
    body: AlbumTitleRequest, services: Services = Depends(get_services)
) -> Album:
    return await services.actions.create_album(body.title)


@router.patch("/api/albums/{album_id}", response_model=Album)
async def rename_album(
    album_id: str, body: AlbumTitleRequest, services: Services = Depends(get_services)
) -> Album:
    return await services.actions.rename_album(album_id, body.title)


@router.delete("/api/albums/{album_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_album(album_id: str, services: Services = Depends(get_services)) -> Response:
    await services.actions.delete_album(album_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/albums/{album_id}/items", response_model=AlbumItemResponse)
async def add_album_item(
    album_id: str, body: AlbumItemRequest, services: Services = Depends(get_services)
) -> AlbumItemResponse:
    changed = await services.actions.add_to_album(album_id, body.media_item_id)
    return AlbumItemResponse(album_id=album_id, media_item_id=body.media_item_id, changed=changed)


@router.delete("/api/albums/{album_id}/items/{item_id}", response_model=AlbumItemResponse)
async def remove_album_item(
    album_id: str, item_id: str, services: Services = Depends(get_services)
) -> AlbumItemResponse:
    changed = await services.actions.remove_from_album(album_id, item_id)
    return AlbumItemResponse(album_id=album_id, media_item_id=item_id, changed=changed)


@router.get("/api/stats", response_model=CacheStats)
def stats(services: Services = Depends(get_services)) -> CacheStats:
    return services.store.stats()


@router.post("/api/cache/clear", response_model=CacheStats)
async def clear_cache(services: Services = Depends(get_services)) -> CacheStats:
    return await services.scheduler.clear_cache()


@router.post("/api/cache/export", response_model=CacheTransferResponse)
async def export_cache(
    body: CacheTransferRequest, services: Services = Depends(get_services)
) -> CacheTransferResponse:
    return await services.scheduler.export_cache(body.directory)


@router.post("/api/cache/import", response_model=CacheTransferResponse)
async def import_cache(
    body: CacheTransferRequest, services: Services = Depends(get_services)
) -> CacheTransferResponse:
    return await services.scheduler.import_cache(body.directory)


@router.post(
    "/api/sync", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED
)
async def trigger_sync(
    restart: bool = False, services: Services = Depends(get_services)
) -> SyncTriggerResponse:
    scheduler = services.scheduler
    queued = scheduler.restart_sync() if restart else scheduler.trigger_sync()
    return SyncTriggerResponse(queued=queued, state=scheduler.sync_task.state.value)


@router.get("/api/sync/status", response_model=SchedulerStatus)
async def sync_status(services: Services = Depends(get_services)) -> SchedulerStatus:
    return await services.scheduler.snapshot()


async def handle_app_error(request: Request, exc: PhotoMirrorError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error({"event": "api.error", "path": request.url.path, "error": exc.message})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=type(exc).__name__, code=error_code(exc).value, message=exc.message
        ).model_dump(),
    )


def create_app(
    services: Optional[Services] = None,
    settings: Optional[Settings] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build the HTTP app.

    Passing ``services`` skips component construction, which is how tests
    run the routes against in-memory stores and fake remotes.
    """
    app = FastAPI(title="Photo Mirror")
    app.state.services = services
    app.include_router(router)
    app.add_exception_handler(PhotoMirrorError, handle_app_error)

    @app.on_event("startup")
    async def on_startup() -> None:
        resolved = settings or (services.settings if services else get_settings())
        setup_logging(resolved)
        if app.state.services is None:
            app.state.services = build_services(resolved)
        logger.info(
            {
                "event": "boot",
                "service": resolved.APP_NAME,
                "version": resolved.VERSION,
                "schema_version": app.state.services.store.schema_version,
            }
        )
        if start_scheduler:
            await app.state.services.scheduler.start()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        current: Optional[Services] = app.state.services
        if current is None:
            return
        await current.scheduler.stop()
        for close in current.closers:
            await close()
        current.store.close()
        logger.info({"event": "shutdown"})

    return app


app = create_app()
