from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MediaItem(BaseModel):
    """A remote media item as mirrored in the cache."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(min_length=1)
    filename: str
    description: Optional[str] = None
    mime_type: str
    width: int = 0
    height: int = 0
    creation_time: datetime
    base_url: str = ""
    product_url: Optional[str] = None
    # None on records coming from sync: the locally stored flag is kept.
    is_favorite: Optional[bool] = None
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None

    @field_validator("creation_time")
    @classmethod
    def creation_time_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Album(BaseModel):
    id: str = Field(min_length=1)
    title: str = ""
    cover_item_id: Optional[str] = None
    product_url: Optional[str] = None
    is_writeable: Optional[bool] = None
    media_items_count: Optional[int] = None
    # Membership as reported by the remote; None leaves local membership as is.
    media_item_ids: Optional[List[str]] = None


class FaceBox(BaseModel):
    """Face bounding box in normalized [0, 1] image coordinates."""

    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(gt=0.0, le=1.0)
    height: float = Field(gt=0.0, le=1.0)
    name: Optional[str] = None

    @model_validator(mode="after")
    def box_inside_image(self) -> "FaceBox":
        if self.x + self.width > 1.0 + 1e-6 or self.y + self.height > 1.0 + 1e-6:
            raise ValueError("Face box extends outside the image.")
        return self


class DateRange(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def bounds_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def validate_order(self) -> "DateRange":
        if self.start and self.end and self.end < self.start:
            raise ValueError("End date must be on or after the start date.")
        return self


class ItemFilter(BaseModel):
    """Options recognized by ``CacheStore.query_items``; all compose with AND."""

    text: Optional[str] = None
    favorite_only: bool = False
    date_range: Optional[DateRange] = None
    mime_type: Optional[str] = None
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    has_faces: Optional[bool] = None
    album_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class Token(BaseModel):
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None

    @field_validator("expires_at")
    @classmethod
    def expires_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def expires_within(self, seconds: float) -> bool:
        return self.expires_at <= datetime.now(timezone.utc) + timedelta(seconds=seconds)


class CacheStats(BaseModel):
    albums: int
    items: int
    faces: int = 0
    thumbnails: int = 0


class SyncSnapshot(BaseModel):
    last_synced_at: Optional[datetime] = None
    cursor: Optional[str] = None
    total_synced: int = 0


class TaskStatus(BaseModel):
    state: str
    consecutive_failures: int = 0
    runs: int = 0
    last_error: Optional[str] = None


class SchedulerStatus(BaseModel):
    sync: TaskStatus
    token_refresh: TaskStatus
    last_synced_at: Optional[datetime] = None
    cursor: Optional[str] = None
    message: Optional[str] = None


@dataclass(slots=True)
class MediaPage:
    items: List[MediaItem]
    next_cursor: Optional[str] = None


@dataclass(slots=True)
class MediaDiff:
    new_ids: List[str] = field(default_factory=list)
    changed_ids: List[str] = field(default_factory=list)
    unchanged_ids: List[str] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return len(self.new_ids) + len(self.changed_ids)


# HTTP API payloads


class HealthResponse(BaseModel):
    ok: bool
    version: str
    service: str


class FavoriteRequest(BaseModel):
    favorite: bool


class AlbumTitleRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)


class AlbumItemRequest(BaseModel):
    media_item_id: str = Field(min_length=1)


class AlbumItemResponse(BaseModel):
    album_id: str
    media_item_id: str
    changed: bool


class SyncTriggerResponse(BaseModel):
    queued: bool
    state: str


class ErrorResponse(BaseModel):
    error: str
    code: str
    message: str


class CacheTransferRequest(BaseModel):
    directory: str = Field(min_length=1)


class CacheTransferResponse(BaseModel):
    directory: str
    items: int
    albums: int
    faces: int
