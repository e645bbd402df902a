from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Store timestamps as naive UTC, hand them back timezone-aware."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    pass


class SchemaVersion(Base):
    __tablename__ = "schema_version"

    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    description: Mapped[str] = mapped_column(String(256), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class MediaItemRow(Base):
    __tablename__ = "media_items"
    __table_args__ = (
        CheckConstraint("width >= 0 AND height >= 0", name="ck_media_items_dimensions"),
        Index("ix_media_items_listing", "creation_time", "id"),
    )

    id: Mapped[str] = mapped_column(String(256), primary_key=True)
    filename: Mapped[str] = mapped_column(String(1024), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    width: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    height: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    creation_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    base_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    product_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_favorite: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )
    camera_make: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, index=True)
    camera_model: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, index=True)


class AlbumRow(Base):
    __tablename__ = "albums"

    id: Mapped[str] = mapped_column(String(256), primary_key=True)
    title: Mapped[str] = mapped_column(String(1024), nullable=False, default="", index=True)
    # Weak reference: no foreign key, the album does not own its cover.
    cover_item_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    product_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_writeable: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    media_items_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class AlbumMediaItemRow(Base):
    __tablename__ = "album_media_items"

    album_id: Mapped[str] = mapped_column(
        ForeignKey("albums.id", ondelete="CASCADE"), primary_key=True
    )
    media_item_id: Mapped[str] = mapped_column(
        ForeignKey("media_items.id", ondelete="CASCADE"), primary_key=True, index=True
    )


class FaceTagRow(Base):
    __tablename__ = "face_tags"
    __table_args__ = (
        UniqueConstraint("media_item_id", "position", name="uq_face_tags_item_position"),
        CheckConstraint(
            "x >= 0 AND x <= 1 AND y >= 0 AND y <= 1 "
            "AND width > 0 AND width <= 1 AND height > 0 AND height <= 1",
            name="ck_face_tags_normalized",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    media_item_id: Mapped[str] = mapped_column(
        ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    x: Mapped[float] = mapped_column(Float, nullable=False)
    y: Mapped[float] = mapped_column(Float, nullable=False)
    width: Mapped[float] = mapped_column(Float, nullable=False)
    height: Mapped[float] = mapped_column(Float, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)


class ThumbnailRow(Base):
    __tablename__ = "thumbnails"

    media_item_id: Mapped[str] = mapped_column(
        ForeignKey("media_items.id", ondelete="CASCADE"), primary_key=True
    )
    path: Mapped[str] = mapped_column(Text, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class SyncStateRow(Base):
    __tablename__ = "sync_state"
    __table_args__ = (CheckConstraint("id = 1", name="ck_sync_state_singleton"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cursor: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# The FTS5 table is created by a migration, never by ``create_all``; it lives
# in its own metadata so queries can reference its columns. It is an
# external-content index over media_items: its rowid is the media_items rowid.
search_metadata = MetaData()
media_items_fts = Table(
    "media_items_fts",
    search_metadata,
    Column("rowid", Integer, primary_key=True),
    Column("filename", Text),
    Column("description", Text),
)
