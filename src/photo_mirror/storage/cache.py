"""Durable, queryable mirror of remote media items and albums."""
from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import pydantic
from pydantic import TypeAdapter
from sqlalchemy import delete, exists, func, literal_column, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings
from ..errors import (
    ConstraintViolationError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from ..schemas import (
    Album,
    CacheStats,
    FaceBox,
    ItemFilter,
    MediaDiff,
    MediaItem,
    SyncSnapshot,
)
from .db import create_engine_for, make_session_factory, session_scope
from .migrations import apply_migrations
from .models import (
    AlbumMediaItemRow,
    AlbumRow,
    FaceTagRow,
    MediaItemRow,
    SyncStateRow,
    ThumbnailRow,
    media_items_fts,
)

logger = logging.getLogger("photo_mirror.storage.cache")

# Columns a sync may overwrite. is_favorite is handled separately.
_MEDIA_FIELDS = (
    "filename",
    "description",
    "mime_type",
    "width",
    "height",
    "creation_time",
    "base_url",
    "product_url",
    "camera_make",
    "camera_model",
)
_ALBUM_FIELDS = ("title", "cover_item_id", "product_url", "is_writeable", "media_items_count")
_CHUNK = 500
_TRIGRAM = 3

_media_list = TypeAdapter(List[MediaItem])
_album_list = TypeAdapter(List[Album])

MEDIA_EXPORT_FILE = "media_items.json"
ALBUM_EXPORT_FILE = "albums.json"
FACE_EXPORT_FILE = "faces.json"


def _chunks(values: Sequence[str], size: int = _CHUNK) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _to_media_item(row: MediaItemRow) -> MediaItem:
    return MediaItem(
        id=row.id,
        filename=row.filename,
        description=row.description,
        mime_type=row.mime_type,
        width=row.width,
        height=row.height,
        creation_time=row.creation_time,
        base_url=row.base_url,
        product_url=row.product_url,
        is_favorite=bool(row.is_favorite),
        camera_make=row.camera_make,
        camera_model=row.camera_model,
    )


def _to_album(row: AlbumRow, member_ids: Optional[List[str]] = None) -> Album:
    return Album(
        id=row.id,
        title=row.title,
        cover_item_id=row.cover_item_id,
        product_url=row.product_url,
        is_writeable=row.is_writeable,
        media_items_count=row.media_items_count,
        media_item_ids=member_ids,
    )


def _coerce_boxes(boxes: Iterable[Union[FaceBox, Dict[str, Any]]]) -> List[FaceBox]:
    try:
        return [b if isinstance(b, FaceBox) else FaceBox.model_validate(b) for b in boxes]
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid face box: {exc.errors()[0]['msg']}") from exc


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CacheStore:
    """SQLite-backed cache of the remote photo library.

    Every mutation runs in a single transaction under a process-wide write
    lock. The full-text index is maintained by triggers, so it is updated in
    the same transaction as the row it mirrors. File databases run in WAL
    mode: readers use their own pooled connections and only ever observe
    committed snapshots. An in-memory store shares one connection, so its
    reads take the write lock as well.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._engine = create_engine_for(settings.DB_PATH)
        self._sessions = make_session_factory(self._engine)
        self._write_lock = threading.RLock()
        self._read_guard = self._write_lock if settings.is_memory_db else nullcontext()
        try:
            self.schema_version = apply_migrations(self._engine)
        except SQLAlchemyError as exc:
            logger.error({"event": "storage.migration.failed", "error": str(exc)})
            raise StorageError(f"Failed to apply migrations: {exc}") from exc
        logger.info(
            {
                "event": "storage.opened",
                "db": "memory" if settings.is_memory_db else Path(settings.DB_PATH).name,
                "schema_version": self.schema_version,
            }
        )

    # Session helpers ---------------------------------------------------------

    @contextmanager
    def _write(self, operation: str) -> Iterator[Session]:
        with self._write_lock:
            try:
                with session_scope(self._sessions) as session:
                    yield session
            except SQLAlchemyError as exc:
                logger.error(
                    {"event": "storage.write.failed", "operation": operation, "error": str(exc)}
                )
                raise StorageError(f"{operation} failed: {exc}") from exc

    @contextmanager
    def _read(self, operation: str) -> Iterator[Session]:
        with self._read_guard:
            session: Session = self._sessions()
            try:
                yield session
            except SQLAlchemyError as exc:
                logger.error(
                    {"event": "storage.read.failed", "operation": operation, "error": str(exc)}
                )
                raise StorageError(f"{operation} failed: {exc}") from exc
            finally:
                session.close()

    @staticmethod
    def _require_item(session: Session, item_id: str) -> None:
        if session.get(MediaItemRow, item_id) is None:
            raise NotFoundError(f"Media item {item_id!r} not found")

    @staticmethod
    def _existing_ids(session: Session, column, ids: Sequence[str]) -> set:
        found: set = set()
        for chunk in _chunks(list(ids)):
            found.update(session.execute(select(column).where(column.in_(chunk))).scalars())
        return found

    # Media items -------------------------------------------------------------

    def _diff(self, session: Session, items: Sequence[MediaItem]) -> MediaDiff:
        rows: Dict[str, MediaItemRow] = {}
        ids = [item.id for item in items]
        for chunk in _chunks(ids):
            for row in session.execute(
                select(MediaItemRow).where(MediaItemRow.id.in_(chunk))
            ).scalars():
                rows[row.id] = row

        diff = MediaDiff()
        seen: set = set()
        for item in items:
            if item.id in seen:
                continue
            seen.add(item.id)
            row = rows.get(item.id)
            if row is None:
                diff.new_ids.append(item.id)
                continue
            changed = any(getattr(item, name) != getattr(row, name) for name in _MEDIA_FIELDS)
            if item.is_favorite is not None and item.is_favorite != bool(row.is_favorite):
                changed = True
            (diff.changed_ids if changed else diff.unchanged_ids).append(item.id)
        return diff

    @staticmethod
    def _upsert_items(session: Session, items: Sequence[MediaItem]) -> None:
        for item in items:
            values = {name: getattr(item, name) for name in _MEDIA_FIELDS}
            values["id"] = item.id
            values["is_favorite"] = bool(item.is_favorite)
            stmt = sqlite_insert(MediaItemRow).values(**values)
            updates = {name: stmt.excluded[name] for name in _MEDIA_FIELDS}
            if item.is_favorite is not None:
                updates["is_favorite"] = stmt.excluded.is_favorite
            session.execute(stmt.on_conflict_do_update(index_elements=["id"], set_=updates))

    def upsert_media_items(self, batch: Iterable[MediaItem]) -> int:
        """Insert or update a batch atomically; any failing row rolls back all of them."""
        items = list(batch)
        if not items:
            return 0
        with self._write("upsert_media_items") as session:
            self._upsert_items(session, items)
        logger.debug({"event": "storage.media.upserted", "count": len(items)})
        return len(items)

    def diff_media_items(self, batch: Iterable[MediaItem]) -> MediaDiff:
        """Classify a batch against the cache without writing anything."""
        items = list(batch)
        with self._read("diff_media_items") as session:
            return self._diff(session, items)

    def apply_media_page(
        self, batch: Iterable[MediaItem], next_cursor: Optional[str]
    ) -> MediaDiff:
        """Write the new and changed items of a sync page plus the resume cursor.

        Both land in one transaction: after a crash the cursor never points
        past rows that were not committed.
        """
        items = list(batch)
        with self._write("apply_media_page") as session:
            diff = self._diff(session, items)
            touched = set(diff.new_ids) | set(diff.changed_ids)
            self._upsert_items(session, [item for item in items if item.id in touched])
            session.execute(
                update(SyncStateRow)
                .where(SyncStateRow.id == 1)
                .values(
                    cursor=next_cursor,
                    total_synced=SyncStateRow.total_synced + len(touched),
                )
            )
        return diff

    def get_item(self, item_id: str) -> MediaItem:
        with self._read("get_item") as session:
            row = session.get(MediaItemRow, item_id)
            if row is None:
                raise NotFoundError(f"Media item {item_id!r} not found")
            return _to_media_item(row)

    def set_favorite(self, item_id: str, favorite: bool) -> None:
        with self._write("set_favorite") as session:
            result = session.execute(
                update(MediaItemRow)
                .where(MediaItemRow.id == item_id)
                .values(is_favorite=bool(favorite))
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Media item {item_id!r} not found")

    def delete_media_item(self, item_id: str) -> None:
        """Remove an item with its associations, faces, thumbnail and index entry."""
        with self._write("delete_media_item") as session:
            self._require_item(session, item_id)
            session.execute(
                delete(AlbumMediaItemRow).where(AlbumMediaItemRow.media_item_id == item_id)
            )
            session.execute(delete(FaceTagRow).where(FaceTagRow.media_item_id == item_id))
            session.execute(delete(ThumbnailRow).where(ThumbnailRow.media_item_id == item_id))
            session.execute(
                update(AlbumRow).where(AlbumRow.cover_item_id == item_id).values(cover_item_id=None)
            )
            session.execute(delete(MediaItemRow).where(MediaItemRow.id == item_id))

    def query_items(self, filter: Optional[ItemFilter] = None) -> List[MediaItem]:
        """Return items matching every option of ``filter``.

        Ordered by creation time, newest first, ties broken by id so that
        paginated listings are reproducible.
        """
        filter = filter or ItemFilter()
        stmt = select(MediaItemRow)

        text_query = (filter.text or "").strip()
        if text_query:
            if len(text_query) >= _TRIGRAM:
                phrase = '"' + text_query.replace('"', '""') + '"'
                matches = select(media_items_fts.c.rowid).where(
                    literal_column("media_items_fts").op("MATCH")(phrase)
                )
                stmt = stmt.where(literal_column("media_items.rowid").in_(matches))
            else:
                # Shorter than one trigram: scan the text columns instead.
                pattern = f"%{_escape_like(text_query)}%"
                stmt = stmt.where(
                    or_(
                        MediaItemRow.filename.ilike(pattern, escape="\\"),
                        MediaItemRow.description.ilike(pattern, escape="\\"),
                    )
                )

        if filter.favorite_only:
            stmt = stmt.where(MediaItemRow.is_favorite.is_(True))
        if filter.date_range is not None:
            if filter.date_range.start is not None:
                stmt = stmt.where(MediaItemRow.creation_time >= filter.date_range.start)
            if filter.date_range.end is not None:
                stmt = stmt.where(MediaItemRow.creation_time <= filter.date_range.end)
        if filter.mime_type:
            stmt = stmt.where(MediaItemRow.mime_type == filter.mime_type)
        if filter.camera_make:
            stmt = stmt.where(MediaItemRow.camera_make == filter.camera_make)
        if filter.camera_model:
            stmt = stmt.where(MediaItemRow.camera_model == filter.camera_model)
        if filter.has_faces is not None:
            has_face = exists().where(FaceTagRow.media_item_id == MediaItemRow.id)
            stmt = stmt.where(has_face if filter.has_faces else ~has_face)
        if filter.album_id:
            members = select(AlbumMediaItemRow.media_item_id).where(
                AlbumMediaItemRow.album_id == filter.album_id
            )
            stmt = stmt.where(MediaItemRow.id.in_(members))

        stmt = stmt.order_by(MediaItemRow.creation_time.desc(), MediaItemRow.id.asc())
        if filter.offset:
            stmt = stmt.offset(filter.offset)
        if filter.limit is not None:
            stmt = stmt.limit(filter.limit)

        with self._read("query_items") as session:
            items = [_to_media_item(row) for row in session.execute(stmt).scalars()]
        logger.debug({"event": "storage.query", "count": len(items)})
        return items

    # Albums ------------------------------------------------------------------

    def _upsert_album_rows(self, session: Session, albums: Sequence[Album]) -> None:
        for album in albums:
            values = {name: getattr(album, name) for name in _ALBUM_FIELDS}
            values["id"] = album.id
            stmt = sqlite_insert(AlbumRow).values(**values)
            session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={name: stmt.excluded[name] for name in _ALBUM_FIELDS},
                )
            )
            if album.media_item_ids is None:
                continue
            session.execute(delete(AlbumMediaItemRow).where(AlbumMediaItemRow.album_id == album.id))
            wanted = list(dict.fromkeys(album.media_item_ids))
            present = self._existing_ids(session, MediaItemRow.id, wanted)
            skipped = [item_id for item_id in wanted if item_id not in present]
            if skipped:
                logger.info(
                    {
                        "event": "storage.album.members_skipped",
                        "album_id": album.id,
                        "count": len(skipped),
                    }
                )
            for item_id in wanted:
                if item_id in present:
                    session.execute(
                        sqlite_insert(AlbumMediaItemRow)
                        .values(album_id=album.id, media_item_id=item_id)
                        .on_conflict_do_nothing()
                    )

    def upsert_albums(self, batch: Iterable[Album]) -> int:
        """Insert or update albums atomically.

        An album that carries ``media_item_ids`` has its membership replaced;
        ids of items that are not cached are skipped.
        """
        albums = list(batch)
        if not albums:
            return 0
        with self._write("upsert_albums") as session:
            self._upsert_album_rows(session, albums)
        return len(albums)

    def sync_albums(self, batch: Iterable[Album]) -> Tuple[int, int]:
        """Mirror the remote album list: upsert all, drop local albums not in it."""
        albums = list(batch)
        keep = [album.id for album in albums]
        with self._write("sync_albums") as session:
            self._upsert_album_rows(session, albums)
            stale_stmt = select(AlbumRow.id)
            if keep:
                stale_stmt = stale_stmt.where(AlbumRow.id.not_in(keep))
            stale = list(session.execute(stale_stmt).scalars())
            for chunk in _chunks(stale):
                session.execute(
                    delete(AlbumMediaItemRow).where(AlbumMediaItemRow.album_id.in_(chunk))
                )
                session.execute(delete(AlbumRow).where(AlbumRow.id.in_(chunk)))
        if stale:
            logger.info({"event": "storage.albums.pruned", "count": len(stale)})
        return len(albums), len(stale)

    def _album_member_ids(self, session: Session, album_id: str) -> List[str]:
        stmt = (
            select(MediaItemRow.id)
            .join(AlbumMediaItemRow, AlbumMediaItemRow.media_item_id == MediaItemRow.id)
            .where(AlbumMediaItemRow.album_id == album_id)
            .order_by(MediaItemRow.creation_time.desc(), MediaItemRow.id.asc())
        )
        return list(session.execute(stmt).scalars())

    def get_album(self, album_id: str) -> Album:
        with self._read("get_album") as session:
            row = session.get(AlbumRow, album_id)
            if row is None:
                raise NotFoundError(f"Album {album_id!r} not found")
            return _to_album(row, self._album_member_ids(session, album_id))

    def list_albums(self) -> List[Album]:
        with self._read("list_albums") as session:
            rows = session.execute(select(AlbumRow).order_by(AlbumRow.title, AlbumRow.id)).scalars()
            return [_to_album(row) for row in rows]

    def rename_album(self, album_id: str, title: str) -> None:
        with self._write("rename_album") as session:
            result = session.execute(
                update(AlbumRow).where(AlbumRow.id == album_id).values(title=title)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Album {album_id!r} not found")

    def delete_album(self, album_id: str) -> None:
        """Delete an album and its associations; the referenced items stay."""
        with self._write("delete_album") as session:
            if session.get(AlbumRow, album_id) is None:
                raise NotFoundError(f"Album {album_id!r} not found")
            session.execute(delete(AlbumMediaItemRow).where(AlbumMediaItemRow.album_id == album_id))
            session.execute(delete(AlbumRow).where(AlbumRow.id == album_id))

    def _require_pair(self, session: Session, album_id: str, item_id: str) -> None:
        missing = []
        if session.get(AlbumRow, album_id) is None:
            missing.append(f"album {album_id!r}")
        if session.get(MediaItemRow, item_id) is None:
            missing.append(f"media item {item_id!r}")
        if missing:
            raise ConstraintViolationError("Unknown " + " and ".join(missing))

    def require_album_and_item(self, album_id: str, item_id: str) -> None:
        with self._read("require_album_and_item") as session:
            self._require_pair(session, album_id, item_id)

    def add_to_album(self, album_id: str, item_id: str) -> bool:
        """Associate an item with an album. Returns False if it already was."""
        with self._write("add_to_album") as session:
            self._require_pair(session, album_id, item_id)
            result = session.execute(
                sqlite_insert(AlbumMediaItemRow)
                .values(album_id=album_id, media_item_id=item_id)
                .on_conflict_do_nothing()
            )
            return result.rowcount > 0

    def remove_from_album(self, album_id: str, item_id: str) -> bool:
        with self._write("remove_from_album") as session:
            self._require_pair(session, album_id, item_id)
            result = session.execute(
                delete(AlbumMediaItemRow).where(
                    AlbumMediaItemRow.album_id == album_id,
                    AlbumMediaItemRow.media_item_id == item_id,
                )
            )
            return result.rowcount > 0

    # Faces -------------------------------------------------------------------

    def _replace_faces(self, session: Session, item_id: str, boxes: List[FaceBox]) -> None:
        self._require_item(session, item_id)
        session.execute(delete(FaceTagRow).where(FaceTagRow.media_item_id == item_id))
        for position, box in enumerate(boxes):
            session.add(
                FaceTagRow(
                    media_item_id=item_id,
                    position=position,
                    x=box.x,
                    y=box.y,
                    width=box.width,
                    height=box.height,
                    name=box.name,
                )
            )

    def insert_faces(self, item_id: str, boxes: Iterable[Union[FaceBox, Dict[str, Any]]]) -> int:
        """Replace the face tags of an item with ``boxes``."""
        coerced = _coerce_boxes(boxes)
        with self._write("insert_faces") as session:
            self._replace_faces(session, item_id, coerced)
        return len(coerced)

    def get_faces(self, item_id: str) -> List[FaceBox]:
        with self._read("get_faces") as session:
            self._require_item(session, item_id)
            rows = session.execute(
                select(FaceTagRow)
                .where(FaceTagRow.media_item_id == item_id)
                .order_by(FaceTagRow.position)
            ).scalars()
            return [
                FaceBox(x=r.x, y=r.y, width=r.width, height=r.height, name=r.name) for r in rows
            ]

    def name_face(self, item_id: str, index: int, name: Optional[str]) -> None:
        with self._write("name_face") as session:
            result = session.execute(
                update(FaceTagRow)
                .where(FaceTagRow.media_item_id == item_id, FaceTagRow.position == index)
                .values(name=name)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Face {index} of media item {item_id!r} not found")

    # Thumbnails --------------------------------------------------------------

    def record_thumbnail(self, item_id: str, path: Union[str, Path]) -> None:
        with self._write("record_thumbnail") as session:
            self._require_item(session, item_id)
            stmt = sqlite_insert(ThumbnailRow).values(
                media_item_id=item_id, path=str(path), fetched_at=datetime.now(timezone.utc)
            )
            session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["media_item_id"],
                    set_={"path": stmt.excluded.path, "fetched_at": stmt.excluded.fetched_at},
                )
            )

    def get_thumbnail_path(self, item_id: str) -> Optional[Path]:
        with self._read("get_thumbnail_path") as session:
            row = session.get(ThumbnailRow, item_id)
            return Path(row.path) if row is not None else None

    # Sync state --------------------------------------------------------------

    def get_sync_state(self) -> SyncSnapshot:
        with self._read("get_sync_state") as session:
            row = session.get(SyncStateRow, 1)
            if row is None:  # pragma: no cover - seeded by the first migration
                return SyncSnapshot()
            return SyncSnapshot(
                last_synced_at=row.last_synced_at,
                cursor=row.cursor,
                total_synced=row.total_synced,
            )

    def mark_synced(self, at: Optional[datetime] = None) -> datetime:
        """Record a completed sync and clear the resume cursor."""
        at = at or datetime.now(timezone.utc)
        with self._write("mark_synced") as session:
            session.execute(
                update(SyncStateRow)
                .where(SyncStateRow.id == 1)
                .values(last_synced_at=at, cursor=None)
            )
        return at

    # Maintenance -------------------------------------------------------------

    def stats(self) -> CacheStats:
        with self._read("stats") as session:

            def count(column) -> int:
                return session.execute(select(func.count(column))).scalar_one()

            return CacheStats(
                albums=count(AlbumRow.id),
                items=count(MediaItemRow.id),
                faces=count(FaceTagRow.id),
                thumbnails=count(ThumbnailRow.media_item_id),
            )

    def clear(self) -> None:
        """Remove every cached entity and reset the sync state."""
        with self._write("clear") as session:
            session.execute(delete(AlbumMediaItemRow))
            session.execute(delete(FaceTagRow))
            session.execute(delete(ThumbnailRow))
            session.execute(delete(AlbumRow))
            session.execute(delete(MediaItemRow))
            session.execute(
                update(SyncStateRow)
                .where(SyncStateRow.id == 1)
                .values(last_synced_at=None, cursor=None, total_synced=0)
            )
        logger.info({"event": "storage.cleared"})

    def close(self) -> None:
        self._engine.dispose()

    # Export / import ---------------------------------------------------------

    @staticmethod
    def _write_json(path: Union[str, Path], payload: bytes) -> None:
        try:
            Path(path).write_bytes(payload)
        except OSError as exc:
            raise StorageError(f"Failed to write export file: {exc}") from exc

    @staticmethod
    def _read_json(path: Union[str, Path]) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read import file: {exc}") from exc

    def export_media_items(self, path: Union[str, Path]) -> int:
        items = self.query_items()
        self._write_json(path, _media_list.dump_json(items, indent=2))
        return len(items)

    def export_albums(self, path: Union[str, Path]) -> int:
        with self._read("export_albums") as session:
            albums = [
                _to_album(row, self._album_member_ids(session, row.id))
                for row in session.execute(select(AlbumRow).order_by(AlbumRow.id)).scalars()
            ]
        self._write_json(path, _album_list.dump_json(albums, indent=2))
        return len(albums)

    def export_faces(self, path: Union[str, Path]) -> int:
        with self._read("export_faces") as session:
            rows = session.execute(
                select(FaceTagRow).order_by(FaceTagRow.media_item_id, FaceTagRow.position)
            ).scalars()
            grouped: Dict[str, List[Dict[str, Any]]] = {}
            for row in rows:
                grouped.setdefault(row.media_item_id, []).append(
                    FaceBox(
                        x=row.x, y=row.y, width=row.width, height=row.height, name=row.name
                    ).model_dump()
                )
        payload = [{"media_item_id": key, "faces": faces} for key, faces in grouped.items()]
        self._write_json(path, json.dumps(payload, indent=2).encode("utf-8"))
        return len(payload)

    def import_media_items(self, path: Union[str, Path]) -> int:
        try:
            items = _media_list.validate_json(self._read_json(path))
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid media item export: {exc.error_count()} errors") from exc
        return self.upsert_media_items(items)

    def import_albums(self, path: Union[str, Path]) -> int:
        try:
            albums = _album_list.validate_json(self._read_json(path))
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid album export: {exc.error_count()} errors") from exc
        return self.upsert_albums(albums)

    def import_faces(self, path: Union[str, Path]) -> int:
        try:
            entries = json.loads(self._read_json(path))
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid face export: {exc}") from exc
        if not isinstance(entries, list):
            raise ValidationError("Invalid face export: expected a list")
        parsed = []
        for entry in entries:
            if not isinstance(entry, dict) or "media_item_id" not in entry:
                raise ValidationError("Invalid face export entry")
            parsed.append((entry["media_item_id"], _coerce_boxes(entry.get("faces", []))))
        with self._write("import_faces") as session:
            for item_id, boxes in parsed:
                self._replace_faces(session, item_id, boxes)
        return len(parsed)

    def export_to(self, directory: Union[str, Path]) -> Tuple[int, int, int]:
        """Write items, albums and faces as JSON files into ``directory``.

        Returns the (items, albums, faces) counts written.
        """
        target = Path(directory)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create export directory: {exc}") from exc
        counts = (
            self.export_media_items(target / MEDIA_EXPORT_FILE),
            self.export_albums(target / ALBUM_EXPORT_FILE),
            self.export_faces(target / FACE_EXPORT_FILE),
        )
        logger.info({"event": "storage.exported", "directory": str(target), "counts": counts})
        return counts

    def import_from(self, directory: Union[str, Path]) -> Tuple[int, int, int]:
        """Load a directory written by :meth:`export_to`. Items land first."""
        source = Path(directory)
        names = (MEDIA_EXPORT_FILE, ALBUM_EXPORT_FILE, FACE_EXPORT_FILE)
        missing = [name for name in names if not (source / name).is_file()]
        if missing:
            raise ValidationError(f"Export directory is missing {', '.join(missing)}")
        counts = (
            self.import_media_items(source / MEDIA_EXPORT_FILE),
            self.import_albums(source / ALBUM_EXPORT_FILE),
            self.import_faces(source / FACE_EXPORT_FILE),
        )
        logger.info({"event": "storage.imported", "directory": str(source), "counts": counts})
        return counts
