"""Versioned, forward-only schema migrations.

Every step is idempotent: DDL uses ``IF NOT EXISTS`` / ``checkfirst`` and the
applied version is recorded in ``schema_version`` inside the same
transaction, so re-opening a store never re-applies or fails.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List

from sqlalchemy import Connection, insert, select, text
from sqlalchemy.engine import Engine

from .models import (
    AlbumMediaItemRow,
    AlbumRow,
    Base,
    FaceTagRow,
    MediaItemRow,
    SchemaVersion,
    SyncStateRow,
    ThumbnailRow,
)

logger = logging.getLogger("photo_mirror.storage.migrations")


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    apply: Callable[[Connection], None]


def _create_core_tables(conn: Connection) -> None:
    Base.metadata.create_all(
        conn,
        tables=[
            MediaItemRow.__table__,
            AlbumRow.__table__,
            AlbumMediaItemRow.__table__,
            SyncStateRow.__table__,
        ],
        checkfirst=True,
    )
    conn.execute(
        text("INSERT OR IGNORE INTO sync_state (id, total_synced) VALUES (1, 0)")
    )


def _create_face_tags(conn: Connection) -> None:
    Base.metadata.create_all(conn, tables=[FaceTagRow.__table__], checkfirst=True)


def _create_thumbnails(conn: Connection) -> None:
    Base.metadata.create_all(conn, tables=[ThumbnailRow.__table__], checkfirst=True)


_SEARCH_INDEX_DDL = (
    # Trigram tokenizer: case-insensitive substring matching on both columns.
    "CREATE VIRTUAL TABLE IF NOT EXISTS media_items_fts USING fts5("
    "media_item_id UNINDEXED, filename, description, tokenize='trigram')",
    "DELETE FROM media_items_fts",
    "INSERT INTO media_items_fts (media_item_id, filename, description) "
    "SELECT id, filename, coalesce(description, '') FROM media_items",
    "CREATE TRIGGER IF NOT EXISTS media_items_ai AFTER INSERT ON media_items BEGIN "
    "INSERT INTO media_items_fts (media_item_id, filename, description) "
    "VALUES (new.id, new.filename, coalesce(new.description, '')); END",
    "CREATE TRIGGER IF NOT EXISTS media_items_ad AFTER DELETE ON media_items BEGIN "
    "DELETE FROM media_items_fts WHERE media_item_id = old.id; END",
    "CREATE TRIGGER IF NOT EXISTS media_items_au AFTER UPDATE OF filename, description "
    "ON media_items BEGIN "
    "UPDATE media_items_fts SET filename = new.filename, "
    "description = coalesce(new.description, '') WHERE media_item_id = old.id; END",
)


def _create_search_index(conn: Connection) -> None:
    for statement in _SEARCH_INDEX_DDL:
        conn.execute(text(statement))


# External-content index keyed by the media_items rowid, so trigger upkeep is
# a rowid lookup instead of a scan. The update trigger only fires when the
# indexed text actually changed.
_ROWID_SEARCH_INDEX_DDL = (
    "DROP TRIGGER IF EXISTS media_items_ai",
    "DROP TRIGGER IF EXISTS media_items_ad",
    "DROP TRIGGER IF EXISTS media_items_au",
    "DROP TABLE IF EXISTS media_items_fts",
    "CREATE VIRTUAL TABLE media_items_fts USING fts5("
    "filename, description, content='media_items', content_rowid='rowid', "
    "tokenize='trigram')",
    "INSERT INTO media_items_fts (media_items_fts) VALUES ('rebuild')",
    "CREATE TRIGGER media_items_ai AFTER INSERT ON media_items BEGIN "
    "INSERT INTO media_items_fts (rowid, filename, description) "
    "VALUES (new.rowid, new.filename, new.description); END",
    "CREATE TRIGGER media_items_ad AFTER DELETE ON media_items BEGIN "
    "INSERT INTO media_items_fts (media_items_fts, rowid, filename, description) "
    "VALUES ('delete', old.rowid, old.filename, old.description); END",
    "CREATE TRIGGER media_items_au AFTER UPDATE OF filename, description "
    "ON media_items "
    "WHEN old.filename IS NOT new.filename OR old.description IS NOT new.description "
    "BEGIN "
    "INSERT INTO media_items_fts (media_items_fts, rowid, filename, description) "
    "VALUES ('delete', old.rowid, old.filename, old.description); "
    "INSERT INTO media_items_fts (rowid, filename, description) "
    "VALUES (new.rowid, new.filename, new.description); END",
)


def _rebuild_search_index_by_rowid(conn: Connection) -> None:
    for statement in _ROWID_SEARCH_INDEX_DDL:
        conn.execute(text(statement))


MIGRATIONS: List[Migration] = [
    Migration(1, "media items, albums, associations, sync state", _create_core_tables),
    Migration(2, "face tags", _create_face_tags),
    Migration(3, "thumbnail locations", _create_thumbnails),
    Migration(4, "full-text search index over filename and description", _create_search_index),
    Migration(5, "search index keyed by media_items rowid", _rebuild_search_index_by_rowid),
]


def current_version(engine: Engine) -> int:
    Base.metadata.create_all(engine, tables=[SchemaVersion.__table__], checkfirst=True)
    with engine.connect() as conn:
        versions = conn.execute(select(SchemaVersion.version)).scalars().all()
    return max(versions, default=0)


def apply_migrations(engine: Engine, migrations: List[Migration] = MIGRATIONS) -> int:
    """Apply pending migrations in order and return the resulting version."""
    version = current_version(engine)
    for migration in sorted(migrations, key=lambda m: m.version):
        if migration.version <= version:
            continue
        with engine.begin() as conn:
            migration.apply(conn)
            conn.execute(
                insert(SchemaVersion).values(
                    version=migration.version,
                    description=migration.description,
                    applied_at=datetime.now(timezone.utc),
                )
            )
        version = migration.version
        logger.info(
            {
                "event": "storage.migration.applied",
                "version": migration.version,
                "description": migration.description,
            }
        )
    return version
