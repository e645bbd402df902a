from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger("photo_mirror.storage")

MEMORY_PATHS = ("", ":memory:", "memory")


def _make_sqlite_url(path: Union[str, Path]) -> str:
    p = Path(path)
    if not p.is_absolute():
        p = p.resolve()
    # Use forward slashes for SQLAlchemy URL on Windows
    return f"sqlite:///{p.as_posix()}"


def _install_pragmas(engine: Engine, *, wal: bool) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()


def create_engine_for(path: Union[str, Path, None]) -> Engine:
    """Return an Engine for the cache database at ``path``.

    - ``None`` / ``":memory:"`` give a single shared in-memory connection.
    - A filesystem path gets a pooled file engine in WAL mode, so readers on
      other connections see committed snapshots while a writer is active.
    """
    if path is None or str(path) in MEMORY_PATHS:
        engine = sa.create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
        _install_pragmas(engine, wal=False)
        return engine

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    engine = sa.create_engine(
        _make_sqlite_url(p),
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    _install_pragmas(engine, wal=True)
    logger.debug({"event": "storage.engine.created", "db": p.name})
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Yield a Session; commit on success, roll back on exception, always close."""
    sess: Session = factory()
    try:
        yield sess
        sess.commit()
    except Exception:
        sess.rollback()
        raise
    finally:
        sess.close()
