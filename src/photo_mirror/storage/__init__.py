from .cache import CacheStore
from .db import create_engine_for, make_session_factory, session_scope
from .migrations import MIGRATIONS, apply_migrations, current_version

__all__ = [
    "CacheStore",
    "MIGRATIONS",
    "apply_migrations",
    "create_engine_for",
    "current_version",
    "make_session_factory",
    "session_scope",
]
