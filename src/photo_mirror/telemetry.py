"""Logging configuration."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import Settings

ROOT_LOGGER = "photo_mirror"


class StructuredFormatter(logging.Formatter):
    """Render log records as single-line JSON.

    Loggers in this package pass dicts as the message (``{"event": ...}``);
    those are merged into the output object. Plain string messages land under
    ``message``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        if isinstance(record.msg, dict):
            payload.update(record.msg)
        else:
            payload["message"] = record.getMessage()
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """Configure the package logger from settings. Safe to call repeatedly."""
    level = (settings.LOG_LEVEL if settings else "INFO").upper()
    fmt = settings.LOG_FORMAT if settings else "json"

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if getattr(handler, "_photo_mirror", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._photo_mirror = True  # type: ignore[attr-defined]
    if fmt == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    logger.addHandler(handler)
    logger.propagate = False
    return logger
