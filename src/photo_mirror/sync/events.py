"""Events published on the status channel.

Each outcome of a periodic task is its own type so listeners can branch on
``isinstance`` (or ``match``) instead of parsing messages.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from ..errors import ErrorCode


class TaskKind(str, Enum):
    SYNC = "sync"
    TOKEN_REFRESH = "token_refresh"


class TaskState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    BACKOFF = "backoff"
    ABORTED = "aborted"
    STOPPED = "stopped"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StateChanged:
    task: TaskKind
    state: TaskState
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class Progress:
    task: TaskKind
    synced: int
    message: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class TaskFailed:
    task: TaskKind
    code: ErrorCode
    message: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class RestartAttempt:
    task: TaskKind
    attempt: int
    delay: float
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class Aborted:
    task: TaskKind
    reason: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class Status:
    task: TaskKind
    last_synced: Optional[datetime]
    message: str
    at: datetime = field(default_factory=_now)


Event = Union[StateChanged, Progress, TaskFailed, RestartAttempt, Aborted, Status]


def describe(event: Event) -> dict:
    """Flatten an event into a JSON-friendly dict for logs and the HTTP API."""
    payload = {"type": type(event).__name__}
    for name, value in vars(event).items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        payload[name] = value
    return payload
