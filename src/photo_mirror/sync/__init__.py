"""Background synchronization: periodic tasks, token coordination, status events."""

from .channel import StatusChannel, Subscription
from .events import (
    Aborted,
    Event,
    Progress,
    RestartAttempt,
    StateChanged,
    Status,
    TaskFailed,
    TaskKind,
    TaskState,
)
from .scheduler import SyncScheduler
from .syncer import SyncReport, Syncer
from .tasks import BackoffPolicy, Failure, PeriodicTask, classify_error
from .tokens import TokenCoordinator, call_with_token

__all__ = [
    "Aborted",
    "BackoffPolicy",
    "Event",
    "Failure",
    "PeriodicTask",
    "Progress",
    "RestartAttempt",
    "StateChanged",
    "Status",
    "StatusChannel",
    "Subscription",
    "SyncReport",
    "SyncScheduler",
    "Syncer",
    "TaskFailed",
    "TaskKind",
    "TaskState",
    "TokenCoordinator",
    "call_with_token",
    "classify_error",
]
