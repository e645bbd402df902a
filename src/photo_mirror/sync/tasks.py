"""Periodic task driver with coalesced triggers, backoff and abort."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..config import Settings
from ..errors import AuthError, ThrottledError, TransientNetworkError, error_code
from .channel import StatusChannel
from .events import Aborted, RestartAttempt, StateChanged, TaskFailed, TaskKind, TaskState

logger = logging.getLogger("photo_mirror.sync.tasks")


class Failure(str, Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


def classify_error(error: BaseException) -> Failure:
    """Decide between retry-with-backoff and immediate abort.

    Network trouble, throttling, timeouts and auth failures that survived a
    forced refresh are retried. Storage and validation errors, non-retryable
    remote rejections and anything unexpected abort at once.
    """
    if isinstance(error, (TransientNetworkError, AuthError, asyncio.TimeoutError)):
        return Failure.TRANSIENT
    return Failure.FATAL


@dataclass(frozen=True)
class BackoffPolicy:
    initial: float = 1.0
    factor: float = 2.0
    maximum: float = 300.0
    max_failures: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffPolicy":
        return cls(
            initial=settings.BACKOFF_INITIAL_SECONDS,
            factor=settings.BACKOFF_FACTOR,
            maximum=settings.BACKOFF_MAX_SECONDS,
            max_failures=settings.MAX_CONSECUTIVE_FAILURES,
        )

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        delay = self.initial * (self.factor ** max(attempt - 1, 0))
        if isinstance(error, ThrottledError) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return min(delay, self.maximum)


class PeriodicTask:
    """Runs ``action`` whenever woken, one run at a time.

    States: IDLE -> RUNNING -> IDLE on success, BACKOFF on a transient
    failure, ABORTED on a fatal one or once ``max_failures`` consecutive
    failures pile up. Triggers that arrive while a run is in flight collapse
    into a single follow-up run. Periodic ticks are ignored while aborted;
    ``trigger()`` and ``restart()`` clear the abort.
    """

    def __init__(
        self,
        kind: TaskKind,
        action: Callable[[], Awaitable[Any]],
        channel: StatusChannel,
        policy: BackoffPolicy,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.kind = kind
        self.action = action
        self.channel = channel
        self.policy = policy
        self.state = TaskState.IDLE
        self.failures = 0
        self.runs = 0
        self.last_error: Optional[str] = None
        self._wake = asyncio.Event()
        self._stop = stop_event if stop_event is not None else asyncio.Event()
        self._runner: Optional["asyncio.Task[None]"] = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> None:
        if self.running:
            return
        self._runner = asyncio.create_task(self._loop(), name=f"periodic-{self.kind.value}")

    def tick(self) -> bool:
        """Periodic wake-up. Returns False when ignored."""
        if self.state is TaskState.ABORTED:
            logger.debug({"event": "sync.task.tick_ignored", "task": self.kind.value})
            return False
        self._wake_up()
        return True

    def trigger(self) -> bool:
        """On-demand run. Resumes an aborted task.

        Returns True when a run is queued behind one already in flight.
        """
        if self.state is TaskState.ABORTED:
            self._reset()
        queued = self.state in (TaskState.RUNNING, TaskState.BACKOFF)
        self._wake_up()
        logger.info({"event": "sync.task.triggered", "task": self.kind.value, "queued": queued})
        return queued

    def _wake_up(self) -> None:
        # A retry is already pending while backing off; it covers this request.
        if self.state is not TaskState.BACKOFF:
            self._wake.set()

    def restart(self) -> bool:
        """Clear the failure counter and run again."""
        self._reset()
        return self.trigger()

    def _reset(self) -> None:
        self.failures = 0
        self.last_error = None
        if self.state is TaskState.ABORTED:
            self._set_state(TaskState.IDLE)

    async def wait_idle(self) -> None:
        """Wait until no run is queued or in flight."""
        while True:
            await self._idle.wait()
            if not self._wake.is_set():
                return
            await asyncio.sleep(0)

    async def stop(self) -> None:
        self._stop.set()
        self._wake.set()
        if self._runner is not None:
            await self._runner
            self._runner = None
        self._set_state(TaskState.STOPPED)

    def _set_state(self, state: TaskState) -> None:
        if state is self.state:
            return
        self.state = state
        self.channel.publish(StateChanged(task=self.kind, state=state))

    async def _loop(self) -> None:
        while not self._stop.is_set():
            await self._wake.wait()
            if self._stop.is_set():
                break
            self._wake.clear()
            self._idle.clear()
            try:
                await self._run_with_retries()
            finally:
                self._idle.set()

    async def _pause(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds. Returns True if stopped meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run_with_retries(self) -> None:
        while not self._stop.is_set():
            self._set_state(TaskState.RUNNING)
            self.runs += 1
            try:
                await self.action()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self._handle_failure(exc):
                    return
                delay = self.policy.delay_for(self.failures, exc)
                self._set_state(TaskState.BACKOFF)
                self.channel.publish(
                    RestartAttempt(task=self.kind, attempt=self.failures, delay=delay)
                )
                if await self._pause(delay):
                    return
                continue
            self.failures = 0
            self.last_error = None
            self._set_state(TaskState.IDLE)
            return

    def _handle_failure(self, error: Exception) -> bool:
        """Record a failure. Returns True if the task is now aborted."""
        self.failures += 1
        self.last_error = str(error) or type(error).__name__
        failure = classify_error(error)
        self.channel.publish(
            TaskFailed(task=self.kind, code=error_code(error), message=self.last_error)
        )
        log = logger.error if failure is Failure.FATAL else logger.warning
        log(
            {
                "event": "sync.task.failed",
                "task": self.kind.value,
                "failure": failure.value,
                "attempt": self.failures,
                "error": self.last_error,
            },
            exc_info=failure is Failure.FATAL,
        )

        if failure is Failure.FATAL:
            reason = f"{type(error).__name__}: {self.last_error}"
        elif self.failures >= self.policy.max_failures:
            reason = f"{self.failures} consecutive failures, last: {self.last_error}"
        else:
            return False

        self._wake.clear()
        self._set_state(TaskState.ABORTED)
        self.channel.publish(Aborted(task=self.kind, reason=reason))
        return True
