from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, List, Optional

from .events import Event, Status, describe

logger = logging.getLogger("photo_mirror.sync.channel")


class Subscription:
    """One listener's view of the channel; events arrive in publish order."""

    def __init__(self, channel: "StatusChannel"):
        self._channel = channel
        self.queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self.closed = False

    async def get(self) -> Event:
        return await self.queue.get()

    def drain(self) -> List[Event]:
        """Return every event received so far without waiting."""
        events: List[Event] = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events

    def close(self) -> None:
        self.closed = True
        self._channel.unsubscribe(self)

    async def __aiter__(self) -> AsyncIterator[Event]:
        while not self.closed:
            yield await self.queue.get()


class StatusChannel:
    """Broadcast channel: every subscriber receives every event.

    Queues are unbounded so a slow listener never blocks a producer. Events
    are also logged so the channel doubles as the task audit trail.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscription] = []
        self.last_event: Optional[Event] = None
        self.last_status: Optional[Status] = None

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: Event) -> None:
        self.last_event = event
        if isinstance(event, Status):
            self.last_status = event
        payload = describe(event)
        payload["event"] = "sync.status." + payload.pop("type")
        logger.info(payload)
        for subscription in list(self._subscribers):
            subscription.queue.put_nowait(event)
