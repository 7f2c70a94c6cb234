"""
Event bus for progress and discovery notifications.

Two kinds of consumers are supported:
- callbacks registered with `on_event` (the websocket broadcaster), and
- `Subscription` queues, optionally scoped to one transfer job. A job-scoped
  subscription ends by itself after that job's terminal event.
"""

import asyncio
import logging
from collections import deque
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "error")


class Event(BaseModel):
    event: str
    data: dict[str, Any]


def is_terminal(event: Event) -> bool:
    return event.data.get("status") in TERMINAL_STATUSES


class Subscription:
    """A queue of events delivered to a single consumer."""

    def __init__(self, bus: "EventBus", job_key: str | None = None) -> None:
        self.job_key = job_key
        self._bus = bus
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, event: Event) -> bool:
        if self.job_key is None:
            return True
        return event.data.get("job_key") == self.job_key

    def put(self, event: Event) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)
        if self.job_key is not None and is_terminal(event):
            self.close()

    def close(self) -> None:
        """Unsubscribe; iteration ends once queued events are drained."""
        if self._closed:
            return
        self._closed = True
        self._bus._remove(self)
        self._queue.put_nowait(None)

    async def get(self) -> Event | None:
        return await self._queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class EventBus:
    """Fan-out of named events to callbacks and subscriptions."""

    def __init__(self) -> None:
        self._callbacks: list = []  # async fn(event_type, data)
        self._subscriptions: list[Subscription] = []
        self._pending: deque[Event] = deque()
        self._delivering = False

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._callbacks.append(callback)

    def subscribe(self, job_key: str | None = None) -> Subscription:
        subscription = Subscription(self, job_key)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks and subscriptions.

        Callbacks receive events in emit order. An event emitted while another
        one is being delivered, from a callback or from another task, is queued
        and handed to the callbacks by the emitter already delivering.
        """
        event = Event(event=event_type, data=data)
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.put(event)

        self._pending.append(event)
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._pending:
                queued = self._pending.popleft()
                for cb in list(self._callbacks):
                    try:
                        await cb(queued.event, queued.data)
                    except Exception as e:
                        logger.error(f"Event callback error: {e}")
        finally:
            self._delivering = False
