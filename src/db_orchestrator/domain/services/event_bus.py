"""Event bus broadcasting status and progress changes to observers.

Subscribers are plain callables or coroutine functions. Publishing never
blocks on a subscriber: coroutine results are scheduled on the running
loop and a failing subscriber is logged without affecting the others.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable

from db_orchestrator.domain.entities import Event

if TYPE_CHECKING:
    from db_orchestrator.infrastructure.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

Subscriber = Callable[[Event], Awaitable[None] | None]


class EventBus:
    """In-process publish/subscribe for orchestrator events."""

    def __init__(self, metrics: MetricsRegistry | None = None) -> None:
        self._subscribers: list[Subscriber] = []
        self._pending: set[asyncio.Task[Any]] = set()
        self._metrics = metrics

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Args:
            subscriber: Callable receiving every published event.

        Returns:
            Function that removes the subscription.
        """
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, event: Event) -> None:
        """Deliver an event to all current subscribers."""
        if self._metrics:
            self._metrics.events_published_total.labels(event=event.name).inc()

        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
            except Exception:
                logger.exception("Event subscriber failed for %s", event.name)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_subscriber_done)

    def _on_subscriber_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event subscriber failed", exc_info=task.exception())

    async def stream(self, max_queue: int = 1000) -> AsyncIterator[Event]:
        """Iterate over events published from now on.

        Events are dropped for a consumer that falls more than max_queue
        events behind.
        """
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue)

        def enqueue(event: Event) -> None:
            if queue.full():
                logger.warning("Event stream consumer is behind, dropping %s", event.name)
                return
            queue.put_nowait(event)

        unsubscribe = self.subscribe(enqueue)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
