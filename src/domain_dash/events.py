"""
In-process publish/subscribe channel for engine and scheduler events.

Subscribers register per event type (or for all events) and receive an
:class:`Event`. Delivery is fire-and-forget: a failing subscriber is logged
and never affects the emitter or the other subscribers. Coroutine
subscribers are scheduled on the running loop. Nothing is persisted or
replayed.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from .enums import EventType
from .models import utc_now_iso

if TYPE_CHECKING:
    from .activity_log import ActivityLog


@dataclass(frozen=True)
class Event:
    """A single published event."""

    type: EventType
    payload: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


Subscriber = Callable[[Event], Any]


class EventBus:
    """
    Typed publish/subscribe channel passed explicitly to its producers.
    """

    COMPONENT = "events"

    def __init__(self, logger: Optional["ActivityLog"] = None) -> None:
        self._subscribers: dict[EventType, list[Subscriber]] = {t: [] for t in EventType}
        self._wildcard: list[Subscriber] = []
        self._pending: set[asyncio.Task] = set()
        self._logger = logger

    def subscribe(self, event_type: EventType, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for one event type.

        Args:
            event_type: The event to listen for
            callback: Called with the Event; may be a coroutine function

        Returns:
            A function that removes the subscription when called
        """
        self._subscribers[event_type].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[event_type]:
                self._subscribers[event_type].remove(callback)

        return unsubscribe

    def subscribe_all(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for every event type."""
        self._wildcard.append(callback)

        def unsubscribe() -> None:
            if callback in self._wildcard:
                self._wildcard.remove(callback)

        return unsubscribe

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers[event_type]) + len(self._wildcard)

    def emit(self, event_type: EventType, **payload: Any) -> Event:
        """
        Publish an event to every matching subscriber.

        Returns:
            The Event that was delivered
        """
        event = Event(type=event_type, payload=payload)

        for callback in list(self._subscribers[event_type]) + list(self._wildcard):
            try:
                outcome = callback(event)
            except Exception as e:
                self._report(event, e)
                continue

            if inspect.isawaitable(outcome):
                self._schedule(event, outcome)

        return event

    async def drain(self) -> None:
        """Wait for coroutine subscribers that are still running."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, event: Event, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            if self._logger:
                self._logger.warn(
                    self.COMPONENT,
                    "Async subscriber dropped, no running event loop",
                    {"event": event.type.value},
                )
            return

        task = loop.create_task(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._report(event, t.exception())

        task.add_done_callback(_done)

    def _report(self, event: Event, error: BaseException) -> None:
        if self._logger:
            self._logger.log_error(
                self.COMPONENT,
                f"Subscriber failed for {event.type.value}",
                error=error,
            )
