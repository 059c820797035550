"""In-process publish/subscribe router for domain events.

This module provides:
- Ordered fan-out of events to handlers subscribed to an event type
- Wildcard subscriptions receiving every event
- Fire-and-forget dispatch of coroutine handlers
- Optional forwarding of every event to durable sinks
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Awaitable, Callable
from typing import Any, Union

import structlog

from rw_soar.events.models import Event
from rw_soar.events.sinks import EventSink

logger = structlog.get_logger()

WILDCARD = "*"

EventHandler = Callable[[Event], Union[Awaitable[Any], Any]]


class EventBus:
    """Routes published events to subscribed handlers.

    Subscriber lists are immutable tuples replaced under a lock on every
    subscribe/unsubscribe, so a dispatch pass iterates a stable snapshot.

    Example:
        bus = EventBus()
        unsubscribe = bus.subscribe("alert.created", on_alert)
        bus.publish(event)
        await bus.drain()
        unsubscribe()
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, tuple[EventHandler, ...]] = {}
        self._sinks: tuple[EventSink, ...] = ()
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task[Any]] = set()
        self._logger = logger.bind(component="event_bus")

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for an event type ('*' for all events).

        Returns:
            A function that removes this subscription. Calling it more than
            once is a no-op.
        """
        with self._lock:
            current = self._subscribers.get(event_type, ())
            self._subscribers[event_type] = current + (handler,)

        self._logger.debug("handler_subscribed", event_type=event_type)
        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            with self._lock:
                handlers = list(self._subscribers.get(event_type, ()))
                # Remove by identity; the same callable may be subscribed twice
                for index, existing in enumerate(handlers):
                    if existing is handler:
                        del handlers[index]
                        break
                if handlers:
                    self._subscribers[event_type] = tuple(handlers)
                else:
                    self._subscribers.pop(event_type, None)
            self._logger.debug("handler_unsubscribed", event_type=event_type)

        return unsubscribe

    def subscriber_count(self, event_type: str) -> int:
        """Number of handlers subscribed to exactly this event type."""
        return len(self._subscribers.get(event_type, ()))

    def add_sink(self, sink: EventSink) -> None:
        """Forward every published event to a durable sink."""
        with self._lock:
            self._sinks = self._sinks + (sink,)

    def remove_sink(self, sink: EventSink) -> None:
        with self._lock:
            self._sinks = tuple(s for s in self._sinks if s is not sink)

    def publish(self, event: Event) -> None:
        """Deliver an event to its subscribers, then wildcard subscribers.

        Every handler and sink receives its own deep copy, so changes one
        makes to ``data`` are invisible to the others and to the publisher.
        Handler failures are logged and never reach the publisher.
        """
        handlers = self._subscribers.get(event.type, ()) + self._subscribers.get(WILDCARD, ())
        sinks = self._sinks

        self._logger.info(
            "event_published",
            event_type=event.type,
            event_id=event.id,
            entity_id=event.entity_id,
            organization_id=event.organization_id,
            handlers=len(handlers),
        )

        for handler in handlers:
            try:
                outcome = handler(event.model_copy(deep=True))
            except Exception as e:
                self._logger.error(
                    "event_handler_error",
                    event_type=event.type,
                    event_id=event.id,
                    handler=_handler_name(handler),
                    error=str(e),
                    exc_info=True,
                )
                continue

            if inspect.isawaitable(outcome):
                self._schedule(outcome, event, _handler_name(handler))

        for sink in sinks:
            delivered = event.model_copy(deep=True)
            self._schedule(sink.forward(delivered), event, f"sink:{type(sink).__name__}")

    async def drain(self) -> None:
        """Wait until every scheduled handler and sink call has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, awaitable: Awaitable[Any], event: Event, name: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.error(
                "event_handler_not_scheduled",
                event_type=event.type,
                event_id=event.id,
                handler=name,
                error="no running event loop",
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._guard(awaitable, event, name))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _guard(self, awaitable: Awaitable[Any], event: Event, name: str) -> None:
        try:
            await awaitable
        except Exception as e:
            self._logger.error(
                "event_handler_error",
                event_type=event.type,
                event_id=event.id,
                handler=name,
                error=str(e),
                exc_info=True,
            )


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


_default_bus: EventBus | None = None
_default_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get or create the process-wide event bus."""
    global _default_bus
    if _default_bus is None:
        with _default_bus_lock:
            if _default_bus is None:
                _default_bus = EventBus()
    return _default_bus
