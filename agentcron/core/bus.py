"""
agentcron event bus: publish/subscribe for job and run events.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from typing import Awaitable, Callable

from agentcron.core.events import Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """
    Publish/subscribe event bus.

    Usage:
        bus = EventBus()

        bus.on("run:complete", my_handler)
        bus.on("run:*", my_wildcard_handler)
        bus.on("*", my_catch_all_handler)

        await bus.emit(Event(type="run:started", data={...}))
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = {}

    # ━━━ Subscription ━━━

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to an event type. Supports wildcards: 'run:*', '*'."""
        self._subscribers.setdefault(event_type, []).append(handler)

    def off(self, event_type: str, handler: EventHandler) -> None:
        """Unsubscribe from an event type."""
        if event_type in self._subscribers:
            self._subscribers[event_type] = [
                h for h in self._subscribers[event_type] if h is not handler
            ]
            if not self._subscribers[event_type]:
                del self._subscribers[event_type]

    # ━━━ Emission ━━━

    async def emit(self, event: Event) -> Event:
        """
        Deliver an event to every matching subscriber.

        Subscribers execute concurrently. Their errors are logged, never raised.
        """
        handlers = self._find_handlers(event.type)
        if handlers:
            results = await asyncio.gather(
                *(h(event) for h in handlers),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.error(
                        f"Subscriber error for {event.type}: {result}",
                        exc_info=result,
                    )
        return event

    # ━━━ Internals ━━━

    def _find_handlers(self, event_type: str) -> list[EventHandler]:
        """Find all handlers matching an event type, including wildcards."""
        handlers: list[EventHandler] = []

        for pattern, subs in self._subscribers.items():
            if pattern == event_type or pattern == "*":
                handlers.extend(subs)
            elif "*" in pattern and fnmatch.fnmatch(event_type, pattern):
                handlers.extend(subs)

        return handlers

    @property
    def subscriber_count(self) -> int:
        """Total number of subscriptions (for debugging)."""
        return sum(len(subs) for subs in self._subscribers.values())
