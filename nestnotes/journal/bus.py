"""In-process event bus for upload, camera and search notifications."""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger


Handler = Callable[["Event"], Any]


@dataclass
class Event:
    """Base event class."""
    type: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)
    source: Optional[str] = None


class EventBus:
    """
    Async pub/sub bus owned by a client session.

    Event types follow pattern: category.action
    Examples: upload.progress, upload.failed, camera.state, search.completed

    Handlers run inline in emission order so progress listeners observe
    updates in the same order the orchestrator produced them. A failing
    handler is logged and counted; it never breaks the emitter.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)
        self._stats: Dict[str, int] = defaultdict(int)

    def subscribe(self, event_pattern: str, handler: Handler) -> None:
        """
        Subscribe to events matching pattern.
        Pattern can use wildcards: 'upload.*' matches all upload events.
        """
        self._subscribers[event_pattern].append(handler)
        logger.debug(f"Subscribed handler to pattern: {event_pattern}")

    def unsubscribe(self, event_pattern: str, handler: Handler) -> None:
        """Unsubscribe handler from event pattern."""
        self._subscribers[event_pattern] = [
            h for h in self._subscribers[event_pattern] if h != handler
        ]

    async def emit(self, event: Event) -> None:
        """Deliver an event to every matching handler."""
        self._stats['emitted'] += 1
        for handler in self._handlers_for(event.type):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Handler error for event {event.type}: {e}")
                self._stats['handler_errors'] += 1

    async def publish(self, event_type: str, source: Optional[str] = None, **data: Any) -> None:
        await self.emit(Event(type=event_type, data=data, source=source))

    def _handlers_for(self, event_type: str) -> List[Handler]:
        handlers = []
        for pattern, subscribed in list(self._subscribers.items()):
            if self._matches_pattern(event_type, pattern):
                handlers.extend(subscribed)
        return handlers

    def _matches_pattern(self, event_type: str, pattern: str) -> bool:
        """Check if event type matches subscription pattern."""
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            prefix = pattern[:-2]
            return event_type.startswith(prefix + ".")
        return event_type == pattern

    def get_stats(self) -> Dict[str, int]:
        """Get event bus statistics."""
        return dict(self._stats)

    def reset_stats(self) -> None:
        self._stats.clear()
