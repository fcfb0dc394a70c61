"""In-process event bus for the outbound events crmsync raises.

Two events couple crmsync to the surrounding application:
- SyncCompleted: the tag and field catalogs were refreshed from the CRM
- LogHandled: an activity log entry passed filtering and is about to be stored

Subscribers are plain callables keyed by event class. Delivery is
synchronous and in subscription order.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class Event(BaseModel):
    """Base class for events published on the bus."""

    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SyncCompleted(Event):
    """Raised after tags and fields were both synced and committed."""

    crm: str
    tag_count: int = 0
    field_count: int = 0


class LogHandled(Event):
    """Raised before an activity log entry is persisted."""

    timestamp: datetime
    level: str
    user: int
    message: str
    source: str
    context: Optional[Dict[str, Any]] = None


E = TypeVar("E", bound=Event)


class EventBus:
    """Synchronous publish/subscribe keyed by event type."""

    def __init__(self) -> None:
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: Type[E], callback: Callable[[E], None]) -> None:
        """Register a callback for an event type (and its subclasses)."""
        self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: Type[E], callback: Callable[[E], None]) -> None:
        callbacks = self._subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def publish(self, event: Event) -> int:
        """Deliver an event to every matching subscriber.

        A subscriber that raises is logged and skipped; the remaining
        subscribers still receive the event.

        Args:
            event: Event instance to deliver

        Returns:
            Number of subscribers that handled the event without error
        """
        delivered = 0
        for event_type, callbacks in list(self._subscribers.items()):
            if not isinstance(event, event_type):
                continue
            for callback in list(callbacks):
                try:
                    callback(event)
                    delivered += 1
                except Exception as e:
                    logger.warning(
                        f"Subscriber {callback!r} failed on {type(event).__name__}: {e}"
                    )
        return delivered
