"""
Notification system for vibe-checkpoint.

This module provides event-driven notifications with:
- Publish/subscribe pattern
- Async and sync handlers
- Event filtering by category, name and priority
- Bounded event history
"""

from typing import Optional, Dict, Any, List, Callable, Set, Union
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import inspect

from .logging import get_logger


logger = get_logger("vibe-checkpoint.notifications")


class EventPriority(Enum):
    """Event priority levels."""
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


class EventCategory(Enum):
    """Event categories for routing."""
    SYSTEM = "system"
    CHECKPOINT = "checkpoint"
    ERROR = "error"


@dataclass
class Event:
    """Event data structure."""
    name: str
    category: EventCategory
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    priority: EventPriority = EventPriority.NORMAL
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "category": self.category.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "priority": self.priority.value,
            "source": self.source,
        }


@dataclass
class Subscription:
    """Event subscription."""
    handler: Callable[[Event], Any]
    categories: Optional[Set[EventCategory]] = None
    event_names: Optional[Set[str]] = None
    priority_min: EventPriority = EventPriority.LOW
    is_async: bool = True

    def matches(self, event: Event) -> bool:
        """Check if subscription matches event."""
        if event.priority.value < self.priority_min.value:
            return False

        if self.categories and event.category not in self.categories:
            return False

        if self.event_names and event.name not in self.event_names:
            return False

        return True


class EventBus:
    """Event bus for checkpoint notifications.

    Events are dispatched inline: ``emit`` returns once every matching
    handler has run. A failing handler is logged and never propagates to
    the emitter.
    """

    def __init__(self, max_history: int = 1000):
        """Initialize event bus."""
        self._subscriptions: List[Subscription] = []
        self._event_history: List[Event] = []
        self._max_history = max_history

    def subscribe(
        self,
        handler: Callable[[Event], Any],
        categories: Optional[Union[EventCategory, List[EventCategory]]] = None,
        event_names: Optional[Union[str, List[str]]] = None,
        priority_min: EventPriority = EventPriority.LOW,
        is_async: Optional[bool] = None
    ) -> Subscription:
        """
        Subscribe to events.

        Args:
            handler: Event handler function
            categories: Event categories to subscribe to
            event_names: Specific event names to subscribe to
            priority_min: Minimum priority level
            is_async: Whether handler is async (auto-detected if None)

        Returns:
            Subscription object
        """
        if isinstance(categories, EventCategory):
            categories = {categories}
        elif isinstance(categories, list):
            categories = set(categories)

        if isinstance(event_names, str):
            event_names = {event_names}
        elif isinstance(event_names, list):
            event_names = set(event_names)

        if is_async is None:
            is_async = inspect.iscoroutinefunction(handler)

        subscription = Subscription(
            handler=handler,
            categories=categories,
            event_names=event_names,
            priority_min=priority_min,
            is_async=is_async
        )
        self._subscriptions.append(subscription)

        logger.debug(
            "subscription_added",
            categories=[c.value for c in categories] if categories else None,
            event_names=sorted(event_names) if event_names else None,
            handler=getattr(handler, '__name__', str(handler))
        )

        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Unsubscribe from events; False if the subscription is unknown."""
        try:
            self._subscriptions.remove(subscription)
            return True
        except ValueError:
            return False

    async def emit(
        self,
        name: str,
        category: EventCategory,
        data: Dict[str, Any],
        priority: EventPriority = EventPriority.NORMAL,
        source: Optional[str] = None
    ) -> Event:
        """
        Emit an event to all matching subscribers.

        Args:
            name: Event name
            category: Event category
            data: Event data
            priority: Event priority
            source: Event source

        Returns:
            The emitted event
        """
        event = Event(
            name=name,
            category=category,
            data=data,
            priority=priority,
            source=source
        )

        self._add_to_history(event)

        for subscription in [s for s in self._subscriptions if s.matches(event)]:
            if subscription.is_async:
                await self._call_async_handler(subscription.handler, event)
            else:
                self._call_sync_handler(subscription.handler, event)

        logger.debug(
            "event_emitted",
            event_name=name,
            category=category.value,
            priority=priority.value
        )
        return event

    async def _call_async_handler(
        self,
        handler: Callable[[Event], Any],
        event: Event
    ) -> None:
        """Call async event handler."""
        try:
            await handler(event)
        except Exception as e:
            logger.error(
                "async_handler_error",
                handler=getattr(handler, '__name__', 'unknown'),
                event_name=event.name,
                error=str(e),
                exc_info=True
            )

    def _call_sync_handler(
        self,
        handler: Callable[[Event], Any],
        event: Event
    ) -> None:
        """Call sync event handler."""
        try:
            handler(event)
        except Exception as e:
            logger.error(
                "sync_handler_error",
                handler=getattr(handler, '__name__', 'unknown'),
                event_name=event.name,
                error=str(e),
                exc_info=True
            )

    def _add_to_history(self, event: Event) -> None:
        """Add event to history."""
        self._event_history.append(event)

        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

    def get_history(
        self,
        category: Optional[EventCategory] = None,
        event_name: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Event]:
        """
        Get event history.

        Args:
            category: Filter by category
            event_name: Filter by event name
            since: Filter by timestamp
            limit: Maximum events to return (most recent)

        Returns:
            List of events, oldest first
        """
        events = self._event_history

        if category:
            events = [e for e in events if e.category == category]

        if event_name:
            events = [e for e in events if e.name == event_name]

        if since:
            events = [e for e in events if e.timestamp >= since]

        if limit:
            events = events[-limit:]

        return list(events)


__all__ = [
    'Event',
    'EventBus',
    'EventCategory',
    'EventPriority',
    'Subscription',
]
