"""
Event Notification Bus

Synchronous, in-process publish/subscribe keyed by event class. No buffering
or replay: a subscriber attached after an event fired never sees it.
"""

import logging
from typing import Callable, Dict, List, Optional, Type, TypeVar

from .models import EVENT_TYPES, BridgeEvent, ErrorRaised


logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BridgeEvent)
EventCallback = Callable[[E], None]


class Subscription:
    """Handle returned by EventBus.subscribe. ``unsubscribe()`` is idempotent."""

    def __init__(self, bus: "EventBus", event_type: Optional[Type[BridgeEvent]], callback: Callable):
        self._bus = bus
        self.event_type = event_type
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self.event_type is None:
            self._bus.unsubscribe_all(self.callback)
        else:
            self._bus.unsubscribe(self.event_type, self.callback)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unsubscribe()


class EventBus:
    """
    Typed publish/subscribe channel for bridge events.

    Usage:
        bus = EventBus()
        sub = bus.subscribe(SessionEstablished, lambda e: print(e.session.topic))
        bus.publish(SessionEstablished(session=session))
        sub.unsubscribe()
    """

    def __init__(self):
        self._callbacks: Dict[Type[BridgeEvent], List[Callable]] = {}
        self._wildcard: List[Callable] = []
        self._last_error: Optional[str] = None

    @property
    def last_error(self) -> Optional[str]:
        """Most recent ErrorRaised message, for UIs that render one error line."""
        return self._last_error

    def clear_error(self) -> None:
        self._last_error = None

    def subscribe(self, event_type: Type[E], callback: Callable[[E], None]) -> Subscription:
        """Register a callback for one event class."""
        if event_type not in EVENT_TYPES:
            raise TypeError(f"{event_type!r} is not a bridge event")
        self._callbacks.setdefault(event_type, []).append(callback)
        return Subscription(self, event_type, callback)

    def subscribe_all(self, callback: Callable[[BridgeEvent], None]) -> Subscription:
        """Register a callback that receives every event."""
        self._wildcard.append(callback)
        return Subscription(self, None, callback)

    def unsubscribe(self, event_type: Type[BridgeEvent], callback: Callable) -> None:
        """Remove a callback. Unknown callbacks are ignored."""
        callbacks = self._callbacks.get(event_type)
        if not callbacks:
            return
        self._callbacks[event_type] = [cb for cb in callbacks if cb != callback]

    def unsubscribe_all(self, callback: Callable) -> None:
        self._wildcard = [cb for cb in self._wildcard if cb != callback]

    def subscriber_count(self, event_type: Type[BridgeEvent]) -> int:
        return len(self._callbacks.get(event_type, ()))

    def publish(self, event: BridgeEvent) -> None:
        """Deliver an event to its subscribers, in subscription order."""
        if type(event) not in EVENT_TYPES:
            raise TypeError(f"{type(event).__name__} is not a bridge event")

        if isinstance(event, ErrorRaised):
            self._last_error = event.message

        # Copy so callbacks may (un)subscribe or publish while we iterate
        targets = list(self._callbacks.get(type(event), ())) + list(self._wildcard)
        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    f"Subscriber {getattr(callback, '__qualname__', callback)!s} failed "
                    f"on {type(event).__name__}: {e}",
                    exc_info=True,
                )

    def clear(self) -> None:
        """Drop every subscriber."""
        self._callbacks.clear()
        self._wildcard.clear()
