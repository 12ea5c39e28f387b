"""Publish/subscribe channel shared by the simulation services.

Events are queued on publish and delivered in publish order when the owner
flushes the bus (once per simulation tick), or delivered on the spot when
published with ``immediate=True``. Handlers are called with keyword arguments.
"""
from collections import deque
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, List

from speedwatch.utils.logger import Logger

NETWORK_CHANGED = 'network_changed'
VIOLATION_DETECTED = 'violation_detected'
CHECKPOINT_TRIGGERED = 'checkpoint_triggered'
VEHICLE_DESTROYED = 'vehicle_destroyed'
DESTINATION_REACHED = 'destination_reached'
LIFETIME_EXPIRED = 'lifetime_expired'


@dataclass
class Subscription:
    """Handle returned by `EventBus.subscribe`, used to unsubscribe."""
    token: int
    topic: str
    handler: Callable[..., Any] = field(repr=False)


class EventBus:
    """In-process publish/subscribe channel with per-tick flushing."""

    def __init__(self):
        self._lock = RLock()
        self._next_token = 1
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._pending = deque()
        self.logger = Logger.get_logger('EventBus')

    def subscribe(self, topic: str, handler: Callable[..., Any]) -> Subscription:
        """Register `handler` for `topic`.

        Args:
            topic: Event name.
            handler: Callable receiving the event payload as keyword arguments.

        Returns:
            The subscription handle.
        """
        with self._lock:
            subscription = Subscription(self._next_token, topic, handler)
            self._next_token += 1
            self._subscribers.setdefault(topic, []).append(subscription)
            return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription. Returns False if it was already removed."""
        with self._lock:
            handlers = self._subscribers.get(subscription.topic, [])
            for i, existing in enumerate(handlers):
                if existing.token == subscription.token:
                    handlers.pop(i)
                    return True
            return False

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def publish(self, topic: str, immediate: bool = False, **payload) -> None:
        """Publish an event.

        Args:
            topic: Event name.
            immediate: Deliver now instead of on the next flush.
            **payload: Keyword arguments passed to every handler.
        """
        if immediate:
            self._deliver(topic, payload)
        else:
            with self._lock:
                self._pending.append((topic, payload))

    def flush(self) -> int:
        """Deliver every queued event in publish order.

        Events published by handlers during the flush are delivered in the same flush.

        Returns:
            Number of events delivered.
        """
        delivered = 0
        while True:
            with self._lock:
                if not self._pending:
                    return delivered
                topic, payload = self._pending.popleft()
            self._deliver(topic, payload)
            delivered += 1

    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def _deliver(self, topic: str, payload: dict) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(topic, []))
        for subscription in handlers:
            try:
                subscription.handler(**payload)
            except Exception as e:
                self.logger.error(f'Handler for {topic} raised {type(e).__name__}: {e}', exc_info=True)
