"""In-process notification bus."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subscription:
    """A registered event callback."""

    subscription_id: UUID
    event_type: type
    callback: Callable[[Any], None]


class EventBus:
    """Thread-safe publish/subscribe keyed on event type.

    ``publish`` calls subscribers synchronously on the publishing thread, in
    subscription order. Subscribers that need to do real work hand it to
    their own worker. A failing subscriber is logged and does not stop
    delivery to the others.

    Usage::

        bus = EventBus()
        sub_id = bus.subscribe(ProfileStoreChanged, on_change)
        bus.publish(ProfileStoreChanged(reason="reload"))
        bus.unsubscribe(sub_id)
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subscriptions: dict[UUID, Subscription] = {}

    def subscribe(self, event_type: type, callback: Callable[[Any], None]) -> UUID:
        """Register ``callback`` for events of ``event_type`` (and subclasses)."""
        if not callable(callback):
            raise TypeError("callback must be callable")
        subscription = Subscription(uuid.uuid4(), event_type, callback)
        with self._lock:
            self._subscriptions[subscription.subscription_id] = subscription
        return subscription.subscription_id

    def unsubscribe(self, subscription_id: UUID) -> bool:
        """Remove a subscription; returns False if it was not registered."""
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    def subscribers_for(self, event: Any) -> tuple[Subscription, ...]:
        with self._lock:
            return tuple(
                s for s in self._subscriptions.values() if isinstance(event, s.event_type)
            )

    def publish(self, event: Any) -> None:
        for subscription in self.subscribers_for(event):
            try:
                subscription.callback(event)
            except Exception:
                logger.exception(
                    "Subscriber %s failed on %s", subscription.subscription_id, type(event).__name__
                )

    def clear(self) -> None:
        """Remove all subscriptions."""
        with self._lock:
            self._subscriptions.clear()
