"""
Event bus for tracking events.

Subscribers register callbacks (plain functions or coroutines), optionally
filtered by event type. The broadcast and push layers subscribe here; the
engine itself knows nothing about their transport.
"""

import asyncio
import logging
from collections import Counter
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from tracking_backend.app.models.tracking_enums import TrackingEventType
from tracking_backend.app.schemas.tracking import TrackingEvent

logger = logging.getLogger("tracking.events")

EventHandler = Callable[[TrackingEvent], Union[None, Awaitable[None]]]


class Subscription:

    def __init__(self, handler: EventHandler, event_types: Optional[Set[TrackingEventType]]):
        self.handler = handler
        self.event_types = event_types

    def accepts(self, event: TrackingEvent) -> bool:
        return self.event_types is None or event.type in self.event_types


class EventBus:

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self.published: Counter = Counter()

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Optional[Iterable[TrackingEventType]] = None,
    ) -> Subscription:
        types = {TrackingEventType(t) for t in event_types} if event_types else None
        subscription = Subscription(handler, types)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: TrackingEvent) -> None:
        """
        Deliver to every matching subscriber in registration order.

        A failing subscriber is logged and skipped; it never fails the
        operation that produced the event.
        """
        self.published[event.type.value] += 1
        for subscription in list(self._subscriptions):
            if not subscription.accepts(event):
                continue
            try:
                result = subscription.handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "Event subscriber failed",
                    extra={"event_type": event.type.value, "trip_id": event.trip_id}
                )

    async def publish_all(self, events: Iterable[TrackingEvent]) -> None:
        for event in events:
            await self.publish(event)

    def counts(self) -> Dict[str, int]:
        return dict(self.published)
