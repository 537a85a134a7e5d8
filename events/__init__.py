"""Change notifications for marketplace state.

Managers publish ``MarketEvent`` objects through an ``EventProducer``. The
``EventBus`` implementation fans each event out to subscribers of its topic
(``conversation:<id>``, ``transaction:<id>``, ``listing:<id>``) through
per-subscriber asyncio queues, so events on one topic arrive in publish
order. The websocket endpoints read from these queues.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000

def conversation_topic(conversation_id) -> str:
    return f"conversation:{conversation_id}"

def transaction_topic(transaction_id) -> str:
    return f"transaction:{transaction_id}"

def listing_topic(listing_id) -> str:
    return f"listing:{listing_id}"

class MarketEvent(BaseModel):
    """A change notification."""
    type: str
    topic: str
    community_id: Optional[uuid.UUID] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class EventProducer:
    """Interface for publishing change notifications."""

    async def publish(self, event: MarketEvent) -> None:
        raise NotImplementedError

class NullEventProducer(EventProducer):
    """Producer that drops every event."""

    async def publish(self, event: MarketEvent) -> None:
        return None

class Subscription:
    """A subscriber's queue on one topic."""

    def __init__(self, bus: 'EventBus', topic: str, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.bus = bus
        self.topic = topic
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def get(self, timeout: Optional[float] = None) -> MarketEvent:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def close(self) -> None:
        self.bus.unsubscribe(self)

    def __enter__(self) -> 'Subscription':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

class EventBus(EventProducer):
    """In-process topic fan-out."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self.published: List[MarketEvent] = []
        self.history_limit = 100

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(self, topic, self.queue_size)
        self._subscribers.setdefault(topic, set()).add(subscription)
        logger.debug(f"New subscriber on {topic}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.topic)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    async def publish(self, event: MarketEvent) -> None:
        self.published.append(event)
        if len(self.published) > self.history_limit:
            self.published.pop(0)

        for subscription in list(self._subscribers.get(event.topic, ())):
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping slow subscriber on {event.topic}")
                self.unsubscribe(subscription)

__all__ = [
    'EventBus',
    'EventProducer',
    'MarketEvent',
    'NullEventProducer',
    'Subscription',
    'conversation_topic',
    'listing_topic',
    'transaction_topic'
]
