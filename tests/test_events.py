"""Tests for the in-process event bus."""

import asyncio
import pytest

from events import EventBus, MarketEvent, NullEventProducer, conversation_topic, listing_topic

def make_event(topic, n=0):
    return MarketEvent(type='test.event', topic=topic, data={'n': n})

@pytest.mark.asyncio
async def test_fan_out_by_topic():
    bus = EventBus()
    first = bus.subscribe(conversation_topic('a'))
    second = bus.subscribe(conversation_topic('a'))
    other = bus.subscribe(listing_topic('a'))

    await bus.publish(make_event(conversation_topic('a')))
    assert (await first.get(timeout=1)).topic == 'conversation:a'
    assert (await second.get(timeout=1)).topic == 'conversation:a'
    assert other.queue.empty()

@pytest.mark.asyncio
async def test_unsubscribe_on_close():
    bus = EventBus()
    with bus.subscribe('listing:x'):
        assert bus.subscriber_count('listing:x') == 1
    assert bus.subscriber_count('listing:x') == 0
    # Publishing with no subscribers is fine
    await bus.publish(make_event('listing:x'))
    assert bus.published[-1].topic == 'listing:x'

@pytest.mark.asyncio
async def test_slow_subscriber_dropped():
    bus = EventBus(queue_size=1)
    slow = bus.subscribe('transaction:t')
    await bus.publish(make_event('transaction:t', 1))
    await bus.publish(make_event('transaction:t', 2))
    assert bus.subscriber_count('transaction:t') == 0
    assert (await slow.get(timeout=1)).data == {'n': 1}

@pytest.mark.asyncio
async def test_get_times_out():
    bus = EventBus()
    subscription = bus.subscribe('listing:quiet')
    with pytest.raises(asyncio.TimeoutError):
        await subscription.get(timeout=0.01)

@pytest.mark.asyncio
async def test_null_producer_drops_events():
    assert await NullEventProducer().publish(make_event('listing:y')) is None
