"""Tests for buyer/seller conversations."""

import pytest
import pytest_asyncio
from decimal import Decimal

from conversations import (
    ConversationBlockedError,
    ConversationNotFoundError,
    InvalidMessageError,
    NotAParticipantError
)
from errors import InvalidStateError, PermissionDeniedError
from events import conversation_topic

@pytest_asyncio.fixture
async def conversation(services, community_id, people, listing):
    return await services.conversations.get_or_create_conversation(
        community_id, listing['id'], people.buyer.user_id
    )

@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(services, community_id, people, listing, conversation):
    assert conversation['buyer_id'] == people.buyer.member_id
    assert conversation['seller_id'] == people.seller.member_id
    assert conversation['status'] == 'active'

    again = await services.conversations.get_or_create_conversation(
        community_id, listing['id'], people.buyer.user_id
    )
    assert again['id'] == conversation['id']

@pytest.mark.asyncio
async def test_seller_cannot_open_own_conversation(services, community_id, people, listing):
    with pytest.raises(InvalidMessageError):
        await services.conversations.get_or_create_conversation(
            community_id, listing['id'], people.seller.user_id
        )

@pytest.mark.asyncio
async def test_unread_counters(services, community_id, people, conversation):
    convs = services.conversations
    await convs.send_message(community_id, conversation['id'], people.buyer.user_id, "Is it still available?")
    await convs.send_message(community_id, conversation['id'], people.buyer.user_id, "I can pick up today")

    current = await convs.get_conversation(community_id, conversation['id'], people.seller.user_id)
    assert current['seller_unread_count'] == 2
    assert current['buyer_unread_count'] == 0

    marked = await convs.mark_read(community_id, conversation['id'], people.seller.user_id)
    assert marked == 2
    current = await convs.get_conversation(community_id, conversation['id'], people.seller.user_id)
    assert current['seller_unread_count'] == 0

    # The buyer's own messages are not theirs to mark read
    assert await convs.mark_read(community_id, conversation['id'], people.buyer.user_id) == 0

@pytest.mark.asyncio
async def test_mark_read_keeps_messages_still_arriving(services, store, community_id, people, conversation):
    convs = services.conversations
    await convs.send_message(community_id, conversation['id'], people.buyer.user_id, "Hello")
    await convs.send_message(community_id, conversation['id'], people.buyer.user_id, "Still there?")
    # A send that has bumped the counter but whose message is not visible yet
    await store.increment('marketplace_conversations', conversation['id'], 'seller_unread_count', 1)

    assert await convs.mark_read(community_id, conversation['id'], people.seller.user_id) == 2
    current = await convs.get_conversation(community_id, conversation['id'], people.seller.user_id)
    assert current['seller_unread_count'] == 1

    assert await convs.mark_read(community_id, conversation['id'], people.seller.user_id) == 0
    current = await convs.get_conversation(community_id, conversation['id'], people.seller.user_id)
    assert current['seller_unread_count'] == 1

@pytest.mark.asyncio
async def test_messages_in_send_order(services, community_id, people, conversation):
    convs = services.conversations
    for text in ("one", "two", "three"):
        await convs.send_message(community_id, conversation['id'], people.buyer.user_id, text)
    await convs.send_message(
        community_id, conversation['id'], people.seller.user_id, "How about 90?",
        message_type='offer', offer_amount='90'
    )

    messages = await convs.get_messages(community_id, conversation['id'], people.seller.user_id)
    assert [m['content'] for m in messages] == ["one", "two", "three", "How about 90?"]
    assert messages[-1]['offer_amount'] == Decimal('90.00')

    latest = await convs.get_messages(community_id, conversation['id'], people.buyer.user_id, limit=2)
    assert [m['content'] for m in latest] == ["three", "How about 90?"]

@pytest.mark.asyncio
async def test_message_pages_are_bounded(services, store, community_id, people, conversation, monkeypatch):
    convs = services.conversations
    for text in ("one", "two", "three", "four", "five"):
        await convs.send_message(community_id, conversation['id'], people.buyer.user_id, text)

    limits = []
    find = store.find

    async def recording_find(table, *args, **kwargs):
        if table == 'marketplace_messages':
            limits.append(kwargs.get('limit'))
        return await find(table, *args, **kwargs)

    monkeypatch.setattr(store, 'find', recording_find)

    page = await convs.get_messages(community_id, conversation['id'], people.seller.user_id, limit=2)
    assert [m['content'] for m in page] == ["four", "five"]
    older = await convs.get_messages(
        community_id, conversation['id'], people.seller.user_id,
        before=page[0]['created_at'], limit=2
    )
    assert [m['content'] for m in older] == ["two", "three"]
    assert limits == [2, 2]

@pytest.mark.asyncio
async def test_message_validation(services, community_id, people, conversation):
    convs = services.conversations
    with pytest.raises(InvalidMessageError):
        await convs.send_message(community_id, conversation['id'], people.buyer.user_id, "   ")
    with pytest.raises(InvalidMessageError):
        await convs.send_message(
            community_id, conversation['id'], people.buyer.user_id, "Offer", message_type='offer'
        )
    with pytest.raises(InvalidMessageError):
        await convs.send_message(
            community_id, conversation['id'], people.buyer.user_id, "Offer",
            message_type='offer', offer_amount=0
        )
    with pytest.raises(InvalidMessageError):
        await convs.send_message(
            community_id, conversation['id'], people.buyer.user_id, "Hi", message_type='shout'
        )

@pytest.mark.asyncio
async def test_only_participants(services, community_id, people, conversation):
    with pytest.raises(NotAParticipantError) as exc_info:
        await services.conversations.send_message(
            community_id, conversation['id'], people.bystander.user_id, "Hello"
        )
    assert isinstance(exc_info.value, PermissionDeniedError)

@pytest.mark.asyncio
async def test_blocked_conversation_rejects_messages(services, community_id, people, conversation):
    convs = services.conversations
    blocked = await convs.block_conversation(community_id, conversation['id'], people.seller.user_id)
    assert blocked['status'] == 'blocked'

    with pytest.raises(ConversationBlockedError) as exc_info:
        await convs.send_message(community_id, conversation['id'], people.buyer.user_id, "Hello?")
    assert isinstance(exc_info.value, InvalidStateError)

    # The rejected message left no trace
    current = await convs.get_conversation(community_id, conversation['id'], people.seller.user_id)
    assert current['seller_unread_count'] == 0
    assert await convs.get_messages(community_id, conversation['id'], people.seller.user_id) == []

    with pytest.raises(ConversationBlockedError):
        await convs.archive_conversation(community_id, conversation['id'], people.buyer.user_id)

@pytest.mark.asyncio
async def test_archive_and_reactivate(services, community_id, people, conversation):
    convs = services.conversations
    await convs.archive_conversation(community_id, conversation['id'], people.buyer.user_id)
    assert await convs.list_conversations(community_id, people.buyer.user_id) == []
    archived = await convs.list_conversations(community_id, people.buyer.user_id, include_archived=True)
    assert [c['id'] for c in archived] == [conversation['id']]

    await convs.send_message(community_id, conversation['id'], people.seller.user_id, "Still interested?")
    listed = await convs.list_conversations(community_id, people.seller.user_id)
    assert listed[0]['status'] == 'active'

@pytest.mark.asyncio
async def test_message_event_published(services, community_id, people, conversation):
    with services.events.subscribe(conversation_topic(conversation['id'])) as subscription:
        message = await services.conversations.send_message(
            community_id, conversation['id'], people.buyer.user_id, "Ping"
        )
        event = await subscription.get(timeout=1)
    assert event.type == 'message.created'
    assert event.data['message_id'] == str(message['id'])
    assert services.events.subscriber_count(conversation_topic(conversation['id'])) == 0

@pytest.mark.asyncio
async def test_conversation_on_unknown_listing(services, community_id, people):
    with pytest.raises(ConversationNotFoundError):
        await services.conversations.get_or_create_conversation(
            community_id, 'missing', people.buyer.user_id
        )
