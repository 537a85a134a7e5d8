"""Buyer/seller conversations about a listing.

A conversation is unique per (listing, buyer) and copies the listing's
seller when it is created. Sending a message bumps the other party's unread
counter and publishes a ``message.created`` event on the conversation topic.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from database import DuplicateRowError, Store, get_store
from errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from events import EventProducer, MarketEvent, NullEventProducer, conversation_topic
from fees import to_money
from members import MembershipProvider

logger = logging.getLogger(__name__)

IdLike = Union[str, uuid.UUID]

MESSAGE_TYPES = {'text', 'offer', 'system'}

MAX_PAGE_SIZE = 200

class ConversationError(Exception):
    """Base exception for conversation operations."""
    pass

class ConversationNotFoundError(ConversationError, NotFoundError):
    """Raised when a conversation or its listing is not found."""
    pass

class NotAParticipantError(ConversationError, PermissionDeniedError):
    """Raised when the caller is neither the buyer nor the seller."""
    pass

class ConversationStateError(ConversationError, InvalidStateError):
    """Raised when a conversation is in the wrong status for an operation."""
    pass

class ConversationBlockedError(ConversationStateError):
    """Raised when sending to a blocked conversation."""
    pass

class InvalidMessageError(ConversationError, ValidationError):
    """Raised when message content or type is invalid."""
    pass

def _now() -> datetime:
    return datetime.now(timezone.utc)

def side_of(conversation: Dict[str, Any], member_id) -> str:
    """Return 'buyer' or 'seller' for a participant.

    Raises:
        NotAParticipantError: If the member is not in the conversation
    """
    if conversation['buyer_id'] == member_id:
        return 'buyer'
    if conversation['seller_id'] == member_id:
        return 'seller'
    raise NotAParticipantError("Only the buyer or seller can access this conversation")

def other_side(side: str) -> str:
    return 'seller' if side == 'buyer' else 'buyer'

class ConversationManager:
    """Manager class for conversations and messages."""

    def __init__(
        self,
        store: Optional[Store] = None,
        members: Optional[MembershipProvider] = None,
        events: Optional[EventProducer] = None
    ):
        self.store = store
        self.members = members
        self.events = events or NullEventProducer()

    async def ensure_store(self):
        """Ensure we have a store and a membership provider."""
        if not self.store:
            self.store = await get_store()
        if not self.members:
            self.members = MembershipProvider(self.store)

    async def _load(self, community_id: IdLike, conversation_id: IdLike) -> Dict[str, Any]:
        try:
            conversation = await self.store.get('marketplace_conversations', conversation_id)
        except ValidationError:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        if not conversation or str(conversation['community_id']) != str(community_id):
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    async def _participant(
        self,
        community_id: IdLike,
        conversation_id: IdLike,
        user_id: IdLike
    ) -> tuple:
        member = await self.members.require_member(community_id, user_id)
        conversation = await self._load(community_id, conversation_id)
        return member, conversation, side_of(conversation, member.member_id)

    async def get_or_create_conversation(
        self,
        community_id: IdLike,
        listing_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        """Return the buyer's conversation about a listing, creating it if needed.

        Raises:
            NotAMemberError: If the buyer is not an active member
            ConversationNotFoundError: If the listing doesn't exist in the community
            InvalidMessageError: If the seller tries to message their own listing
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)

        try:
            listing = await self.store.get('marketplace_listings', listing_id)
        except ValidationError:
            listing = None
        if not listing or str(listing['community_id']) != str(community_id) or listing['status'] == 'deleted':
            raise ConversationNotFoundError(f"Listing {listing_id} not found")
        if listing['seller_id'] == member.member_id:
            raise InvalidMessageError("Sellers cannot start a conversation on their own listing")

        existing = await self.store.find_one(
            'marketplace_conversations',
            listing_id=listing['id'],
            buyer_id=member.member_id
        )
        if existing:
            return existing

        try:
            conversation = await self.store.insert('marketplace_conversations', {
                'community_id': member.community_id,
                'listing_id': listing['id'],
                'buyer_id': member.member_id,
                'seller_id': listing['seller_id']
            })
        except DuplicateRowError:
            # Lost the creation race; the winner's row is the conversation
            conversation = await self.store.find_one(
                'marketplace_conversations',
                listing_id=listing['id'],
                buyer_id=member.member_id
            )
            if conversation is None:
                raise
            return conversation

        logger.info(f"Created conversation {conversation['id']} on listing {listing['id']}")
        return conversation

    async def get_conversation(
        self,
        community_id: IdLike,
        conversation_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        await self.ensure_store()
        _, conversation, _ = await self._participant(community_id, conversation_id, user_id)
        return conversation

    async def send_message(
        self,
        community_id: IdLike,
        conversation_id: IdLike,
        user_id: IdLike,
        content: str,
        message_type: str = 'text',
        offer_amount: Optional[Any] = None
    ) -> Dict[str, Any]:
        """Append a message to a conversation.

        The message insert, ``last_message_at`` and the other party's unread
        counter commit together.

        Args:
            community_id: Community of the conversation
            conversation_id: Conversation to post in
            user_id: Sender's user id
            content: Message text, must not be empty
            message_type: 'text', 'offer' or 'system'
            offer_amount: Required and positive when message_type is 'offer'

        Returns:
            Dict containing the created message

        Raises:
            NotAParticipantError: If the sender is not the buyer or seller
            ConversationBlockedError: If the conversation is blocked
            InvalidMessageError: If content, type or offer amount is invalid
        """
        await self.ensure_store()
        member, conversation, side = await self._participant(community_id, conversation_id, user_id)

        content = (content or '').strip()
        if not content:
            raise InvalidMessageError("Message content is required")
        if message_type not in MESSAGE_TYPES:
            raise InvalidMessageError(f"Invalid message type: {message_type}")
        if message_type == 'offer':
            if offer_amount is None:
                raise InvalidMessageError("An offer needs an amount")
            offer_amount = to_money(offer_amount)
            if offer_amount <= 0:
                raise InvalidMessageError("Offer amount must be positive")
        elif offer_amount is not None:
            raise InvalidMessageError("Only offers carry an amount")

        counter = f"{other_side(side)}_unread_count"
        async with self.store.transaction() as tx:
            now = _now()
            updated = await tx.increment(
                'marketplace_conversations', conversation['id'], counter, 1,
                changes={'last_message_at': now}
            )
            if updated['status'] == 'blocked':
                raise ConversationBlockedError("This conversation is blocked")
            message = await tx.insert('marketplace_messages', {
                'conversation_id': conversation['id'],
                'sender_id': member.member_id,
                'content': content,
                'message_type': message_type,
                'offer_amount': offer_amount,
                'created_at': now
            })
            if updated['status'] == 'archived':
                # A new message brings an archived thread back
                await tx.update(
                    'marketplace_conversations', conversation['id'],
                    {'status': 'active'}, expected={'status': 'archived'}
                )

        logger.debug(f"Message {message['id']} in conversation {conversation['id']}")
        await self.events.publish(MarketEvent(
            type='message.created',
            topic=conversation_topic(conversation['id']),
            community_id=conversation['community_id'],
            data={
                'message_id': str(message['id']),
                'conversation_id': str(conversation['id']),
                'sender_id': str(member.member_id),
                'content': content,
                'message_type': message_type,
                'offer_amount': str(offer_amount) if offer_amount is not None else None,
                'created_at': message['created_at'].isoformat()
            }
        ))
        return message

    async def mark_read(
        self,
        community_id: IdLike,
        conversation_id: IdLike,
        user_id: IdLike
    ) -> int:
        """Mark the other party's messages read and lower the reader's counter.

        The counter drops by the number of messages marked, so a message
        counted by a concurrent ``send_message`` but not yet visible here
        stays unread.

        Returns:
            Number of messages newly marked read
        """
        await self.ensure_store()
        member, conversation, side = await self._participant(community_id, conversation_id, user_id)

        async with self.store.transaction() as tx:
            marked = await tx.update_where(
                'marketplace_messages',
                {'conversation_id': conversation['id'], 'is_read': False},
                {'is_read': True, 'read_at': _now()},
                exclude={'sender_id': member.member_id}
            )
            if marked:
                await tx.increment(
                    'marketplace_conversations', conversation['id'],
                    f"{side}_unread_count", -marked, floor=0
                )

        if marked:
            await self.events.publish(MarketEvent(
                type='messages.read',
                topic=conversation_topic(conversation['id']),
                community_id=conversation['community_id'],
                data={'conversation_id': str(conversation['id']), 'reader_id': str(member.member_id), 'count': marked}
            ))
        return marked

    async def list_conversations(
        self,
        community_id: IdLike,
        user_id: IdLike,
        include_archived: bool = False
    ) -> List[Dict[str, Any]]:
        """The member's conversations as buyer or seller, most recent first."""
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        exclude = None if include_archived else {'status': 'archived'}

        conversations = []
        for role in ('buyer_id', 'seller_id'):
            conversations.extend(await self.store.find(
                'marketplace_conversations',
                {'community_id': member.community_id, role: member.member_id},
                exclude=exclude
            ))
        conversations.sort(key=lambda c: c['last_message_at'], reverse=True)
        return conversations

    async def get_messages(
        self,
        community_id: IdLike,
        conversation_id: IdLike,
        user_id: IdLike,
        before: Optional[datetime] = None,
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        """The latest ``limit`` messages in insertion order.

        With ``before`` only messages strictly older than that time are
        returned, for paging back through a long thread.
        """
        await self.ensure_store()
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidMessageError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        _, conversation, _ = await self._participant(community_id, conversation_id, user_id)

        ranges = {'created_at': (None, before)} if before else None
        exclude = {'created_at': before} if before else None
        newest_first = await self.store.find(
            'marketplace_messages',
            {'conversation_id': conversation['id']},
            exclude=exclude,
            ranges=ranges,
            order_by=['-created_at'],
            limit=limit
        )
        return sorted(newest_first, key=lambda m: m['created_at'])

    async def _set_status(
        self,
        community_id: IdLike,
        conversation_id: IdLike,
        user_id: IdLike,
        status: str
    ) -> Dict[str, Any]:
        await self.ensure_store()
        member, conversation, _ = await self._participant(community_id, conversation_id, user_id)
        if conversation['status'] == status:
            return conversation
        if conversation['status'] == 'blocked':
            raise ConversationBlockedError("This conversation is blocked")

        updated = await self.store.update(
            'marketplace_conversations', conversation['id'], {'status': status},
            expected={'status': conversation['status']}
        )
        if not updated:
            raise ConversationStateError(f"Conversation {conversation_id} changed, retry")
        logger.info(f"Conversation {conversation['id']} {status} by member {member.member_id}")
        return updated

    async def archive_conversation(
        self,
        community_id: IdLike,
        conversation_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        return await self._set_status(community_id, conversation_id, user_id, 'archived')

    async def block_conversation(
        self,
        community_id: IdLike,
        conversation_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        """Block a conversation. No further messages can be sent."""
        return await self._set_status(community_id, conversation_id, user_id, 'blocked')

__all__ = [
    'ConversationBlockedError',
    'ConversationError',
    'ConversationManager',
    'ConversationNotFoundError',
    'ConversationStateError',
    'InvalidMessageError',
    'MESSAGE_TYPES',
    'NotAParticipantError'
]
