"""Reviews module for completed purchases.

This module provides functionality for:
- Submitting one review per reviewer per completed transaction
- Listing the reviews a member received
- Reading seller statistics maintained by the aggregator
"""

import logging
import numbers
import uuid
from typing import Any, Dict, List, Optional, Union

from database import DuplicateRowError, Store, get_store
from errors import (
    DuplicateReviewError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError
)
from escrow.states import TransactionStatus
from events import EventProducer, MarketEvent, NullEventProducer, transaction_topic
from members import MembershipProvider
from .stats import SellerStatsAggregator

logger = logging.getLogger(__name__)

IdLike = Union[str, uuid.UUID]

MIN_RATING = 1
MAX_RATING = 5

class ReviewError(Exception):
    """Base exception for review operations."""
    pass

class ReviewNotFoundError(ReviewError, NotFoundError):
    """Raised when the reviewed transaction or member is not found."""
    pass

class ReviewStateError(ReviewError, InvalidStateError):
    """Raised when the transaction is not completed."""
    pass

class ReviewPermissionError(ReviewError, PermissionDeniedError):
    """Raised when the reviewer is not a party to the transaction."""
    pass

class InvalidReviewError(ReviewError, ValidationError):
    """Raised when the rating or text is invalid."""
    pass

def clamp_rating(rating: Any) -> int:
    """Clamp an integer rating into [1, 5].

    Raises:
        InvalidReviewError: If the rating is not an integer
    """
    if isinstance(rating, bool) or not isinstance(rating, numbers.Integral):
        raise InvalidReviewError(f"Rating must be an integer: {rating!r}")
    return max(MIN_RATING, min(MAX_RATING, int(rating)))

class ReviewManager:
    """Manager class for reviews and seller statistics."""

    def __init__(
        self,
        store: Optional[Store] = None,
        members: Optional[MembershipProvider] = None,
        events: Optional[EventProducer] = None,
        stats: Optional[SellerStatsAggregator] = None
    ):
        self.store = store
        self.members = members
        self.events = events or NullEventProducer()
        self.stats = stats

    async def ensure_store(self):
        """Ensure we have a store and collaborators."""
        if not self.store:
            self.store = await get_store()
        if not self.members:
            self.members = MembershipProvider(self.store)
        if not self.stats:
            self.stats = SellerStatsAggregator(self.store)

    async def submit_review(
        self,
        community_id: IdLike,
        transaction_id: IdLike,
        user_id: IdLike,
        rating: int,
        content: Optional[str] = None,
        title: Optional[str] = None
    ) -> Dict[str, Any]:
        """Review the other party of a completed transaction.

        Args:
            community_id: Community of the transaction
            transaction_id: Completed transaction
            user_id: Reviewer's user id, the buyer or the seller
            rating: Integer rating, clamped to 1..5
            content: Optional review text
            title: Optional review title

        Returns:
            Dict containing the created review

        Raises:
            ReviewStateError: If the transaction is not completed
            ReviewPermissionError: If the reviewer is not the buyer or seller
            InvalidReviewError: If the rating is not an integer
            DuplicateReviewError: If the reviewer already reviewed this transaction
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        rating = clamp_rating(rating)

        try:
            txn = await self.store.get('marketplace_transactions', transaction_id)
        except ValidationError:
            txn = None
        if not txn or str(txn['community_id']) != str(community_id):
            raise ReviewNotFoundError(f"Transaction {transaction_id} not found")

        if member.member_id == txn['buyer_id']:
            reviewee_id, is_buyer_review = txn['seller_id'], True
        elif member.member_id == txn['seller_id']:
            reviewee_id, is_buyer_review = txn['buyer_id'], False
        else:
            raise ReviewPermissionError("Only the buyer or seller can review this transaction")

        if txn['status'] != TransactionStatus.COMPLETED.value:
            raise ReviewStateError(f"Cannot review a transaction in status {txn['status']}")

        existing = await self.store.find_one(
            'marketplace_reviews', transaction_id=txn['id'], reviewer_id=member.member_id
        )
        if existing:
            raise DuplicateReviewError("You have already reviewed this transaction")

        try:
            review = await self.store.insert('marketplace_reviews', {
                'community_id': txn['community_id'],
                'transaction_id': txn['id'],
                'reviewer_id': member.member_id,
                'reviewee_id': reviewee_id,
                'listing_id': txn['listing_id'],
                'rating': rating,
                'title': (title or '').strip() or None,
                'content': (content or '').strip() or None,
                'is_buyer_review': is_buyer_review
            })
        except DuplicateRowError:
            raise DuplicateReviewError("You have already reviewed this transaction")

        logger.info(f"Review {review['id']} ({rating}/5) on transaction {txn['id']}")
        await self.events.publish(MarketEvent(
            type='review.created',
            topic=transaction_topic(txn['id']),
            community_id=txn['community_id'],
            data={'review_id': str(review['id']), 'transaction_id': str(txn['id']), 'rating': rating}
        ))
        await self.stats.refresh(txn['community_id'], reviewee_id)
        return review

    async def list_reviews(
        self,
        community_id: IdLike,
        member_id: IdLike,
        user_id: IdLike,
        as_seller: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Reviews a member received, newest first.

        Args:
            as_seller: True for reviews written by buyers, False for reviews
                written by sellers, None for both
        """
        await self.ensure_store()
        await self.members.require_member(community_id, user_id)
        filters: Dict[str, Any] = {'community_id': community_id, 'reviewee_id': member_id}
        if as_seller is not None:
            filters['is_buyer_review'] = as_seller
        try:
            return await self.store.find(
                'marketplace_reviews', filters,
                order_by=['-created_at'], limit=limit, offset=offset
            )
        except ValidationError:
            raise ReviewNotFoundError(f"Member {member_id} not found")

    async def get_seller_stats(
        self,
        community_id: IdLike,
        member_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        """Seller statistics for a member of the caller's community."""
        await self.ensure_store()
        await self.members.require_member(community_id, user_id)
        try:
            seller = await self.members.get_member(community_id, member_id)
        except ValidationError:
            seller = None
        if seller is None:
            raise ReviewNotFoundError(f"Member {member_id} not found")
        return await self.stats.get(seller.community_id, seller.member_id)

__all__ = [
    'DuplicateReviewError',
    'InvalidReviewError',
    'ReviewError',
    'ReviewManager',
    'ReviewNotFoundError',
    'ReviewPermissionError',
    'ReviewStateError',
    'SellerStatsAggregator',
    'clamp_rating'
]
