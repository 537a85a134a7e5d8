"""Seller statistics rollup.

``marketplace_seller_stats`` is a materialized view owned by this module.
Each refresh recomputes one member's row from transactions, reviews,
disputes and conversations, then upserts it.
"""
import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

from database import Store, get_store
from escrow.states import TransactionStatus

logger = logging.getLogger(__name__)

IdLike = Union[str, uuid.UUID]

TWO_PLACES = Decimal('0.01')

# Sales that reached payment
PAID_STATUSES = [
    TransactionStatus.PAID.value,
    TransactionStatus.COMPLETED.value,
    TransactionStatus.REFUNDED.value,
    TransactionStatus.DISPUTED.value,
]

def _percent(part: int, whole: int) -> Optional[Decimal]:
    if not whole:
        return None
    return (Decimal(part) * 100 / Decimal(whole)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

class SellerStatsAggregator:
    """Recomputes and serves per-seller statistics."""

    def __init__(self, store: Optional[Store] = None):
        self.store = store

    async def ensure_store(self):
        """Ensure we have a store."""
        if not self.store:
            self.store = await get_store()

    async def compute(self, community_id: IdLike, member_id: IdLike) -> Dict[str, Any]:
        """Compute a member's seller statistics without storing them.

        - total_sales / successful_transactions: completed sales
        - total_revenue: net amount of completed sales
        - average_rating / total_reviews: reviews written by buyers about the member
        - cancelled_transactions: sales cancelled before payment
        - dispute_rate: percent of paid sales that were disputed
        - response_rate: percent of the member's seller conversations they replied in
        """
        await self.ensure_store()
        sales = await self.store.find(
            'marketplace_transactions',
            {'community_id': community_id, 'seller_id': member_id}
        )
        completed = [t for t in sales if t['status'] == TransactionStatus.COMPLETED.value]
        cancelled = [t for t in sales if t['status'] == TransactionStatus.CANCELLED.value]
        paid_ids = [t['id'] for t in sales if t['status'] in PAID_STATUSES]

        reviews = await self.store.find(
            'marketplace_reviews',
            {'community_id': community_id, 'reviewee_id': member_id, 'is_buyer_review': True}
        )
        average_rating = None
        if reviews:
            average_rating = (
                Decimal(sum(r['rating'] for r in reviews)) / len(reviews)
            ).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

        disputed = 0
        if paid_ids:
            disputed = await self.store.count('marketplace_disputes', {'transaction_id': paid_ids})

        conversations = await self.store.find(
            'marketplace_conversations',
            {'community_id': community_id, 'seller_id': member_id}
        )
        replied = 0
        for conversation in conversations:
            if await self.store.count(
                'marketplace_messages',
                {'conversation_id': conversation['id'], 'sender_id': member_id}
            ):
                replied += 1

        return {
            'community_id': community_id,
            'member_id': member_id,
            'total_sales': len(completed),
            'total_revenue': sum((t['net_amount'] for t in completed), Decimal('0.00')),
            'average_rating': average_rating,
            'total_reviews': len(reviews),
            'successful_transactions': len(completed),
            'cancelled_transactions': len(cancelled),
            'dispute_rate': _percent(disputed, len(paid_ids)),
            'response_rate': _percent(replied, len(conversations))
        }

    async def refresh(self, community_id: IdLike, member_id: IdLike) -> Dict[str, Any]:
        """Recompute and store a member's statistics."""
        stats = await self.compute(community_id, member_id)
        row = await self.store.upsert(
            'marketplace_seller_stats', stats, conflict=('community_id', 'member_id')
        )
        logger.debug(f"Refreshed seller stats for {member_id}: {stats['total_sales']} sales")
        return row

    async def get(self, community_id: IdLike, member_id: IdLike) -> Dict[str, Any]:
        """Read the stored statistics, refreshing them when absent."""
        await self.ensure_store()
        row = await self.store.find_one(
            'marketplace_seller_stats', community_id=community_id, member_id=member_id
        )
        if row is None:
            row = await self.refresh(community_id, member_id)
        return row
