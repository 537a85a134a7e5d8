"""Purchase lifecycle and escrow.

Every state change is a conditional update keyed by the transaction id with
the expected ``(status, escrow_status)`` pair in the precondition. When the
update matches no row the transaction is re-read to report whether it is
missing or in the wrong state.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from database import Store, get_store
from errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from events import EventProducer, MarketEvent, NullEventProducer, transaction_topic
from fees import FeeSchedule, fee_schedule_from_settings, to_money
from members import Member, MembershipProvider
from .states import OPEN_STATUSES, TRANSITIONS, TransactionStatus, transition

logger = logging.getLogger(__name__)

IdLike = Union[str, uuid.UUID]

class TransactionError(Exception):
    """Base exception for purchase operations."""
    pass

class TransactionNotFoundError(TransactionError, NotFoundError):
    """Raised when a transaction is not found."""
    pass

class TransactionStateError(TransactionError, InvalidStateError):
    """Raised when a transaction is in the wrong state for an operation."""
    pass

class TransactionPermissionError(TransactionError, PermissionDeniedError):
    """Raised when the caller has the wrong role on a transaction."""
    pass

class InvalidPurchaseError(TransactionError, ValidationError):
    """Raised when purchase input is invalid."""
    pass

def _now() -> datetime:
    return datetime.now(timezone.utc)

def price_purchase(
    listing: Dict[str, Any],
    quantity: int,
    fee_schedule: FeeSchedule
) -> Dict[str, Decimal]:
    """Compute the frozen amounts of a purchase.

    The fee is taken on the subtotal (unit price times quantity plus shipping
    when the listing ships). The buyer pays subtotal plus fee; the seller
    receives subtotal minus fee.
    """
    unit_price = to_money(listing['price'])
    shipping_cost = to_money(listing['shipping_cost']) if listing['shipping_available'] else Decimal('0.00')
    subtotal = unit_price * quantity + shipping_cost
    fee = fee_schedule.compute(subtotal)
    return {
        'unit_price': unit_price,
        'shipping_cost': shipping_cost,
        'fee_amount': fee,
        'total_price': subtotal + fee,
        'net_amount': subtotal - fee
    }

class TransactionManager:
    """Manager class for purchases and escrow."""

    def __init__(
        self,
        store: Optional[Store] = None,
        members: Optional[MembershipProvider] = None,
        events: Optional[EventProducer] = None,
        fee_schedule: Optional[FeeSchedule] = None,
        stats=None
    ):
        """Initialize the transaction manager.

        Args:
            store: Optional store. If not provided, will get from database module.
            members: Optional membership provider sharing the store
            events: Optional event producer for change notifications
            fee_schedule: Optional fee policy, defaults to the configured one
            stats: Optional seller stats aggregator refreshed on completion
        """
        self.store = store
        self.members = members
        self.events = events or NullEventProducer()
        self.fee_schedule = fee_schedule
        self.stats = stats

    async def ensure_store(self):
        """Ensure we have a store and collaborators."""
        if not self.store:
            self.store = await get_store()
        if not self.members:
            self.members = MembershipProvider(self.store)
        if not self.fee_schedule:
            self.fee_schedule = fee_schedule_from_settings()
        if not self.stats:
            # Import here to avoid circular imports
            from reviews.stats import SellerStatsAggregator
            self.stats = SellerStatsAggregator(self.store)

    async def _load(self, transaction_id: IdLike, community_id: Optional[IdLike] = None) -> Dict[str, Any]:
        try:
            txn = await self.store.get('marketplace_transactions', transaction_id)
        except ValidationError:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        if not txn or (community_id is not None and str(txn['community_id']) != str(community_id)):
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return txn

    async def _apply(
        self,
        txn: Dict[str, Any],
        move: str,
        extra: Optional[Dict[str, Any]] = None,
        store: Optional[Store] = None
    ) -> Dict[str, Any]:
        """Apply a named move from TRANSITIONS as a compare-and-set."""
        store = store or self.store
        expected, changes = transition(move)
        updated = await store.update(
            'marketplace_transactions', txn['id'], {**changes, **(extra or {})},
            expected=expected
        )
        if not updated:
            current = await store.get('marketplace_transactions', txn['id'])
            if not current:
                raise TransactionNotFoundError(f"Transaction {txn['id']} not found")
            raise TransactionStateError(
                f"Cannot {move} transaction {txn['id']} in state "
                f"{current['status']}/{current['escrow_status']}"
            )
        logger.info(
            f"Transaction {txn['id']}: {expected['status']}/{expected['escrow_status']} -> "
            f"{updated['status']}/{updated['escrow_status']}"
        )
        return updated

    async def _publish(self, event_type: str, txn: Dict[str, Any]) -> None:
        await self.events.publish(MarketEvent(
            type=event_type,
            topic=transaction_topic(txn['id']),
            community_id=txn['community_id'],
            data={
                'transaction_id': str(txn['id']),
                'listing_id': str(txn['listing_id']),
                'status': txn['status'],
                'escrow_status': txn['escrow_status']
            }
        ))

    def _require_participant(self, txn: Dict[str, Any], member: Member) -> str:
        if txn['buyer_id'] == member.member_id:
            return 'buyer'
        if txn['seller_id'] == member.member_id:
            return 'seller'
        raise TransactionPermissionError("Only the buyer or seller can do this")

    async def initiate_purchase(
        self,
        community_id: IdLike,
        listing_id: IdLike,
        user_id: IdLike,
        quantity: int = 1
    ) -> Dict[str, Any]:
        """Start a purchase of an active listing.

        Amounts are computed once here and stored on the transaction. The
        transaction starts as pending with escrow pending, waiting for the
        payment processor to call ``mark_paid``.

        Args:
            community_id: Community of the listing
            listing_id: Listing to buy
            user_id: Buyer's user id
            quantity: Units to buy, at most the listing's quantity

        Returns:
            Dict containing the created transaction

        Raises:
            NotAMemberError: If the buyer is not an active member
            NotFoundError: If the listing doesn't exist in the community
            InvalidPurchaseError: If the buyer is the seller or quantity is invalid
            InvalidStateError: If the listing is not active or its stock is reserved
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)

        try:
            listing = await self.store.get('marketplace_listings', listing_id)
        except ValidationError:
            listing = None
        if not listing or str(listing['community_id']) != str(community_id) or listing['status'] == 'deleted':
            raise NotFoundError(f"Listing {listing_id} not found")
        if listing['status'] != 'active':
            raise TransactionStateError(f"Listing {listing_id} is not active")
        if listing['seller_id'] == member.member_id:
            raise InvalidPurchaseError("Sellers cannot buy their own listing")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidPurchaseError("Quantity must be an integer of at least 1")
        if quantity > listing['quantity']:
            raise InvalidPurchaseError(
                f"Only {listing['quantity']} available, requested {quantity}"
            )

        amounts = price_purchase(listing, quantity, self.fee_schedule)
        _, initial = TRANSITIONS['create']

        async with self.store.transaction() as tx:
            # Holds the listing row lock against mark_sold and soft_delete
            locked = await tx.update(
                'marketplace_listings', listing['id'], {'status': 'active'},
                expected={'status': 'active'}
            )
            if not locked:
                raise TransactionStateError(f"Listing {listing_id} is not active")
            open_purchases = await tx.find('marketplace_transactions', {
                'listing_id': listing['id'],
                'status': list(OPEN_STATUSES)
            })
            reserved = sum(row['quantity'] for row in open_purchases)
            if reserved + quantity > locked['quantity']:
                raise TransactionStateError(
                    f"Only {max(locked['quantity'] - reserved, 0)} of listing {listing_id} "
                    f"left unreserved, requested {quantity}"
                )
            txn = await tx.insert('marketplace_transactions', {
                'community_id': member.community_id,
                'listing_id': listing['id'],
                'buyer_id': member.member_id,
                'seller_id': listing['seller_id'],
                'quantity': quantity,
                'status': initial[0],
                'escrow_status': initial[1],
                **amounts
            })

        logger.info(
            f"Purchase {txn['id']} initiated on listing {listing['id']}: "
            f"total {txn['total_price']}, fee {txn['fee_amount']}, net {txn['net_amount']}"
        )
        await self._publish('transaction.created', txn)
        return txn

    async def mark_paid(
        self,
        transaction_id: IdLike,
        payment_reference: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record a captured payment: pending/pending -> paid/held.

        Called by the payment processor. A repeated call carrying the same
        payment reference returns the transaction unchanged.

        Raises:
            TransactionNotFoundError: If the transaction doesn't exist
            TransactionStateError: If the transaction is not awaiting payment
        """
        await self.ensure_store()
        txn = await self._load(transaction_id)
        try:
            updated = await self._apply(txn, 'pay', {
                'escrow_held_at': _now(),
                'payment_reference': payment_reference
            })
        except TransactionStateError:
            current = await self._load(transaction_id)
            if (
                payment_reference
                and current['payment_reference'] == payment_reference
                and current['status'] != TransactionStatus.PENDING.value
            ):
                logger.info(f"Duplicate payment notification for {transaction_id}")
                return current
            raise

        await self._publish('transaction.paid', updated)
        return updated

    async def record_payment_failure(
        self,
        transaction_id: IdLike,
        payment_reference: Optional[str] = None
    ) -> Dict[str, Any]:
        """Note a failed capture. The transaction stays as it is."""
        await self.ensure_store()
        txn = await self._load(transaction_id)
        logger.warning(
            f"Payment {payment_reference or '(no reference)'} failed for transaction {txn['id']} "
            f"in state {txn['status']}/{txn['escrow_status']}"
        )
        await self._publish('transaction.payment_failed', txn)
        return txn

    async def mark_shipped(
        self,
        community_id: IdLike,
        transaction_id: IdLike,
        user_id: IdLike,
        tracking_number: Optional[str] = None,
        shipping_carrier: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record shipment details. Seller only, while funds are held."""
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        txn = await self._load(transaction_id, community_id)
        if txn['seller_id'] != member.member_id:
            raise TransactionPermissionError("Only the seller can mark a purchase shipped")

        updated = await self.store.update(
            'marketplace_transactions', txn['id'],
            {
                'shipped_at': _now(),
                'tracking_number': tracking_number,
                'shipping_carrier': shipping_carrier
            },
            expected={'status': TransactionStatus.PAID.value, 'escrow_status': 'held'}
        )
        if not updated:
            current = await self._load(transaction_id)
            raise TransactionStateError(
                f"Cannot ship transaction in state {current['status']}/{current['escrow_status']}"
            )
        logger.info(f"Transaction {txn['id']} shipped via {shipping_carrier or 'unknown carrier'}")
        await self._publish('transaction.shipped', updated)
        return updated

    async def confirm_delivery(
        self,
        community_id: IdLike,
        transaction_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        """Buyer confirms receipt: held -> released, status completed.

        This is the only path that releases funds outside dispute resolution.

        Raises:
            TransactionPermissionError: If the caller is not the buyer
            TransactionStateError: If escrow is not held
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        txn = await self._load(transaction_id, community_id)
        if txn['buyer_id'] != member.member_id:
            raise TransactionPermissionError("Only the buyer can confirm delivery")

        now = _now()
        async with self.store.transaction() as tx:
            updated = await self._apply(txn, 'confirm', {
                'buyer_confirmed_at': now,
                'escrow_released_at': now
            }, store=tx)
            await tx.increment('marketplace_listings', txn['listing_id'], 'sold_count', txn['quantity'])

        await self._publish('transaction.completed', updated)
        await self.stats.refresh(updated['community_id'], updated['seller_id'])
        return updated

    async def cancel_purchase(
        self,
        community_id: IdLike,
        transaction_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        """Cancel a purchase that has not been paid.

        Escrow stays pending; nothing was captured.

        Raises:
            TransactionPermissionError: If the caller is not the buyer or seller
            TransactionStateError: If the transaction is no longer pending
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        txn = await self._load(transaction_id, community_id)
        self._require_participant(txn, member)

        updated = await self._apply(txn, 'cancel')
        await self._publish('transaction.cancelled', updated)
        await self.stats.refresh(updated['community_id'], updated['seller_id'])
        return updated

    async def get_transaction(
        self,
        community_id: IdLike,
        transaction_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        """Get a transaction. Visible to its buyer, its seller and community staff."""
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        txn = await self._load(transaction_id, community_id)
        if not member.is_staff:
            self._require_participant(txn, member)
        return txn

    async def _list(
        self,
        community_id: IdLike,
        user_id: IdLike,
        role: str,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        filters = {'community_id': member.community_id, role: member.member_id}
        if status is not None:
            if status not in {s.value for s in TransactionStatus}:
                raise InvalidPurchaseError(f"Invalid status: {status}")
            filters['status'] = status
        return await self.store.find('marketplace_transactions', filters, order_by=['-created_at'])

    async def list_purchases(
        self,
        community_id: IdLike,
        user_id: IdLike,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Transactions where the caller is the buyer, newest first."""
        return await self._list(community_id, user_id, 'buyer_id', status)

    async def list_sales(
        self,
        community_id: IdLike,
        user_id: IdLike,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Transactions where the caller is the seller, newest first."""
        return await self._list(community_id, user_id, 'seller_id', status)
