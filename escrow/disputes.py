"""Disputes on held escrow.

A transaction gets at most one dispute, ever. Opening a dispute and moving
the transaction to disputed/disputed happen in one store transaction, and so
do resolving it and settling the escrow.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from database import DuplicateRowError, Store, get_store
from errors import ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from events import EventProducer, MarketEvent, NullEventProducer, transaction_topic
from members import MembershipProvider, require_admin, require_staff
from .states import DisputeReason, DisputeStatus, Resolution, TransactionStatus, transition

logger = logging.getLogger(__name__)

IdLike = Union[str, uuid.UUID]

class DisputeError(Exception):
    """Base exception for dispute operations."""
    pass

class DisputeNotFoundError(DisputeError, NotFoundError):
    """Raised when a dispute or its transaction is not found."""
    pass

class DisputeStateError(DisputeError, InvalidStateError):
    """Raised when a dispute cannot be opened, changed or resolved."""
    pass

class DisputePermissionError(DisputeError, PermissionDeniedError):
    """Raised when the caller may not act on a dispute."""
    pass

class InvalidDisputeError(DisputeError, ValidationError):
    """Raised when dispute input is invalid."""
    pass

class DisputeConflictError(DisputeError, ConflictError):
    """Raised when a concurrent open_dispute on the same transaction wins."""
    pass

REASONS = {reason.value for reason in DisputeReason}

RESOLUTION_OUTCOMES = {
    Resolution.RELEASE.value: ('resolve_release', DisputeStatus.RESOLVED_SELLER_FAVOR.value),
    Resolution.REFUND.value: ('resolve_refund', DisputeStatus.RESOLVED_BUYER_FAVOR.value),
}

def _now() -> datetime:
    return datetime.now(timezone.utc)

class DisputeManager:
    """Manager class for disputes."""

    def __init__(
        self,
        store: Optional[Store] = None,
        members: Optional[MembershipProvider] = None,
        events: Optional[EventProducer] = None,
        stats=None
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
            # Import here to avoid circular imports
            from reviews.stats import SellerStatsAggregator
            self.stats = SellerStatsAggregator(self.store)

    async def _load_transaction(self, community_id: IdLike, transaction_id: IdLike) -> Dict[str, Any]:
        try:
            txn = await self.store.get('marketplace_transactions', transaction_id)
        except ValidationError:
            txn = None
        if not txn or str(txn['community_id']) != str(community_id):
            raise DisputeNotFoundError(f"Transaction {transaction_id} not found")
        return txn

    async def _load(self, community_id: IdLike, dispute_id: IdLike) -> Dict[str, Any]:
        try:
            dispute = await self.store.get('marketplace_disputes', dispute_id)
        except ValidationError:
            dispute = None
        if not dispute or str(dispute['community_id']) != str(community_id):
            raise DisputeNotFoundError(f"Dispute {dispute_id} not found")
        return dispute

    async def _publish(self, event_type: str, dispute: Dict[str, Any], txn: Dict[str, Any]) -> None:
        await self.events.publish(MarketEvent(
            type=event_type,
            topic=transaction_topic(txn['id']),
            community_id=txn['community_id'],
            data={
                'dispute_id': str(dispute['id']),
                'transaction_id': str(txn['id']),
                'dispute_status': dispute['status'],
                'status': txn['status'],
                'escrow_status': txn['escrow_status']
            }
        ))

    async def open_dispute(
        self,
        community_id: IdLike,
        transaction_id: IdLike,
        user_id: IdLike,
        reason: str,
        description: str
    ) -> Dict[str, Any]:
        """Open a dispute on a transaction whose escrow is held.

        Inserts the dispute and moves the transaction to disputed/disputed
        atomically.

        Args:
            community_id: Community of the transaction
            transaction_id: Transaction to dispute
            user_id: Buyer's or seller's user id
            reason: One of DisputeReason
            description: Non-empty explanation

        Returns:
            Dict containing the created dispute

        Raises:
            DisputePermissionError: If the caller is not the buyer or seller
            InvalidDisputeError: If the reason or description is invalid
            DisputeStateError: If escrow is not held or a dispute already exists
            DisputeConflictError: If a concurrent dispute was opened first
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        txn = await self._load_transaction(community_id, transaction_id)
        if member.member_id not in (txn['buyer_id'], txn['seller_id']):
            raise DisputePermissionError("Only the buyer or seller can open a dispute")

        if reason not in REASONS:
            raise InvalidDisputeError(f"Invalid dispute reason: {reason}")
        description = (description or '').strip()
        if not description:
            raise InvalidDisputeError("A dispute needs a description")

        expected, changes = transition('dispute')
        try:
            async with self.store.transaction() as tx:
                existing = await tx.find_one('marketplace_disputes', transaction_id=txn['id'])
                if existing:
                    raise DisputeStateError(f"Transaction {txn['id']} already has a dispute")

                updated = await tx.update(
                    'marketplace_transactions', txn['id'], changes,
                    expected={'escrow_status': expected['escrow_status']},
                    exclude={'status': TransactionStatus.DISPUTED.value}
                )
                if not updated:
                    current = await tx.get('marketplace_transactions', txn['id'])
                    raise DisputeStateError(
                        f"Cannot dispute transaction in state "
                        f"{current['status']}/{current['escrow_status']}"
                    )

                dispute = await tx.insert('marketplace_disputes', {
                    'community_id': txn['community_id'],
                    'transaction_id': txn['id'],
                    'initiated_by': member.member_id,
                    'reason': reason,
                    'description': description
                })
        except DuplicateRowError:
            raise DisputeConflictError(f"A dispute was already opened on transaction {txn['id']}")

        logger.info(f"Dispute {dispute['id']} opened on transaction {txn['id']} ({reason})")
        await self._publish('dispute.opened', dispute, updated)
        return dispute

    async def resolve_dispute(
        self,
        community_id: IdLike,
        dispute_id: IdLike,
        user_id: IdLike,
        resolution: str,
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """Settle a dispute. Community admins only.

        ``release`` pays the seller (completed/released); ``refund`` returns
        the funds to the buyer (refunded/refunded). Works exactly once.

        Returns:
            Dict with the resolved 'dispute' and the settled 'transaction'

        Raises:
            PermissionDeniedError: If the caller is not an admin
            InvalidDisputeError: If the resolution is unknown
            DisputeStateError: If the dispute is already resolved
        """
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        require_admin(member, 'resolve disputes')
        if resolution not in RESOLUTION_OUTCOMES:
            raise InvalidDisputeError(f"Invalid resolution: {resolution}")
        dispute = await self._load(community_id, dispute_id)

        move, dispute_status = RESOLUTION_OUTCOMES[resolution]
        expected, changes = transition(move)
        now = _now()
        if resolution == Resolution.RELEASE.value:
            changes['escrow_released_at'] = now
        else:
            changes['refund_reason'] = notes or f"Dispute {dispute['id']} resolved in buyer's favor"

        async with self.store.transaction() as tx:
            resolved = await tx.update(
                'marketplace_disputes', dispute['id'],
                {
                    'resolved': True,
                    'status': dispute_status,
                    'resolution_notes': notes,
                    'resolved_by': member.member_id,
                    'resolved_at': now
                },
                expected={'resolved': False}
            )
            if not resolved:
                raise DisputeStateError(f"Dispute {dispute['id']} is already resolved")

            txn = await tx.update(
                'marketplace_transactions', dispute['transaction_id'], changes,
                expected=expected
            )
            if not txn:
                current = await tx.get('marketplace_transactions', dispute['transaction_id'])
                raise DisputeStateError(
                    f"Transaction is not disputed: {current['status']}/{current['escrow_status']}"
                )

        logger.info(f"Dispute {dispute['id']} resolved ({resolution}) by {member.member_id}")
        await self._publish('dispute.resolved', resolved, txn)
        await self.stats.refresh(txn['community_id'], txn['seller_id'])
        return {'dispute': resolved, 'transaction': txn}

    async def add_statement(
        self,
        community_id: IdLike,
        dispute_id: IdLike,
        user_id: IdLike,
        statement: str
    ) -> Dict[str, Any]:
        """Record the buyer's or seller's side while the dispute is open."""
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        dispute = await self._load(community_id, dispute_id)
        txn = await self._load_transaction(community_id, dispute['transaction_id'])

        if member.member_id == txn['buyer_id']:
            column = 'buyer_statement'
        elif member.member_id == txn['seller_id']:
            column = 'seller_statement'
        else:
            raise DisputePermissionError("Only the buyer or seller can add a statement")

        statement = (statement or '').strip()
        if not statement:
            raise InvalidDisputeError("Statement must not be empty")

        updated = await self.store.update(
            'marketplace_disputes', dispute['id'], {column: statement},
            expected={'resolved': False}
        )
        if not updated:
            raise DisputeStateError(f"Dispute {dispute['id']} is already resolved")
        return updated

    async def get_dispute(
        self,
        community_id: IdLike,
        dispute_id: IdLike,
        user_id: IdLike
    ) -> Dict[str, Any]:
        """Get a dispute. Visible to the transaction's parties and community staff."""
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        dispute = await self._load(community_id, dispute_id)
        if not member.is_staff:
            txn = await self._load_transaction(community_id, dispute['transaction_id'])
            if member.member_id not in (txn['buyer_id'], txn['seller_id']):
                raise DisputePermissionError("Only the buyer, the seller or staff can view this dispute")
        return dispute

    async def list_disputes(
        self,
        community_id: IdLike,
        user_id: IdLike,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Disputes in the community for the moderation queue. Staff only."""
        await self.ensure_store()
        member = await self.members.require_member(community_id, user_id)
        require_staff(member, 'list disputes')
        filters: Dict[str, Any] = {'community_id': member.community_id}
        if status is not None:
            if status not in {s.value for s in DisputeStatus}:
                raise InvalidDisputeError(f"Invalid dispute status: {status}")
            filters['status'] = status
        return await self.store.find('marketplace_disputes', filters, order_by=['-created_at'])

__all__ = [
    'DisputeConflictError',
    'DisputeError',
    'DisputeManager',
    'DisputeNotFoundError',
    'DisputePermissionError',
    'DisputeStateError',
    'InvalidDisputeError',
    'REASONS'
]
