"""Transaction and escrow states.

A purchase moves along two parallel tracks:

    status: pending -> paid -> completed | refunded | disputed | cancelled
    escrow: none -> pending -> held -> released | refunded | disputed

and a disputed purchase settles exactly once to released (completed) or
refunded (refunded). ``TRANSITIONS`` lists every legal move as a pair of
``(status, escrow_status)`` before and after; the manager applies each move
as a conditional update whose precondition is the "before" pair.
"""

from enum import Enum
from typing import Dict, Tuple

class TransactionStatus(str, Enum):
    PENDING = 'pending'
    PAID = 'paid'
    COMPLETED = 'completed'
    REFUNDED = 'refunded'
    DISPUTED = 'disputed'
    CANCELLED = 'cancelled'

class EscrowStatus(str, Enum):
    NONE = 'none'
    PENDING = 'pending'
    HELD = 'held'
    RELEASED = 'released'
    REFUNDED = 'refunded'
    DISPUTED = 'disputed'

class DisputeStatus(str, Enum):
    OPEN = 'open'
    RESOLVED_BUYER_FAVOR = 'resolved_buyer_favor'
    RESOLVED_SELLER_FAVOR = 'resolved_seller_favor'

class DisputeReason(str, Enum):
    ITEM_NOT_RECEIVED = 'item_not_received'
    ITEM_NOT_AS_DESCRIBED = 'item_not_as_described'
    ITEM_DAMAGED = 'item_damaged'
    WRONG_ITEM = 'wrong_item'
    PAYMENT_ISSUE = 'payment_issue'
    COMMUNICATION_ISSUE = 'communication_issue'
    OTHER = 'other'

class Resolution(str, Enum):
    RELEASE = 'release'
    REFUND = 'refund'

# Statuses that keep a listing "in use"
OPEN_STATUSES = (
    TransactionStatus.PENDING.value,
    TransactionStatus.PAID.value,
    TransactionStatus.DISPUTED.value,
)

TERMINAL_STATUSES = (
    TransactionStatus.COMPLETED.value,
    TransactionStatus.REFUNDED.value,
    TransactionStatus.CANCELLED.value,
)

State = Tuple[str, str]

TRANSITIONS: Dict[str, Tuple[State, State]] = {
    'create': (
        (TransactionStatus.PENDING.value, EscrowStatus.NONE.value),
        (TransactionStatus.PENDING.value, EscrowStatus.PENDING.value),
    ),
    'pay': (
        (TransactionStatus.PENDING.value, EscrowStatus.PENDING.value),
        (TransactionStatus.PAID.value, EscrowStatus.HELD.value),
    ),
    'cancel': (
        (TransactionStatus.PENDING.value, EscrowStatus.PENDING.value),
        (TransactionStatus.CANCELLED.value, EscrowStatus.PENDING.value),
    ),
    'confirm': (
        (TransactionStatus.PAID.value, EscrowStatus.HELD.value),
        (TransactionStatus.COMPLETED.value, EscrowStatus.RELEASED.value),
    ),
    'dispute': (
        (TransactionStatus.PAID.value, EscrowStatus.HELD.value),
        (TransactionStatus.DISPUTED.value, EscrowStatus.DISPUTED.value),
    ),
    'resolve_release': (
        (TransactionStatus.DISPUTED.value, EscrowStatus.DISPUTED.value),
        (TransactionStatus.COMPLETED.value, EscrowStatus.RELEASED.value),
    ),
    'resolve_refund': (
        (TransactionStatus.DISPUTED.value, EscrowStatus.DISPUTED.value),
        (TransactionStatus.REFUNDED.value, EscrowStatus.REFUNDED.value),
    ),
}

def transition(name: str) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Return ``(expected, changes)`` column dicts for a named move."""
    (status, escrow), (new_status, new_escrow) = TRANSITIONS[name]
    return (
        {'status': status, 'escrow_status': escrow},
        {'status': new_status, 'escrow_status': new_escrow},
    )

def is_open(status: str) -> bool:
    return status in OPEN_STATUSES
