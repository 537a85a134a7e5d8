"""Escrow module for marketplace purchases.

This module handles:
- Purchase initiation with frozen fee, total and net amounts
- Payment capture, shipment and delivery confirmation
- Cancellation of unpaid purchases
- Disputes and their one-time resolution
"""

from .states import (
    DisputeReason,
    DisputeStatus,
    EscrowStatus,
    OPEN_STATUSES,
    Resolution,
    TERMINAL_STATUSES,
    TRANSITIONS,
    TransactionStatus,
    is_open,
    transition
)
from .transactions import (
    InvalidPurchaseError,
    TransactionError,
    TransactionManager,
    TransactionNotFoundError,
    TransactionPermissionError,
    TransactionStateError,
    price_purchase
)
from .disputes import (
    DisputeConflictError,
    DisputeError,
    DisputeManager,
    DisputeNotFoundError,
    DisputePermissionError,
    DisputeStateError,
    InvalidDisputeError
)

__all__ = [
    'DisputeConflictError',
    'DisputeError',
    'DisputeManager',
    'DisputeNotFoundError',
    'DisputePermissionError',
    'DisputeReason',
    'DisputeStateError',
    'DisputeStatus',
    'EscrowStatus',
    'InvalidDisputeError',
    'InvalidPurchaseError',
    'OPEN_STATUSES',
    'Resolution',
    'TERMINAL_STATUSES',
    'TRANSITIONS',
    'TransactionError',
    'TransactionManager',
    'TransactionNotFoundError',
    'TransactionPermissionError',
    'TransactionStateError',
    'TransactionStatus',
    'is_open',
    'price_purchase',
    'transition'
]
