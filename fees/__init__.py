"""Platform fee schedules.

A fee schedule maps a purchase subtotal to the platform fee. The fee is
computed once when a purchase is initiated and stored on the transaction;
later listing edits never change it.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, Optional, Union

from errors import ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

Number = Union[Decimal, int, str, float]

def to_money(value: Number) -> Decimal:
    """Convert a value to a Decimal quantized to cents, rounding half-up.

    Raises:
        ValidationError: If the value is not numeric
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)

class FeeSchedule:
    """Base class for fee policies."""

    name = 'base'

    def raw_fee(self, amount: Decimal) -> Decimal:
        raise NotImplementedError

    def compute(self, amount: Number) -> Decimal:
        """Return the fee for a subtotal, rounded half-up to the cent.

        The fee never exceeds the subtotal.
        """
        amount = to_money(amount)
        if amount < 0:
            raise ValidationError("Amount must not be negative")
        if amount == 0:
            return Decimal('0.00')
        fee = to_money(self.raw_fee(amount))
        return min(fee, amount)

    def breakdown(self, amount: Number) -> Dict[str, Decimal]:
        """Fee, effective percentage and net amount for a subtotal."""
        amount = to_money(amount)
        fee = self.compute(amount)
        percent = (fee / amount * 100) if amount else Decimal('0')
        return {
            'fee': fee,
            'fee_percent': percent.quantize(CENT, rounding=ROUND_HALF_UP),
            'net_amount': amount - fee
        }

class PercentageFeeSchedule(FeeSchedule):
    """Flat percentage of the subtotal."""

    name = 'percentage'

    def __init__(self, rate: Number = Decimal('0.05')):
        rate = Decimal(str(rate))
        if rate < 0 or rate >= 1:
            raise ValidationError(f"Fee rate must be in [0, 1): {rate}")
        self.rate = rate

    def raw_fee(self, amount: Decimal) -> Decimal:
        return amount * self.rate

    def __repr__(self) -> str:
        return f"PercentageFeeSchedule(rate={self.rate})"

class TieredFeeSchedule(FeeSchedule):
    """Tiered schedule.

    - up to 10.00: flat 0.25
    - up to 50.00: 2.5 %
    - up to 200.00: 2 %
    - above: 1.5 %, capped at 10.00
    """

    name = 'tiered'

    FLAT_LIMIT = Decimal('10')
    FLAT_FEE = Decimal('0.25')
    TIERS = (
        (Decimal('50'), Decimal('0.025')),
        (Decimal('200'), Decimal('0.02')),
    )
    TOP_RATE = Decimal('0.015')
    CAP = Decimal('10.00')

    def raw_fee(self, amount: Decimal) -> Decimal:
        if amount <= self.FLAT_LIMIT:
            return self.FLAT_FEE
        for limit, rate in self.TIERS:
            if amount <= limit:
                return amount * rate
        return min(amount * self.TOP_RATE, self.CAP)

    def __repr__(self) -> str:
        return "TieredFeeSchedule()"

def fee_schedule_from_settings(settings: Optional[Dict[str, Any]] = None) -> FeeSchedule:
    """Build the fee schedule named in settings."""
    if settings is None:
        from config import settings_conf
        settings = settings_conf

    name = settings.get('fee_schedule', 'tiered')
    if name == 'percentage':
        schedule = PercentageFeeSchedule(settings.get('fee_percent', Decimal('0.05')))
    elif name == 'tiered':
        schedule = TieredFeeSchedule()
    else:
        raise ValidationError(f"Unknown fee schedule: {name}")
    logger.debug(f"Using fee schedule {schedule!r}")
    return schedule

__all__ = [
    'FeeSchedule',
    'PercentageFeeSchedule',
    'TieredFeeSchedule',
    'fee_schedule_from_settings',
    'to_money'
]
