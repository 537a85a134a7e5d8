"""Tests for fee schedules."""

import pytest
from decimal import Decimal

from errors import ValidationError
from fees import (
    PercentageFeeSchedule,
    TieredFeeSchedule,
    fee_schedule_from_settings,
    to_money
)

def test_to_money_rounds_half_up():
    assert to_money('2.345') == Decimal('2.35')
    assert to_money(Decimal('2.344')) == Decimal('2.34')
    assert to_money(3) == Decimal('3.00')
    with pytest.raises(ValidationError):
        to_money('twelve')
    with pytest.raises(ValidationError):
        to_money('NaN')

def test_percentage_schedule():
    schedule = PercentageFeeSchedule(Decimal('0.05'))
    assert schedule.compute(Decimal('110.00')) == Decimal('5.50')
    assert schedule.compute(Decimal('0')) == Decimal('0.00')
    # 0.05 * 0.30 = 0.015 rounds up to 0.02
    assert schedule.compute(Decimal('0.30')) == Decimal('0.02')

    breakdown = schedule.breakdown('110')
    assert breakdown == {
        'fee': Decimal('5.50'),
        'fee_percent': Decimal('5.00'),
        'net_amount': Decimal('104.50')
    }

def test_percentage_schedule_rejects_bad_rates():
    with pytest.raises(ValidationError):
        PercentageFeeSchedule('1')
    with pytest.raises(ValidationError):
        PercentageFeeSchedule('-0.1')

@pytest.mark.parametrize('amount,fee', [
    ('5.00', '0.25'),
    ('10.00', '0.25'),
    ('40.00', '1.00'),
    ('100.00', '2.00'),
    ('300.00', '4.50'),
    ('1000.00', '10.00'),
])
def test_tiered_schedule(amount, fee):
    assert TieredFeeSchedule().compute(Decimal(amount)) == Decimal(fee)

def test_fee_never_exceeds_subtotal():
    assert TieredFeeSchedule().compute(Decimal('0.10')) == Decimal('0.10')

def test_negative_amount_rejected():
    with pytest.raises(ValidationError):
        TieredFeeSchedule().compute('-1')

def test_schedule_from_settings():
    assert isinstance(fee_schedule_from_settings({'fee_schedule': 'tiered'}), TieredFeeSchedule)

    schedule = fee_schedule_from_settings({'fee_schedule': 'percentage', 'fee_percent': Decimal('0.1')})
    assert isinstance(schedule, PercentageFeeSchedule)
    assert schedule.compute('20') == Decimal('2.00')

    with pytest.raises(ValidationError):
        fee_schedule_from_settings({'fee_schedule': 'auction'})
