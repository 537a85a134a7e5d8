"""Tests for reviews and seller statistics."""

import pytest
import pytest_asyncio
from decimal import Decimal

from errors import DuplicateReviewError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from reviews import clamp_rating

@pytest_asyncio.fixture
async def completed_purchase(services, community_id, people, paid_purchase):
    return await services.transactions.confirm_delivery(
        community_id, paid_purchase['id'], people.buyer.user_id
    )

def test_clamp_rating():
    assert clamp_rating(7) == 5
    assert clamp_rating(0) == 1
    assert clamp_rating(3) == 3
    with pytest.raises(ValidationError):
        clamp_rating(4.5)
    with pytest.raises(ValidationError):
        clamp_rating(True)
    with pytest.raises(ValidationError):
        clamp_rating('5')

@pytest.mark.asyncio
async def test_full_purchase_scenario(services, community_id, people, listing):
    """Buy, pay, ship, confirm and review; the seller ends with one 5-star sale."""
    txn = await services.transactions.initiate_purchase(community_id, listing['id'], people.buyer.user_id)
    await services.transactions.mark_paid(txn['id'], payment_reference='pay_full')
    await services.transactions.mark_shipped(community_id, txn['id'], people.seller.user_id, 'TRK1', 'DHL')
    await services.transactions.confirm_delivery(community_id, txn['id'], people.buyer.user_id)

    review = await services.reviews.submit_review(
        community_id, txn['id'], people.buyer.user_id, 5, content="Exactly as described"
    )
    assert review['reviewee_id'] == people.seller.member_id
    assert review['is_buyer_review'] is True
    assert review['listing_id'] == listing['id']

    stats = await services.reviews.get_seller_stats(
        community_id, people.seller.member_id, people.bystander.user_id
    )
    assert stats['total_sales'] == 1
    assert stats['successful_transactions'] == 1
    assert stats['total_revenue'] == Decimal('104.50')
    assert stats['average_rating'] == Decimal('5.00')
    assert stats['total_reviews'] == 1
    assert stats['dispute_rate'] == Decimal('0.00')

@pytest.mark.asyncio
async def test_duplicate_review_rejected(services, community_id, people, completed_purchase):
    await services.reviews.submit_review(community_id, completed_purchase['id'], people.buyer.user_id, 4)
    with pytest.raises(DuplicateReviewError):
        await services.reviews.submit_review(community_id, completed_purchase['id'], people.buyer.user_id, 5)

    # The seller may still review the buyer once
    review = await services.reviews.submit_review(
        community_id, completed_purchase['id'], people.seller.user_id, 9, title="Prompt payer"
    )
    assert review['rating'] == 5
    assert review['is_buyer_review'] is False
    assert review['reviewee_id'] == people.buyer.member_id

@pytest.mark.asyncio
async def test_review_requires_completed_transaction(services, community_id, people, paid_purchase):
    with pytest.raises(InvalidStateError):
        await services.reviews.submit_review(community_id, paid_purchase['id'], people.buyer.user_id, 5)

@pytest.mark.asyncio
async def test_review_requires_participant(services, community_id, people, completed_purchase):
    with pytest.raises(PermissionDeniedError):
        await services.reviews.submit_review(community_id, completed_purchase['id'], people.bystander.user_id, 1)
    with pytest.raises(NotFoundError):
        await services.reviews.submit_review(community_id, 'nope', people.buyer.user_id, 1)

@pytest.mark.asyncio
async def test_list_reviews(services, community_id, people, completed_purchase):
    await services.reviews.submit_review(community_id, completed_purchase['id'], people.buyer.user_id, 4)
    await services.reviews.submit_review(community_id, completed_purchase['id'], people.seller.user_id, 5)

    received = await services.reviews.list_reviews(
        community_id, people.seller.member_id, people.bystander.user_id
    )
    assert [r['rating'] for r in received] == [4]
    as_buyer = await services.reviews.list_reviews(
        community_id, people.buyer.member_id, people.bystander.user_id, as_seller=False
    )
    assert [r['rating'] for r in as_buyer] == [5]

@pytest.mark.asyncio
async def test_stats_count_cancellations_and_disputes(services, community_id, people, listing, paid_purchase):
    pending = await services.transactions.initiate_purchase(community_id, listing['id'], people.buyer.user_id)
    await services.transactions.cancel_purchase(community_id, pending['id'], people.buyer.user_id)

    dispute = await services.disputes.open_dispute(
        community_id, paid_purchase['id'], people.buyer.user_id, 'item_damaged', 'Scratched paint'
    )
    await services.disputes.resolve_dispute(community_id, dispute['id'], people.admin.user_id, 'refund')

    stats = await services.stats.get(community_id, people.seller.member_id)
    assert stats['cancelled_transactions'] == 1
    assert stats['total_sales'] == 0
    assert stats['total_revenue'] == Decimal('0.00')
    assert stats['average_rating'] is None
    assert stats['dispute_rate'] == Decimal('100.00')

@pytest.mark.asyncio
async def test_response_rate(services, community_id, people, listing):
    convs = services.conversations
    first = await convs.get_or_create_conversation(community_id, listing['id'], people.buyer.user_id)
    await convs.get_or_create_conversation(community_id, listing['id'], people.bystander.user_id)
    await convs.send_message(community_id, first['id'], people.seller.user_id, "Yes, available")

    stats = await services.stats.refresh(community_id, people.seller.member_id)
    assert stats['response_rate'] == Decimal('50.00')

@pytest.mark.asyncio
async def test_stats_for_unknown_member(services, community_id, people):
    with pytest.raises(NotFoundError):
        await services.reviews.get_seller_stats(community_id, people.outsider.user_id, people.buyer.user_id)
