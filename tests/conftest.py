"""Shared fixtures: an in-memory store with one community and its members."""

import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
import pytest_asyncio

from api.services import Services
from database import MemoryStore
from events import EventBus
from fees import PercentageFeeSchedule

@pytest.fixture
def community_id():
    return uuid.uuid4()

@pytest_asyncio.fixture
async def store():
    store = MemoryStore()
    yield store
    await store.close()

@pytest_asyncio.fixture
async def services(store):
    """Managers wired to the memory store with a flat 5% fee."""
    return Services(store, EventBus(), PercentageFeeSchedule(Decimal('0.05')))

@pytest_asyncio.fixture
async def people(services, community_id):
    """An admin, a moderator, a seller, a buyer and a bystander, plus an outsider."""
    async def join(role='member', name=None):
        user_id = uuid.uuid4()
        member = await services.members.add_member(community_id, user_id, role=role, display_name=name)
        return SimpleNamespace(user_id=user_id, member_id=member.member_id, member=member)

    return SimpleNamespace(
        admin=await join('admin', 'Admin'),
        moderator=await join('moderator', 'Mod'),
        seller=await join(name='Seller'),
        buyer=await join(name='Buyer'),
        bystander=await join(name='Bystander'),
        outsider=SimpleNamespace(user_id=uuid.uuid4(), member_id=None, member=None)
    )

@pytest_asyncio.fixture
async def listing(services, community_id, people):
    """An active listing priced at 100.00 with 10.00 shipping."""
    return await services.listings.create_listing(
        community_id,
        people.seller.user_id,
        title="Vintage road bike",
        price=Decimal('100.00'),
        description="Steel frame, recently serviced",
        category='sports',
        condition='good',
        quantity=2,
        shipping_available=True,
        shipping_cost=Decimal('10.00'),
        pickup_available=True,
        status='active'
    )

@pytest_asyncio.fixture
async def paid_purchase(services, community_id, people, listing):
    """A purchase of the listing whose payment was captured."""
    txn = await services.transactions.initiate_purchase(
        community_id, listing['id'], people.buyer.user_id
    )
    return await services.transactions.mark_paid(txn['id'], payment_reference='pay_001')
