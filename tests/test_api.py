"""End-to-end tests of the HTTP API against the in-memory store."""

import uuid
import pytest
import pytest_asyncio
from decimal import Decimal
from types import SimpleNamespace
from httpx import ASGITransport, AsyncClient

from api import create_app
from auth import create_access_token
from config import settings_conf
from database import MemoryStore
from events import EventBus
from fees import PercentageFeeSchedule

@pytest_asyncio.fixture
async def app():
    return create_app(
        store=MemoryStore(),
        events=EventBus(),
        fee_schedule=PercentageFeeSchedule(Decimal('0.05'))
    )

@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

@pytest_asyncio.fixture
async def market(app, community_id):
    """Community members with ready-made auth headers."""
    members = app.state.services.members

    async def join(role='member'):
        user_id = uuid.uuid4()
        member = await members.add_member(community_id, user_id, role=role)
        return SimpleNamespace(
            member_id=member.member_id,
            headers={'Authorization': f'Bearer {create_access_token(user_id)}'}
        )

    return SimpleNamespace(
        base=f'/communities/{community_id}',
        admin=await join('admin'),
        seller=await join(),
        buyer=await join(),
        stranger=SimpleNamespace(headers={'Authorization': f'Bearer {create_access_token(uuid.uuid4())}'})
    )

async def create_active_listing(client, market, **overrides):
    body = {
        'title': 'Camping stove',
        'price': '100.00',
        'shipping_available': True,
        'shipping_cost': '10.00',
        'category': 'sports',
        'status': 'active',
        **overrides
    }
    response = await client.post(f'{market.base}/listings', json=body, headers=market.seller.headers)
    assert response.status_code == 201, response.text
    return response.json()

async def pay(client, transaction_id, reference='pay_http'):
    return await client.post(
        '/webhooks/payments',
        json={'transaction_id': transaction_id, 'status': 'succeeded', 'payment_reference': reference},
        headers={'X-Webhook-Secret': settings_conf['webhook_secret']}
    )

@pytest.mark.asyncio
async def test_root(client):
    response = await client.get('/')
    assert response.status_code == 200
    assert response.json()['status'] == 'running'

@pytest.mark.asyncio
async def test_requires_token(client, market):
    response = await client.get(f'{market.base}/listings')
    assert response.status_code in (401, 403)

    response = await client.get(
        f'{market.base}/listings', headers={'Authorization': 'Bearer not-a-token'}
    )
    assert response.status_code == 401

@pytest.mark.asyncio
async def test_non_member_forbidden(client, market):
    response = await client.get(f'{market.base}/listings', headers=market.stranger.headers)
    assert response.status_code == 403
    assert response.json()['error'] == 'NotAMemberError'

@pytest.mark.asyncio
async def test_listing_endpoints(client, market):
    listing = await create_active_listing(client, market)
    assert listing['price'] == '100.00'
    url = f"{market.base}/listings/{listing['id']}"

    response = await client.get(f'{market.base}/listings', params={'q': 'stove'}, headers=market.buyer.headers)
    assert response.status_code == 200
    assert response.json()['total_count'] == 1

    response = await client.patch(url, json={'price': '90'}, headers=market.buyer.headers)
    assert response.status_code == 403

    response = await client.patch(url, json={'price': '90'}, headers=market.seller.headers)
    assert response.json()['price'] == '90.00'

    response = await client.post(f'{url}/favorite', headers=market.buyer.headers)
    assert response.json() == {'listing_id': listing['id'], 'favorited': True, 'favorites_count': 1}
    response = await client.get(f'{market.base}/favorites', headers=market.buyer.headers)
    assert [l['id'] for l in response.json()] == [listing['id']]

    response = await client.post(f'{url}/views', headers=market.buyer.headers)
    assert response.json() == {'views_count': 1}

    response = await client.post(f'{url}/publish', headers=market.seller.headers)
    assert response.status_code == 409

    response = await client.post(f'{market.base}/listings', json={'title': '', 'price': '1'}, headers=market.seller.headers)
    assert response.status_code == 400

    response = await client.delete(url, headers=market.seller.headers)
    assert response.json()['status'] == 'deleted'
    response = await client.get(url, headers=market.seller.headers)
    assert response.status_code == 404

@pytest.mark.asyncio
async def test_purchase_flow(client, market):
    listing = await create_active_listing(client, market)

    response = await client.post(
        f'{market.base}/transactions', json={'listing_id': listing['id']}, headers=market.buyer.headers
    )
    assert response.status_code == 201
    txn = response.json()
    assert (txn['fee_amount'], txn['total_price'], txn['net_amount']) == ('5.50', '115.50', '104.50')
    assert txn['escrow_status'] == 'pending'

    response = await pay(client, txn['id'])
    assert response.status_code == 200
    assert response.json()['escrow_status'] == 'held'

    url = f"{market.base}/transactions/{txn['id']}"
    response = await client.post(f'{url}/confirm', headers=market.seller.headers)
    assert response.status_code == 403

    response = await client.post(
        f'{url}/ship', json={'tracking_number': 'TRK', 'shipping_carrier': 'UPS'}, headers=market.seller.headers
    )
    assert response.json()['tracking_number'] == 'TRK'

    response = await client.post(f'{url}/confirm', headers=market.buyer.headers)
    assert response.json()['status'] == 'completed'
    assert response.json()['escrow_status'] == 'released'

    response = await client.post(
        f'{market.base}/transactions/{txn["id"]}/dispute',
        json={'reason': 'item_damaged', 'description': 'Dented'},
        headers=market.buyer.headers
    )
    assert response.status_code == 409

    response = await client.post(
        f'{market.base}/reviews',
        json={'transaction_id': txn['id'], 'rating': 5, 'content': 'Great'},
        headers=market.buyer.headers
    )
    assert response.status_code == 201
    response = await client.post(
        f'{market.base}/reviews',
        json={'transaction_id': txn['id'], 'rating': 4},
        headers=market.buyer.headers
    )
    assert response.status_code == 409
    assert response.json()['error'] == 'DuplicateReviewError'

    response = await client.get(
        f"{market.base}/sellers/{market.seller.member_id}/stats", headers=market.buyer.headers
    )
    stats = response.json()
    assert stats['total_sales'] == 1
    assert stats['average_rating'] == '5.00'
    assert stats['total_revenue'] == '104.50'

    response = await client.get(
        f"{market.base}/members/{market.seller.member_id}/reviews", headers=market.buyer.headers
    )
    assert [r['rating'] for r in response.json()] == [5]

    response = await client.get(
        f'{market.base}/transactions', params={'role': 'seller'}, headers=market.seller.headers
    )
    assert [t['id'] for t in response.json()] == [txn['id']]

@pytest.mark.asyncio
async def test_dispute_flow(client, market):
    listing = await create_active_listing(client, market)
    txn = (await client.post(
        f'{market.base}/transactions', json={'listing_id': listing['id']}, headers=market.buyer.headers
    )).json()
    await pay(client, txn['id'])

    response = await client.post(
        f"{market.base}/transactions/{txn['id']}/dispute",
        json={'reason': 'item_not_received', 'description': 'Never arrived'},
        headers=market.buyer.headers
    )
    assert response.status_code == 201
    dispute = response.json()

    response = await client.post(
        f"{market.base}/transactions/{txn['id']}/dispute",
        json={'reason': 'other', 'description': 'Again'},
        headers=market.seller.headers
    )
    assert response.status_code == 409

    url = f"{market.base}/disputes/{dispute['id']}"
    response = await client.post(f'{url}/statements', json={'statement': 'Sent by post'}, headers=market.seller.headers)
    assert response.json()['seller_statement'] == 'Sent by post'

    response = await client.get(f'{market.base}/disputes', headers=market.buyer.headers)
    assert response.status_code == 403
    response = await client.get(f'{market.base}/disputes', headers=market.admin.headers)
    assert [d['id'] for d in response.json()] == [dispute['id']]

    response = await client.post(f'{url}/resolve', json={'resolution': 'refund'}, headers=market.seller.headers)
    assert response.status_code == 403

    response = await client.post(f'{url}/resolve', json={'resolution': 'refund'}, headers=market.admin.headers)
    assert response.status_code == 200
    body = response.json()
    assert body['dispute']['status'] == 'resolved_buyer_favor'
    assert body['transaction']['escrow_status'] == 'refunded'

    response = await client.post(f'{url}/resolve', json={'resolution': 'release'}, headers=market.admin.headers)
    assert response.status_code == 409

@pytest.mark.asyncio
async def test_conversation_endpoints(client, market):
    listing = await create_active_listing(client, market)
    response = await client.post(
        f'{market.base}/conversations', json={'listing_id': listing['id']}, headers=market.buyer.headers
    )
    conversation = response.json()
    url = f"{market.base}/conversations/{conversation['id']}"

    response = await client.post(f'{url}/messages', json={'content': 'Hi there'}, headers=market.buyer.headers)
    assert response.status_code == 201
    response = await client.post(
        f'{url}/messages', json={'content': 'Offer', 'message_type': 'offer', 'offer_amount': '80'},
        headers=market.seller.headers
    )
    assert response.json()['offer_amount'] == '80.00'

    response = await client.get(f'{url}/messages', headers=market.seller.headers)
    assert [m['content'] for m in response.json()] == ['Hi there', 'Offer']

    response = await client.post(f'{url}/read', headers=market.seller.headers)
    assert response.json() == {'marked_read': 1}

    response = await client.get(f'{market.base}/conversations', headers=market.buyer.headers)
    assert response.json()[0]['buyer_unread_count'] == 1

    response = await client.post(f'{url}/block', headers=market.seller.headers)
    assert response.json()['status'] == 'blocked'
    response = await client.post(f'{url}/messages', json={'content': 'Hello?'}, headers=market.buyer.headers)
    assert response.status_code == 409

    response = await client.get(url, headers=market.admin.headers)
    assert response.status_code == 403

@pytest.mark.asyncio
async def test_payment_webhook_checks_secret(client, market):
    listing = await create_active_listing(client, market)
    txn = (await client.post(
        f'{market.base}/transactions', json={'listing_id': listing['id']}, headers=market.buyer.headers
    )).json()

    response = await client.post(
        '/webhooks/payments',
        json={'transaction_id': txn['id'], 'status': 'succeeded'},
        headers={'X-Webhook-Secret': 'wrong'}
    )
    assert response.status_code == 401

    response = await client.post(
        '/webhooks/payments',
        json={'transaction_id': txn['id'], 'status': 'succeeded'},
        headers={'X-Webhook-Secret': 'dev-webhook-secret'}
    )
    assert response.status_code == 401

    response = await client.post(
        '/webhooks/payments',
        json={'transaction_id': txn['id'], 'status': 'failed', 'payment_reference': 'pay_x'},
        headers={'X-Webhook-Secret': settings_conf['webhook_secret']}
    )
    assert response.json()['status'] == 'pending'

    assert (await pay(client, txn['id'], 'pay_once')).status_code == 200
    # Processors retry; the same reference is acknowledged again
    again = await pay(client, txn['id'], 'pay_once')
    assert again.status_code == 200
    assert again.json()['escrow_status'] == 'held'

    response = await pay(client, str(uuid.uuid4()))
    assert response.status_code == 404

@pytest.mark.asyncio
async def test_system_health(client):
    response = await client.get('/system/health')
    assert response.status_code == 200
    body = response.json()
    assert body['database_status'] == 'connected'
    assert body['store'] == 'MemoryStore'

@pytest.mark.asyncio
async def test_tokens_signed_with_a_guessable_secret_are_rejected(client, market, app, community_id):
    admin_user = (await app.state.services.store.find_one(
        'community_members', id=market.admin.member_id
    ))['user_id']
    forged = create_access_token(admin_user, secret='dev-secret-change-me')
    response = await client.get(
        f'{market.base}/listings', headers={'Authorization': f'Bearer {forged}'}
    )
    assert response.status_code == 401
