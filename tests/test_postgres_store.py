"""Tests for the SQL issued by the PostgreSQL store."""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal

import asyncpg
import pytest
import pytest_asyncio

from database import DatabaseError, DuplicateRowError, PostgresStore
from errors import ValidationError

class FakeConnection:
    """Records every statement and answers with canned results."""

    def __init__(self):
        self.calls = []
        self.row = None
        self.rows = []
        self.status = 'UPDATE 0'
        self.value = 0
        self.error = None
        self.transactions = 0

    def _record(self, method, sql, params):
        self.calls.append((method, ' '.join(sql.split()), params))
        if self.error:
            raise self.error

    async def fetchrow(self, sql, *params):
        self._record('fetchrow', sql, params)
        return self.row

    async def fetch(self, sql, *params):
        self._record('fetch', sql, params)
        return self.rows

    async def execute(self, sql, *params):
        self._record('execute', sql, params)
        return self.status

    async def fetchval(self, sql, *params):
        self._record('fetchval', sql, params)
        return self.value

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield

class FakePool:
    def __init__(self):
        self.conn = FakeConnection()
        self.acquired = 0

    @asynccontextmanager
    async def acquire(self):
        self.acquired += 1
        yield self.conn

@pytest_asyncio.fixture
async def pool():
    return FakePool()

@pytest_asyncio.fixture
async def pg(pool):
    return PostgresStore(pool)

def last_call(pool):
    return pool.conn.calls[-1]

@pytest.mark.asyncio
async def test_conditional_update_puts_preconditions_in_where(pg, pool):
    txn_id = uuid.uuid4()
    pool.conn.row = {'id': txn_id, 'status': 'paid', 'escrow_status': 'held'}

    updated = await pg.update(
        'marketplace_transactions', str(txn_id),
        {'status': 'paid', 'escrow_status': 'held'},
        expected={'status': 'pending', 'escrow_status': 'pending'}
    )

    assert updated == {'id': txn_id, 'status': 'paid', 'escrow_status': 'held'}
    method, sql, params = last_call(pool)
    assert method == 'fetchrow'
    assert sql == (
        'UPDATE marketplace_transactions '
        'SET status = $1, escrow_status = $2, updated_at = now() '
        'WHERE id = $3 AND status = $4 AND escrow_status = $5 '
        'RETURNING *'
    )
    assert params == ('paid', 'held', txn_id, 'pending', 'pending')

@pytest.mark.asyncio
async def test_conditional_update_without_match_returns_none(pg, pool):
    pool.conn.row = None
    assert await pg.update(
        'marketplace_listings', uuid.uuid4(), {'status': 'sold'},
        expected={'status': ['active', 'reserved']}, exclude={'seller_id': None}
    ) is None

    _, sql, params = last_call(pool)
    assert sql.endswith('WHERE id = $2 AND status = ANY($3) AND NOT (seller_id IS NULL) RETURNING *')
    assert params[0] == 'sold'
    assert params[2] == ['active', 'reserved']

@pytest.mark.asyncio
async def test_increment_with_floor_and_changes(pg, pool):
    conversation_id = uuid.uuid4()
    seen_at = datetime(2024, 5, 1, tzinfo=timezone.utc)
    pool.conn.row = {'id': conversation_id, 'buyer_unread_count': 0}

    await pg.increment(
        'marketplace_conversations', conversation_id, 'buyer_unread_count', -2,
        floor=0, changes={'last_message_at': seen_at}
    )

    _, sql, params = last_call(pool)
    assert sql == (
        'UPDATE marketplace_conversations '
        'SET buyer_unread_count = GREATEST(buyer_unread_count + $2, $3), '
        'last_message_at = $1, updated_at = now() '
        'WHERE id = $4 RETURNING *'
    )
    assert params == (seen_at, -2, 0, conversation_id)

@pytest.mark.asyncio
async def test_increment_without_floor(pg, pool):
    listing_id = uuid.uuid4()
    pool.conn.row = {'id': listing_id, 'views_count': 1}
    await pg.increment('marketplace_listings', listing_id, 'views_count')

    _, sql, params = last_call(pool)
    assert 'SET views_count = views_count + $1, updated_at = now() WHERE id = $2' in sql
    assert params == (1, listing_id)

@pytest.mark.asyncio
async def test_upsert_updates_non_conflict_columns(pg, pool):
    community_id, member_id = uuid.uuid4(), uuid.uuid4()
    pool.conn.row = {'member_id': member_id, 'total_sales': 3}

    await pg.upsert(
        'marketplace_seller_stats',
        {'community_id': community_id, 'member_id': member_id, 'total_sales': 3},
        conflict=['community_id', 'member_id']
    )

    _, sql, params = last_call(pool)
    assert sql == (
        'INSERT INTO marketplace_seller_stats (community_id, member_id, total_sales) '
        'VALUES ($1, $2, $3) '
        'ON CONFLICT (community_id, member_id) DO UPDATE '
        'SET total_sales = EXCLUDED.total_sales, updated_at = now() '
        'RETURNING *'
    )
    assert params == (community_id, member_id, 3)

@pytest.mark.asyncio
async def test_find_numbers_placeholders_across_clauses(pg, pool):
    listing_id, buyer_id = uuid.uuid4(), uuid.uuid4()
    pool.conn.rows = [{'id': 1}, {'id': 2}]

    rows = await pg.find(
        'marketplace_transactions',
        {'listing_id': listing_id, 'status': ['pending', 'paid']},
        exclude={'buyer_id': buyer_id},
        order_by=['-created_at', 'id'],
        limit=10,
        offset=20
    )

    assert rows == [{'id': 1}, {'id': 2}]
    method, sql, params = last_call(pool)
    assert method == 'fetch'
    assert sql == (
        'SELECT * FROM marketplace_transactions '
        'WHERE listing_id = $1 AND status = ANY($2) AND NOT (buyer_id = $3) '
        'ORDER BY created_at DESC NULLS LAST, id ASC NULLS LAST '
        'LIMIT $4 OFFSET $5'
    )
    assert params == (listing_id, ['pending', 'paid'], buyer_id, 10, 20)

@pytest.mark.asyncio
async def test_find_with_ranges_and_search(pg, pool):
    await pg.find(
        'marketplace_listings',
        {'status': 'active'},
        ranges={'price': ('10', None)},
        search=(['title', 'description'], 'bike')
    )

    _, sql, params = last_call(pool)
    assert sql == (
        'SELECT * FROM marketplace_listings '
        'WHERE status = $1 AND price >= $2 AND (title ILIKE $3 OR description ILIKE $3)'
    )
    assert params == ('active', Decimal('10'), '%bike%')

@pytest.mark.asyncio
async def test_array_column_compares_whole_value(pg, pool):
    await pg.count('marketplace_listings', {'images': ['a.png']})
    method, sql, params = last_call(pool)
    assert method == 'fetchval'
    assert sql == 'SELECT COUNT(*) FROM marketplace_listings WHERE images = $1'
    assert params == (['a.png'],)

@pytest.mark.asyncio
async def test_update_where_returns_affected_count(pg, pool):
    conversation_id, reader_id = uuid.uuid4(), uuid.uuid4()
    pool.conn.status = 'UPDATE 3'

    marked = await pg.update_where(
        'marketplace_messages',
        {'conversation_id': conversation_id, 'is_read': False},
        {'is_read': True},
        exclude={'sender_id': reader_id}
    )

    assert marked == 3
    _, sql, params = last_call(pool)
    assert sql == (
        'UPDATE marketplace_messages SET is_read = $1, updated_at = now() '
        'WHERE conversation_id = $2 AND is_read = $3 AND NOT (sender_id = $4)'
    )
    assert params == (True, conversation_id, False, reader_id)

@pytest.mark.asyncio
async def test_delete_where(pg, pool):
    member_id, listing_id = uuid.uuid4(), uuid.uuid4()
    pool.conn.status = 'DELETE 1'
    assert await pg.delete_where('marketplace_favorites', member_id=member_id, listing_id=listing_id) == 1
    _, sql, params = last_call(pool)
    assert sql == 'DELETE FROM marketplace_favorites WHERE member_id = $1 AND listing_id = $2'
    assert params == (member_id, listing_id)

@pytest.mark.asyncio
async def test_transaction_runs_on_one_connection(pg, pool):
    listing_id = uuid.uuid4()
    async with pg.transaction() as tx:
        await tx.get('marketplace_listings', listing_id)
        async with tx.transaction() as nested:
            assert nested is tx
            await tx.count('marketplace_transactions', {'listing_id': listing_id})

    assert pool.acquired == 1
    assert pool.conn.transactions == 2
    assert [method for method, _, _ in pool.conn.calls] == ['fetchrow', 'fetchval']

@pytest.mark.asyncio
async def test_bad_values_rejected_before_querying(pg, pool):
    with pytest.raises(ValidationError):
        await pg.get('marketplace_listings', 'not-a-uuid')
    with pytest.raises(DatabaseError):
        await pg.find('marketplace_listings', {'no_such_column': 1})
    assert pool.conn.calls == []

@pytest.mark.asyncio
async def test_unique_violation_becomes_duplicate_row(pg, pool):
    pool.conn.error = asyncpg.UniqueViolationError('duplicate key value')
    with pytest.raises(DuplicateRowError):
        await pg.insert('marketplace_favorites', {
            'community_id': uuid.uuid4(),
            'member_id': uuid.uuid4(),
            'listing_id': uuid.uuid4()
        })
