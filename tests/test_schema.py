"""Tests for the versioned schema and its DDL."""

from contextlib import asynccontextmanager

import pytest

from database.lib.schema_manager import (
    SchemaManager,
    create_table_sql,
    fresh_install_sql,
    index_sql,
    latest_schema,
    load_schema_files
)

class FakeConnection:
    def __init__(self, version):
        self.version = version
        self.executed = []

    async def execute(self, statement, *args):
        self.executed.append((' '.join(statement.split()), args))

    async def fetchval(self, query):
        return self.version

    @asynccontextmanager
    async def transaction(self):
        yield

class FakePool:
    def __init__(self, version):
        self.conn = FakeConnection(version)

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

def tables_by_name(schema):
    return {table['name']: table for table in schema['tables']}

def test_versions_load_in_order():
    versions = load_schema_files()
    assert list(versions) == [1, 2]
    listings = tables_by_name(latest_schema())['marketplace_listings']
    names = [col['name'] for col in listings['columns']]
    assert 'sold_count' in names
    assert names[-2:] == ['created_at', 'updated_at']

def test_table_ddl_has_checks_and_defaults():
    disputes = tables_by_name(latest_schema())['marketplace_disputes']
    sql = create_table_sql(disputes)
    assert sql.startswith('CREATE TABLE IF NOT EXISTS marketplace_disputes')
    assert 'PRIMARY KEY (id)' in sql
    assert 'CONSTRAINT valid_dispute_status CHECK' in sql
    assert 'id UUID DEFAULT gen_random_uuid()' in sql

    assert (
        'CREATE UNIQUE INDEX IF NOT EXISTS idx_disputes_transaction '
        'ON marketplace_disputes (transaction_id)'
    ) in index_sql(disputes)

def test_fresh_install_creates_tables_before_foreign_keys():
    statements = fresh_install_sql(latest_schema())
    first_alter = next(i for i, s in enumerate(statements) if s.startswith('ALTER TABLE'))
    assert all(s.startswith('CREATE TABLE') for s in statements[:first_alter])
    assert sum(s.startswith('CREATE TABLE') for s in statements) == len(latest_schema()['tables'])

def test_fresh_install_orders_tables_then_foreign_keys_then_indexes():
    def group(statement):
        if statement.startswith('CREATE TABLE'):
            return 0
        if statement.startswith('ALTER TABLE'):
            return 1
        return 2

    groups = [group(s) for s in fresh_install_sql(latest_schema())]
    assert groups == sorted(groups)
    assert set(groups) == {0, 1, 2}

@pytest.mark.asyncio
async def test_fresh_install_records_latest_version():
    pool = FakePool(version=0)
    manager = SchemaManager(pool)
    await manager.initialize()

    assert manager.current_version == 2
    assert pool.conn.executed[-1] == ('INSERT INTO schema_version (version) VALUES ($1)', (2,))
    assert not any('ADD COLUMN' in statement for statement, _ in pool.conn.executed)

@pytest.mark.asyncio
async def test_upgrade_runs_pending_migrations():
    pool = FakePool(version=1)
    await SchemaManager(pool).initialize()

    statements = [statement for statement, _ in pool.conn.executed]
    assert 'ALTER TABLE marketplace_listings ADD COLUMN sold_count INT8 NOT NULL DEFAULT 0;' in statements
    assert not any(s.startswith('CREATE TABLE IF NOT EXISTS marketplace') for s in statements)

@pytest.mark.asyncio
async def test_up_to_date_database_is_left_alone():
    pool = FakePool(version=2)
    await SchemaManager(pool).initialize()
    assert len(pool.conn.executed) == 1  # only the version table
